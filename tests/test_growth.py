"""Tests for segmentation and trust-gated campaigns."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import receipts_of
from trusteye.config import Settings
from trusteye.db.tables import Campaign, RuleSet, SegmentSnapshot, SendReceipt, Tenant
from trusteye.errors import NotFoundError, UpstreamError
from trusteye.growth import ReferralRule, approve_campaign, compute_segment, create_campaign, execute_campaign
from trusteye.growth.segments import AudienceRow
from trusteye.models.enums import Actor, CampaignStatus, ReceiptKind, SendStatus, SuppressionReason
from trusteye.policy import record_trust_score
from trusteye.recording import ReceiptLedger


class FakeChannel:
    name = "fake-mail"

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[str] = []

    def send(self, address: str, *, subject: str, body: str) -> None:
        if address in self.fail_for:
            raise UpstreamError("bounced", service=self.name)
        self.sent.append(address)


def _count(session: Session, table: type) -> int:
    return int(session.scalar(select(func.count()).select_from(table)) or 0)


def test_compute_segment_first_failing_reason_wins() -> None:
    """It should suppress each row for its first failing check, in enum order."""

    rows = [
        AudienceRow("ok@example.com", {"rating": 5, "sentiment": "Positive"}),
        AudienceRow("", {"opted_out": True}),
        AudienceRow("out@example.com", {"opted_out": True, "rating": 1}),
        AudienceRow("norating@example.com", {"sentiment": "positive"}),
        AudienceRow("low@example.com", {"rating": "4", "sentiment": "positive"}),
        AudienceRow("meh@example.com", {"rating": 5, "sentiment": "neutral"}),
        AudienceRow("done@example.com", {"rating": 5, "sentiment": "positive", "referral_sent": True}),
        AudienceRow("flag@example.com", {"rating": True, "sentiment": "positive"}),
    ]
    seg = compute_segment(rows, ReferralRule())

    assert seg.eligible == ("ok@example.com",)
    assert [s.reason for s in seg.suppressed] == [
        SuppressionReason.MISSING_ADDRESS,
        SuppressionReason.OPTED_OUT,
        SuppressionReason.MISSING_RATING,
        SuppressionReason.RATING_BELOW_THRESHOLD,
        SuppressionReason.NON_POSITIVE_SENTIMENT,
        SuppressionReason.ALREADY_REFERRED,
        SuppressionReason.MISSING_RATING,
    ]
    assert list(seg.reasons) == [
        "missing_address",
        "opted_out",
        "missing_rating",
        "rating_below_5",
        "non_positive_sentiment",
        "already_referred",
    ]
    assert seg.reasons["missing_rating"] == 2


def test_rule_can_include_already_referred() -> None:
    """It should honor exclude_already_referred=False."""

    row = AudienceRow("done@example.com", {"rating": 5, "sentiment": "positive", "referral_sent": True})
    assert compute_segment([row], ReferralRule(exclude_already_referred=False)).eligible == ("done@example.com",)


def test_unsafe_trust_blocks_campaign_without_rows(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should return policy_blocked, write one SUPPRESS receipt and create nothing."""

    record_trust_score(session, seeded.id, 10)
    before = len(receipts_of(session, seeded.id))

    result = create_campaign(session, seeded, settings, ledger)

    assert not result.ok
    assert result.error == "policy_blocked"
    assert result.data["zone"] == "UNSAFE"
    assert _count(session, Campaign) == 0
    assert _count(session, RuleSet) == 0
    assert _count(session, SegmentSnapshot) == 0
    new = receipts_of(session, seeded.id)[before:]
    assert [(r.kind, r.actor) for r in new] == [(ReceiptKind.SUPPRESS, Actor.TRUST_ENGINE)]


def test_caution_blocks_real_send_but_allows_dry_run(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should allow dry-runs in CAUTION and block real sends."""

    record_trust_score(session, seeded.id, 50)
    assert create_campaign(session, seeded, settings, ledger, dry_run=False).error == "policy_blocked"
    assert create_campaign(session, seeded, settings, ledger, dry_run=True).ok


def test_dry_run_campaign_records_segment_and_receipts(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should snapshot the segment, write send receipts and a dry-run EXECUTE receipt."""

    before = len(receipts_of(session, seeded.id))
    result = create_campaign(session, seeded, settings, ledger)

    assert result.ok
    assert result.status == "READY"
    assert result.data["segment_size"] == 1
    assert result.data["suppressed_size"] == 3
    assert result.data["reasons"] == {"missing_address": 1, "opted_out": 1, "rating_below_5": 1}

    campaign = session.get(Campaign, result.data["campaign_id"])
    assert campaign is not None
    assert campaign.name == "Dry-run: Referral advocates"
    assert not campaign.requires_approval
    statuses = sorted(sr.status.value for sr in campaign.send_receipts)
    assert statuses == ["DRY_RUN", "SUPPRESSED", "SUPPRESSED", "SUPPRESSED"]

    new = receipts_of(session, seeded.id)[before:]
    assert [(r.kind, r.actor) for r in new] == [
        (ReceiptKind.DECIDE, Actor.TRUST_ENGINE),
        (ReceiptKind.DECIDE, Actor.RULE_ENGINE),
        (ReceiptKind.EXECUTE, Actor.DELIVERY),
    ]


def test_suppressed_receipts_are_capped(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should write at most the configured number of SUPPRESSED send receipts."""

    capped = settings.model_copy(update={"growth_suppressed_cap": 1})
    result = create_campaign(session, seeded, capped, ledger)
    suppressed = session.scalars(
        select(SendReceipt).where(
            SendReceipt.campaign_id == result.data["campaign_id"], SendReceipt.status == SendStatus.SUPPRESSED
        )
    ).all()
    assert len(suppressed) == 1
    assert result.data["suppressed_size"] == 3


def test_real_send_needs_approval_then_delivers(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should require approval for a real send and mark deliveries SENT."""

    record_trust_score(session, seeded.id, 90)
    created = create_campaign(session, seeded, settings, ledger, dry_run=False)
    campaign_id = created.data["campaign_id"]
    channel = FakeChannel()

    early = execute_campaign(session, seeded, settings, campaign_id, ledger, channel=channel)
    assert early.error == "approval_required"

    assert approve_campaign(session, seeded, campaign_id, ledger, approved_by="dana").ok
    done = execute_campaign(session, seeded, settings, campaign_id, ledger, channel=channel)

    assert done.ok
    assert done.data["counts"]["SENT"] == 1
    assert channel.sent == ["ana@example.com"]
    assert session.get(Campaign, campaign_id).status is CampaignStatus.EXECUTED
    again = execute_campaign(session, seeded, settings, campaign_id, ledger, channel=channel)
    assert again.error == "invalid_status"


def test_failed_delivery_is_recorded(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should mark a bounced send FAILED with the error code."""

    record_trust_score(session, seeded.id, 90)
    campaign_id = create_campaign(session, seeded, settings, ledger, dry_run=False).data["campaign_id"]
    approve_campaign(session, seeded, campaign_id, ledger)
    done = execute_campaign(
        session, seeded, settings, campaign_id, ledger, channel=FakeChannel({"ana@example.com"})
    )
    assert done.data["counts"]["FAILED"] == 1
    failed = [sr for sr in session.get(Campaign, campaign_id).send_receipts if sr.status is SendStatus.FAILED]
    assert failed[0].reason == "upstream_error"


def test_execute_rechecks_policy(
    session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger
) -> None:
    """It should block execution when trust dropped after creation."""

    campaign_id = create_campaign(session, seeded, settings, ledger).data["campaign_id"]
    record_trust_score(session, seeded.id, 5)
    result = execute_campaign(session, seeded, settings, campaign_id, ledger)
    assert result.error == "policy_blocked"
    assert session.get(Campaign, campaign_id).status is CampaignStatus.READY


def test_unknown_campaign_raises(session: Session, seeded: Tenant, ledger: ReceiptLedger) -> None:
    """It should raise campaign_not_found."""

    with pytest.raises(NotFoundError) as exc:
        approve_campaign(session, seeded, "missing", ledger)
    assert exc.value.code == "campaign_not_found"
