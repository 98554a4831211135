"""Trust-gated campaigns.

Campaigns move `READY -> APPROVED -> EXECUTED`. The trust policy is checked before anything is
written, and again at execution time. A blocked request leaves one SUPPRESS receipt and no
campaign, rule set or segment rows.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from trusteye import policy as trust_policy
from trusteye.config import Settings
from trusteye.db.tables import (
    AudienceMember,
    Campaign,
    RuleSet,
    SegmentSnapshot,
    SendReceipt,
    Tenant,
    utcnow,
)
from trusteye.errors import NotFoundError, PolicyBlockedError, UpstreamError
from trusteye.growth.segments import AudienceRow, ReferralRule, SegmentResult, compute_segment
from trusteye.logging import get_logger
from trusteye.models.enums import Actor, CampaignStatus, ReceiptKind, SendStatus, TrustZone
from trusteye.models.results import OperationResult
from trusteye.policy import TrustPolicy, TrustReading
from trusteye.recording.ledger import ReceiptLedger

logger = get_logger(__name__)


class DeliveryChannel(Protocol):
    """Outbound message channel (email/SMS provider)."""

    name: str

    def send(self, address: str, *, subject: str, body: str) -> None:
        """Send one message; raise `UpstreamError` on failure."""


def upsert_audience(
    session: Session, tenant_id: str, rows: Iterable[tuple[str, dict[str, Any]]]
) -> int:
    """Insert or update audience members by address. Returns the number of rows touched."""

    touched = 0
    for address, attributes in rows:
        address = (address or "").strip().lower()
        member = session.scalar(
            select(AudienceMember).where(
                AudienceMember.tenant_id == tenant_id, AudienceMember.address == address
            )
        )
        if member is None:
            member = AudienceMember(tenant_id=tenant_id, address=address)
            session.add(member)
        member.attributes = dict(attributes or {})
        touched += 1
    session.flush()
    return touched


def get_campaign(session: Session, tenant_id: str, campaign_id: str) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None or campaign.tenant_id != tenant_id:
        raise NotFoundError(f"Unknown campaign: {campaign_id}", code="campaign_not_found")
    return campaign


def list_campaigns(session: Session, tenant_id: str) -> list[Campaign]:
    return list(
        session.scalars(
            select(Campaign).where(Campaign.tenant_id == tenant_id).order_by(Campaign.created_at.desc())
        )
    )


def create_campaign(
    session: Session,
    tenant: Tenant,
    settings: Settings,
    ledger: ReceiptLedger,
    *,
    rule: ReferralRule | None = None,
    goal: str = "Referral ask to happy customers",
    dry_run: bool = True,
) -> OperationResult:
    """Create a campaign for a rule after the trust gate passes.

    Args:
        session: Database session.
        tenant: Owning tenant.
        settings: Runtime settings (thresholds, suppressed cap).
        ledger: Receipt ledger for the tenant.
        rule: Segment rule; defaults to the referral-advocates rule.
        goal: Free-text campaign goal.
        dry_run: When False the campaign will send for real on execution and needs approval.

    Returns:
        `ok=True` with status READY, or a `policy_blocked` failure.
    """

    rule = rule or ReferralRule()
    pol, reading = trust_policy.tenant_policy(session, tenant, settings)
    action = trust_policy.CAMPAIGNS_DRY_RUN if dry_run else trust_policy.CAMPAIGNS_SEND
    blocked = _policy_block(ledger, pol, reading, action, stage="create")
    if blocked is not None:
        return blocked

    ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.TRUST_ENGINE,
        summary="Policy checked for growth execution",
        input={"trust_total": reading.total, "trust_default": reading.is_default, "action": action},
        output=pol.as_dict(),
    )

    rule_set = _upsert_rule_set(session, tenant.id, rule)
    members = session.scalars(
        select(AudienceMember)
        .where(AudienceMember.tenant_id == tenant.id)
        .order_by(AudienceMember.address, AudienceMember.id)
    )
    segment = compute_segment(
        (AudienceRow(address=m.address, attributes=m.attributes or {}) for m in members), rule
    )
    snapshot = SegmentSnapshot(
        tenant_id=tenant.id,
        rule_set_id=rule_set.id,
        size=len(segment.eligible),
        suppressed=len(segment.suppressed),
        reasons=segment.reasons,
    )
    session.add(snapshot)
    session.flush()
    ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.RULE_ENGINE,
        summary="Segment computed for campaign rule",
        input={"rule_set_id": rule_set.id, "rule": rule_set.definition},
        output={
            "eligible": len(segment.eligible),
            "suppressed": len(segment.suppressed),
            "reasons": segment.reasons,
        },
    )

    mode = "Dry-run" if dry_run else "Send"
    campaign = Campaign(
        tenant_id=tenant.id,
        rule_set_id=rule_set.id,
        segment_id=snapshot.id,
        name=f"{mode}: {rule_set.name}",
        goal=goal,
        status=CampaignStatus.READY,
        dry_run=dry_run,
        requires_approval=not dry_run,
        segment_size=len(segment.eligible),
        suppressed_size=len(segment.suppressed),
        gating={
            "policy": pol.as_dict(),
            "trust_total": reading.total,
            "trust_default": reading.is_default,
            "reasons": segment.reasons,
            "dry_run": dry_run,
        },
    )
    session.add(campaign)
    session.flush()
    _write_send_receipts(campaign, segment, suppressed_cap=settings.growth_suppressed_cap)
    session.flush()

    last = None
    if dry_run:
        last = ledger.write(
            kind=ReceiptKind.EXECUTE,
            actor=Actor.DELIVERY,
            summary="Dry-run delivery executed (no sends)",
            input={"campaign_id": campaign.id},
            output={"would_send": len(segment.eligible), "suppressed": len(segment.suppressed)},
        )
    logger.info(
        "Campaign created",
        extra={
            "campaign_id": campaign.id,
            "zone": pol.zone.value,
            "eligible": len(segment.eligible),
            "suppressed": len(segment.suppressed),
            "dry_run": dry_run,
        },
    )
    return OperationResult.success(
        CampaignStatus.READY.value,
        receipt_id=last.id if last is not None else None,
        data={
            "campaign_id": campaign.id,
            "name": campaign.name,
            "zone": pol.zone.value,
            "dry_run": dry_run,
            "segment_size": campaign.segment_size,
            "suppressed_size": campaign.suppressed_size,
            "reasons": segment.reasons,
        },
    )


def approve_campaign(
    session: Session,
    tenant: Tenant,
    campaign_id: str,
    ledger: ReceiptLedger,
    *,
    approved_by: str = "operator",
) -> OperationResult:
    campaign = get_campaign(session, tenant.id, campaign_id)
    if campaign.status is not CampaignStatus.READY:
        return OperationResult.failure(
            "invalid_status",
            f"Campaign is {campaign.status.value}; only READY campaigns can be approved.",
            status=campaign.status.value,
        )
    campaign.status = CampaignStatus.APPROVED
    campaign.approved_at = utcnow()
    campaign.approved_by = approved_by
    session.flush()
    receipt = ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.ORCHESTRATOR,
        summary=f"Campaign approved: {campaign.name}",
        input={"campaign_id": campaign.id},
        output={"approved_by": approved_by},
    )
    return OperationResult.success(
        CampaignStatus.APPROVED.value, receipt_id=receipt.id, data={"campaign_id": campaign.id}
    )


def execute_campaign(
    session: Session,
    tenant: Tenant,
    settings: Settings,
    campaign_id: str,
    ledger: ReceiptLedger,
    *,
    channel: DeliveryChannel | None = None,
) -> OperationResult:
    """Execute a campaign, re-checking the trust policy first.

    Dry-run campaigns never send. Real-send campaigns must be APPROVED and, without a delivery
    channel, are marked executed with nothing sent.
    """

    campaign = get_campaign(session, tenant.id, campaign_id)
    if campaign.status is CampaignStatus.EXECUTED:
        return OperationResult.failure(
            "invalid_status", "Campaign was already executed.", status=campaign.status.value
        )
    if campaign.requires_approval and campaign.status is not CampaignStatus.APPROVED:
        return OperationResult.failure(
            "approval_required",
            "Real-send campaigns must be approved before execution.",
            status=campaign.status.value,
        )

    pol, reading = trust_policy.tenant_policy(session, tenant, settings)
    action = trust_policy.CAMPAIGNS_DRY_RUN if campaign.dry_run else trust_policy.CAMPAIGNS_SEND
    blocked = _policy_block(ledger, pol, reading, action, stage="execute", campaign_id=campaign.id)
    if blocked is not None:
        return blocked

    counts = {s.value: 0 for s in SendStatus}
    for sr in campaign.send_receipts:
        if sr.status is SendStatus.DRY_RUN and channel is not None and not campaign.dry_run:
            try:
                channel.send(sr.address, subject=campaign.name, body=campaign.goal)
                sr.status = SendStatus.SENT
            except UpstreamError as e:
                sr.status = SendStatus.FAILED
                sr.reason = e.code
                logger.warning(
                    "Campaign send failed",
                    extra={"campaign_id": campaign.id, "channel": channel.name, "error": e.message},
                )
        counts[sr.status.value] += 1

    campaign.status = CampaignStatus.EXECUTED
    campaign.executed_at = utcnow()
    session.flush()

    if campaign.dry_run:
        summary = "Dry-run campaign executed (no sends)"
    elif channel is None:
        summary = "Campaign executed without a delivery channel (no sends)"
    else:
        summary = f"Campaign delivered via {channel.name}: {counts['SENT']} sent, {counts['FAILED']} failed"
    receipt = ledger.write(
        kind=ReceiptKind.EXECUTE,
        actor=Actor.DELIVERY,
        summary=summary,
        input={"campaign_id": campaign.id, "dry_run": campaign.dry_run},
        output=counts,
    )
    return OperationResult.success(
        CampaignStatus.EXECUTED.value,
        receipt_id=receipt.id,
        data={"campaign_id": campaign.id, "counts": counts},
    )


def _policy_block(
    ledger: ReceiptLedger,
    pol: TrustPolicy,
    reading: TrustReading,
    action: str,
    *,
    stage: str,
    campaign_id: str | None = None,
) -> OperationResult | None:
    if pol.zone is not TrustZone.UNSAFE and pol.allows(action):
        return None
    err = PolicyBlockedError(zone=pol.zone.value, action=action, total=pol.total)
    receipt = ledger.write(
        kind=ReceiptKind.SUPPRESS,
        actor=Actor.TRUST_ENGINE,
        summary=f"Campaign {stage} blocked by trust policy ({pol.zone.value})",
        input={
            "trust_total": reading.total,
            "trust_default": reading.is_default,
            "action": action,
            "campaign_id": campaign_id,
        },
        output=pol.as_dict(),
    )
    logger.info(
        "Campaign blocked by trust policy",
        extra={"zone": pol.zone.value, "total": pol.total, "action": action, "stage": stage},
    )
    return OperationResult.failure(
        err.code,
        err.message,
        receipt_id=receipt.id,
        data={"zone": pol.zone.value, "total": pol.total, "action": action},
    )


def _upsert_rule_set(session: Session, tenant_id: str, rule: ReferralRule) -> RuleSet:
    rule_set = session.scalar(
        select(RuleSet).where(RuleSet.tenant_id == tenant_id, RuleSet.name == rule.name)
    )
    if rule_set is None:
        rule_set = RuleSet(tenant_id=tenant_id, name=rule.name)
        session.add(rule_set)
    rule_set.definition = rule.definition()
    session.flush()
    return rule_set


def _write_send_receipts(campaign: Campaign, segment: SegmentResult, *, suppressed_cap: int) -> None:
    for address in segment.eligible:
        campaign.send_receipts.append(SendReceipt(address=address, status=SendStatus.DRY_RUN))
    for s in segment.suppressed[: max(0, suppressed_cap)]:
        campaign.send_receipts.append(
            SendReceipt(address=s.address, status=SendStatus.SUPPRESSED, reason=s.reason.value)
        )
