"""Tests for the recommendation lifecycle operations."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import IRRELEVANT_QUESTION, RETURNS_QUESTION, FakeLLM, find_rec, receipts_of
from trusteye import workflow
from trusteye.config import Settings
from trusteye.content.generator import DraftGenerator
from trusteye.db.tables import Tenant
from trusteye.engine.classifier import generate_recommendations
from trusteye.errors import NotFoundError
from trusteye.models.enums import Actor, ReceiptKind, RecommendationStatus
from trusteye.recording import ReceiptLedger
from trusteye.tenancy import ensure_tenant


@pytest.fixture()
def recommended(session: Session, seeded: Tenant, settings: Settings, ledger: ReceiptLedger) -> Tenant:
    generate_recommendations(session, seeded, settings, ledger)
    return seeded


@pytest.fixture()
def generator(settings: Settings) -> DraftGenerator:
    return DraftGenerator(settings.generator_config())


def test_draft_records_receipt_and_status(
    session: Session, recommended: Tenant, ledger: ReceiptLedger, generator: DraftGenerator
) -> None:
    """It should store the draft, move to DRAFTED and write a CONTENT_ENGINE receipt."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    result = workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator)

    assert result.ok
    assert result.status == "DRAFTED"
    assert rec.status is RecommendationStatus.DRAFTED
    assert rec.draft_payload is not None
    receipt = receipts_of(session, recommended.id)[-1]
    assert (receipt.kind, receipt.actor) == (ReceiptKind.DECIDE, Actor.CONTENT_ENGINE)
    assert receipt.output["synthetic"] is True


def test_manual_edit_reextracts_markers(
    session: Session, recommended: Tenant, ledger: ReceiptLedger
) -> None:
    """It should take markers from the edited body and skip the generator."""

    llm = FakeLLM(error=AssertionError("generator must not run"))
    generator = DraftGenerator(Settings(openai_api_key=None).generator_config(), llm=llm)
    rec = find_rec(session, recommended.id, RETURNS_QUESTION)

    result = workflow.draft_recommendation(
        session,
        recommended,
        rec.id,
        ledger,
        generator=generator,
        override_markdown="We accept returns for [NEEDS_VERIFICATION: returns window].",
    )

    assert result.ok
    assert result.missing_claims == ["returns window"]
    assert rec.draft_payload["edited"] is True
    assert rec.draft_payload["needs_verification"] == ["returns window"]
    assert llm.calls == []


def test_redraft_clears_approval(
    session: Session, recommended: Tenant, ledger: ReceiptLedger, generator: DraftGenerator
) -> None:
    """It should require a fresh approval after the draft changes."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator)
    workflow.approve_recommendation(session, recommended, rec.id, ledger, approved_by="dana")
    assert rec.approved_by == "dana"

    workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator, override_markdown="New")
    assert rec.status is RecommendationStatus.DRAFTED
    assert rec.approved_by is None


def test_approve_requires_draft(session: Session, recommended: Tenant, ledger: ReceiptLedger) -> None:
    """It should refuse to approve a recommendation that was never drafted."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    result = workflow.approve_recommendation(session, recommended, rec.id, ledger)
    assert result.error == "invalid_status"
    assert rec.status is RecommendationStatus.PROPOSED


def test_second_approve_is_noop(
    session: Session, recommended: Tenant, ledger: ReceiptLedger, generator: DraftGenerator
) -> None:
    """It should accept a repeated approval without writing another receipt."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator)
    first = workflow.approve_recommendation(session, recommended, rec.id, ledger, approved_by="dana")
    before = len(receipts_of(session, recommended.id))

    second = workflow.approve_recommendation(session, recommended, rec.id, ledger, approved_by="lee")

    assert first.ok and first.receipt_id is not None
    assert second.ok
    assert second.status == "APPROVED"
    assert second.receipt_id is None
    assert rec.approved_by == "dana"
    assert len(receipts_of(session, recommended.id)) == before


def test_non_actionable_recommendation_cannot_be_drafted(
    session: Session, recommended: Tenant, ledger: ReceiptLedger, generator: DraftGenerator
) -> None:
    """It should report no_action for SKIP/DEFER/NO_OP recommendations."""

    rec = find_rec(session, recommended.id, IRRELEVANT_QUESTION)
    result = workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator)
    assert result.error == "no_action"


def test_dismiss_then_refuse_further_work(
    session: Session, recommended: Tenant, ledger: ReceiptLedger, generator: DraftGenerator
) -> None:
    """It should dismiss once with a SUPPRESS receipt and then refuse drafting or dismissing again."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    result = workflow.dismiss_recommendation(session, recommended, rec.id, ledger, reason="covered elsewhere")

    assert result.ok
    assert rec.status is RecommendationStatus.DISMISSED
    receipt = receipts_of(session, recommended.id)[-1]
    assert (receipt.kind, receipt.actor) == (ReceiptKind.SUPPRESS, Actor.ORCHESTRATOR)
    assert receipt.output == {"reason": "covered elsewhere"}

    assert workflow.dismiss_recommendation(session, recommended, rec.id, ledger).error == "invalid_status"
    again = workflow.draft_recommendation(session, recommended, rec.id, ledger, generator=generator)
    assert again.error == "invalid_status"


def test_unknown_or_foreign_recommendation_raises(
    session: Session, recommended: Tenant, ledger: ReceiptLedger
) -> None:
    """It should not resolve ids outside the tenant."""

    rec = find_rec(session, recommended.id, RETURNS_QUESTION)
    other = ensure_tenant(session, "other.example.com")

    with pytest.raises(NotFoundError) as exc:
        workflow.approve_recommendation(session, other, rec.id, ReceiptLedger(session, other.id))
    assert exc.value.code == "recommendation_not_found"
    with pytest.raises(NotFoundError):
        workflow.get_recommendation(session, recommended.id, "0" * 32)
