"""Recommendation lifecycle: draft, approve, dismiss, publish.

Each operation resolves the recommendation inside the tenant, applies one transition and writes a
receipt. Unknown ids raise `NotFoundError`; everything else comes back as an `OperationResult`.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from trusteye.content.generator import DraftGenerator, gather_context
from trusteye.content.safety import extract_markers
from trusteye.db.tables import Recommendation, Tenant, utcnow
from trusteye.errors import NotFoundError
from trusteye.logging import get_logger
from trusteye.models.drafts import DraftPayload
from trusteye.models.enums import ACTIONABLE, Actor, ReceiptKind, RecommendationStatus, Surface
from trusteye.models.results import OperationResult
from trusteye.publish.pipeline import ExternalPublishTarget, publish_recommendation
from trusteye.recording.ledger import ReceiptLedger

logger = get_logger(__name__)

DRAFTABLE = frozenset(
    {RecommendationStatus.PROPOSED, RecommendationStatus.DRAFTED, RecommendationStatus.APPROVED}
)


def get_recommendation(session: Session, tenant_id: str, rec_id: str) -> Recommendation:
    rec = session.get(Recommendation, rec_id)
    if rec is None or rec.tenant_id != tenant_id:
        raise NotFoundError(f"Unknown recommendation: {rec_id}", code="recommendation_not_found")
    return rec


def draft_recommendation(
    session: Session,
    tenant: Tenant,
    rec_id: str,
    ledger: ReceiptLedger,
    *,
    generator: DraftGenerator,
    override_markdown: str | None = None,
) -> OperationResult:
    """Generate (or manually replace) the draft for a recommendation.

    Args:
        session: Database session.
        tenant: Owning tenant.
        rec_id: Recommendation id.
        ledger: Receipt ledger for the tenant.
        generator: Draft generator; not called when `override_markdown` is given.
        override_markdown: Operator-edited body. Markers are re-extracted from it.

    Returns:
        `ok=True` with status DRAFTED, or `no_action` / `invalid_status`.
    """

    rec = get_recommendation(session, tenant.id, rec_id)
    if rec.action not in ACTIONABLE:
        return OperationResult.failure(
            "no_action",
            f"Recommendation action is {rec.action.value}; there is nothing to draft.",
            status=rec.status.value,
        )
    if rec.status not in DRAFTABLE:
        return OperationResult.failure(
            "invalid_status",
            f"Recommendation is {rec.status.value} and cannot be drafted.",
            status=rec.status.value,
        )

    if override_markdown is not None:
        payload = _edited_payload(rec, override_markdown)
        summary = f"Draft edited manually for {rec.stable_slug}"
    else:
        payload = generator.generate(gather_context(session, tenant, rec))
        summary = f"Draft generated for {rec.stable_slug}"
        if payload.synthetic:
            summary += " (synthetic fallback)"

    rec.draft_payload = payload.model_dump(mode="json")
    rec.status = RecommendationStatus.DRAFTED
    rec.approved_at = None
    rec.approved_by = None
    session.flush()

    receipt = ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.CONTENT_ENGINE,
        summary=summary,
        input={"recommendation_id": rec.id, "surface": rec.surface.value, "edited": payload.edited},
        output={
            "kind": payload.kind,
            "slug": payload.slug,
            "provider": payload.provider,
            "synthetic": payload.synthetic,
            "fallback_reason": payload.fallback_reason,
            "facts_used": payload.facts_used,
            "needs_verification": payload.needs_verification,
        },
    )
    logger.info(
        "Recommendation drafted",
        extra={
            "recommendation_id": rec.id,
            "provider": payload.provider,
            "markers": len(payload.needs_verification),
        },
    )
    return OperationResult.success(
        RecommendationStatus.DRAFTED.value,
        receipt_id=receipt.id,
        missing_claims=payload.needs_verification or None,
        data={"draft": rec.draft_payload},
    )


def approve_recommendation(
    session: Session,
    tenant: Tenant,
    rec_id: str,
    ledger: ReceiptLedger,
    *,
    approved_by: str = "operator",
) -> OperationResult:
    """Mark a drafted recommendation as approved. The safety gate still runs at publish time.

    Approving an already approved recommendation succeeds without a second receipt.
    """

    rec = get_recommendation(session, tenant.id, rec_id)
    if rec.status is RecommendationStatus.APPROVED:
        return OperationResult.success(RecommendationStatus.APPROVED.value)
    if rec.status is not RecommendationStatus.DRAFTED:
        return OperationResult.failure(
            "invalid_status",
            f"Recommendation is {rec.status.value}; only DRAFTED recommendations can be approved.",
            status=rec.status.value,
        )
    if not rec.draft_payload:
        return OperationResult.failure(
            "draft_missing", "Recommendation has no draft to approve.", status=rec.status.value
        )

    rec.status = RecommendationStatus.APPROVED
    rec.approved_at = utcnow()
    rec.approved_by = approved_by
    session.flush()
    receipt = ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.ORCHESTRATOR,
        summary=f"Draft approved for {rec.stable_slug}",
        input={"recommendation_id": rec.id},
        output={"approved_by": approved_by},
    )
    return OperationResult.success(RecommendationStatus.APPROVED.value, receipt_id=receipt.id)


def dismiss_recommendation(
    session: Session,
    tenant: Tenant,
    rec_id: str,
    ledger: ReceiptLedger,
    *,
    reason: str = "",
) -> OperationResult:
    rec = get_recommendation(session, tenant.id, rec_id)
    if rec.status in (RecommendationStatus.PUBLISHED, RecommendationStatus.DISMISSED):
        return OperationResult.failure(
            "invalid_status",
            f"Recommendation is {rec.status.value} and cannot be dismissed.",
            status=rec.status.value,
        )
    rec.status = RecommendationStatus.DISMISSED
    session.flush()
    receipt = ledger.write(
        kind=ReceiptKind.SUPPRESS,
        actor=Actor.ORCHESTRATOR,
        summary=f"Recommendation dismissed: {rec.stable_slug}",
        input={"recommendation_id": rec.id},
        output={"reason": reason or None},
    )
    return OperationResult.success(RecommendationStatus.DISMISSED.value, receipt_id=receipt.id)


def publish(
    session: Session,
    tenant: Tenant,
    rec_id: str,
    ledger: ReceiptLedger,
    *,
    target: ExternalPublishTarget | None = None,
) -> OperationResult:
    rec = get_recommendation(session, tenant.id, rec_id)
    return publish_recommendation(session, tenant, rec, ledger, target=target)


def _edited_payload(rec: Recommendation, body: str) -> DraftPayload:
    if rec.draft_payload:
        base = DraftPayload.model_validate(rec.draft_payload)
    else:
        slug = rec.product_handle if rec.product_handle and rec.surface is Surface.PRODUCT else rec.stable_slug
        base = DraftPayload(
            kind=rec.surface.value,
            title=rec.title,
            slug=slug,
            target_url=rec.target_url,
            body_markdown="",
            provider="manual",
        )
    return base.model_copy(
        update={
            "body_markdown": body,
            "needs_verification": extract_markers(body),
            "edited": True,
            "structured": None,
        }
    )
