"""Publish pipeline.

Writes an approved draft to its surface. FAQ, truth-block and blog drafts become Asset rows keyed by
`(tenant, type, slug)` with an immutable AssetVersion per publish; product drafts become a single
live ProductPatch per product. Every attempt leaves exactly one CONTENT_ENGINE receipt: PUBLISH on
success, SUPPRESS when the safety gate or a missing product blocks it. An optional external target
gets its own DELIVERY receipt and never undoes the internal publish.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from trusteye.content import safety
from trusteye.db.tables import (
    Asset,
    AssetVersion,
    Product,
    ProductPatch,
    Question,
    Recommendation,
    Tenant,
    utcnow,
)
from trusteye.errors import NeedsVerificationError, UpstreamError
from trusteye.logging import get_logger, log_exception
from trusteye.models.drafts import DraftPayload
from trusteye.models.enums import (
    Actor,
    AssetStatus,
    AssetType,
    PatchStatus,
    QuestionState,
    ReceiptKind,
    RecommendationStatus,
    Surface,
)
from trusteye.models.results import OperationResult
from trusteye.recording.ledger import ReceiptLedger

logger = get_logger(__name__)

PUBLISHABLE = frozenset({RecommendationStatus.APPROVED, RecommendationStatus.PUBLISHED})


@dataclass(frozen=True)
class PublishedContent:
    """What an external target receives after an internal publish."""

    kind: str
    slug: str
    title: str
    body_markdown: str
    target_url: str
    product_handle: str | None = None


class ExternalPublishTarget(Protocol):
    """Optional storefront/CMS that mirrors published content."""

    name: str

    def deliver(self, content: PublishedContent) -> dict[str, Any]:
        """Write the content externally; raise `UpstreamError` on failure."""


def target_url_for(kind: str, slug: str, product_handle: str | None = None) -> str:
    if kind == "PRODUCT" and product_handle:
        return f"/site/products/{product_handle}"
    if kind == "BLOG":
        return f"/site/blog/{slug}"
    return "/site/faq"


def publish_recommendation(
    session: Session,
    tenant: Tenant,
    rec: Recommendation,
    ledger: ReceiptLedger,
    *,
    target: ExternalPublishTarget | None = None,
    now: datetime | None = None,
) -> OperationResult:
    """Publish an approved recommendation's draft.

    Args:
        session: Database session.
        tenant: Owning tenant.
        rec: Recommendation in APPROVED (or already PUBLISHED, to republish) status.
        ledger: Receipt ledger for the tenant.
        target: Optional external publish target.
        now: Clock override.

    Returns:
        `ok=True` with status PUBLISHED, or a structured failure (`needs_verification`,
        `product_not_found`, `invalid_status`, `draft_missing`).
    """

    if rec.status not in PUBLISHABLE:
        return OperationResult.failure(
            "invalid_status",
            f"Recommendation is {rec.status.value}; it must be APPROVED before publishing.",
            status=rec.status.value,
        )
    if not rec.draft_payload:
        return OperationResult.failure(
            "draft_missing", "Recommendation has no draft to publish.", status=rec.status.value
        )

    draft = DraftPayload.model_validate(rec.draft_payload)
    try:
        safety.enforce(draft)
    except NeedsVerificationError as e:
        receipt = ledger.write(
            kind=ReceiptKind.SUPPRESS,
            actor=Actor.CONTENT_ENGINE,
            summary="Publish blocked: needs verification",
            input={"recommendation_id": rec.id, "slug": draft.slug, "surface": rec.surface.value},
            output={"missing_claims": e.markers},
        )
        logger.info("Publish blocked by safety gate", extra={"recommendation_id": rec.id, "markers": e.markers})
        return OperationResult.failure(
            e.code,
            f"Publish blocked until these facts are verified: {', '.join(e.markers)}",
            status=rec.status.value,
            missing_claims=e.markers,
            receipt_id=receipt.id,
        )

    now = now or utcnow()
    if rec.surface is Surface.PRODUCT:
        product = _find_product(session, tenant.id, rec.product_handle)
        if product is None:
            receipt = ledger.write(
                kind=ReceiptKind.SUPPRESS,
                actor=Actor.CONTENT_ENGINE,
                summary="Publish blocked: product not found",
                input={"recommendation_id": rec.id, "product_handle": rec.product_handle},
                output={"error": "product_not_found"},
            )
            return OperationResult.failure(
                "product_not_found",
                f"No catalog product with handle '{rec.product_handle}'.",
                status=rec.status.value,
                receipt_id=receipt.id,
            )
        patch = publish_product_patch(session, tenant.id, product, draft, now=now)
        content = PublishedContent(
            kind="PRODUCT",
            slug=product.handle,
            title=patch.title,
            body_markdown=patch.body,
            target_url=target_url_for("PRODUCT", product.handle, product.handle),
            product_handle=product.handle,
        )
        output: dict[str, Any] = {"patch_id": patch.id, "revision": patch.revision}
        summary = f"Published product update for {product.handle}"
    else:
        asset, version = publish_asset(session, tenant.id, draft, now=now)
        content = PublishedContent(
            kind=asset.type.value,
            slug=asset.slug,
            title=asset.title,
            body_markdown=version.body,
            target_url=asset.target_url,
        )
        output = {"asset_id": asset.id, "version": version.version}
        summary = f"Published {asset.type.value} asset {asset.slug} (v{version.version})"

    rec.status = RecommendationStatus.PUBLISHED
    _mark_answered(session, rec.question_id)
    session.flush()

    output["target_url"] = content.target_url
    receipt = ledger.write(
        kind=ReceiptKind.PUBLISH,
        actor=Actor.CONTENT_ENGINE,
        summary=summary,
        input={"recommendation_id": rec.id, "slug": content.slug, "surface": rec.surface.value},
        output=output,
    )
    logger.info("Published", extra={"recommendation_id": rec.id, **output})

    delivery = None
    if target is not None:
        delivery = deliver_external(ledger, target, content)

    return OperationResult.success(
        RecommendationStatus.PUBLISHED.value,
        receipt_id=receipt.id,
        data={**output, "delivery": delivery},
    )


def publish_asset(
    session: Session, tenant_id: str, draft: DraftPayload, *, now: datetime
) -> tuple[Asset, AssetVersion]:
    """Find-or-create the asset for the draft's slug and append the next version."""

    asset_type = AssetType(draft.kind)
    asset = session.scalar(
        select(Asset).where(
            Asset.tenant_id == tenant_id, Asset.type == asset_type, Asset.slug == draft.slug
        )
    )
    if asset is None:
        asset = Asset(tenant_id=tenant_id, type=asset_type, slug=draft.slug, title=draft.title)
        session.add(asset)
        session.flush()

    current = session.scalar(
        select(func.max(AssetVersion.version)).where(AssetVersion.asset_id == asset.id)
    )
    version = AssetVersion(
        asset_id=asset.id,
        version=(current or 0) + 1,
        title=draft.title,
        body=draft.body_markdown,
        payload=draft.model_dump(mode="json"),
    )
    asset.versions.append(version)
    asset.title = draft.title
    asset.status = AssetStatus.PUBLISHED
    asset.target_url = target_url_for(draft.kind, draft.slug)
    asset.published_at = now
    session.flush()
    return asset, version


def publish_product_patch(
    session: Session, tenant_id: str, product: Product, draft: DraftPayload, *, now: datetime
) -> ProductPatch:
    """Publish the product's patch, reusing its DRAFT or live row so republishing never stacks."""

    patches = list(
        session.scalars(
            select(ProductPatch)
            .where(ProductPatch.tenant_id == tenant_id, ProductPatch.product_id == product.id)
            .order_by(ProductPatch.updated_at.desc())
        )
    )
    patch = next((p for p in patches if p.status is PatchStatus.DRAFT), None)
    if patch is None:
        patch = next((p for p in patches if p.status is PatchStatus.PUBLISHED), None)
    if patch is None:
        patch = ProductPatch(tenant_id=tenant_id, product_id=product.id, title=draft.title, revision=0)
        session.add(patch)

    for other in patches:
        if other is not patch and other.status is PatchStatus.PUBLISHED:
            other.status = PatchStatus.SUPERSEDED

    patch.title = draft.title
    patch.body = draft.body_markdown
    patch.payload = draft.model_dump(mode="json")
    patch.status = PatchStatus.PUBLISHED
    patch.revision = (patch.revision or 0) + 1
    patch.published_at = now
    session.flush()
    return patch


def deliver_external(
    ledger: ReceiptLedger, target: ExternalPublishTarget, content: PublishedContent
) -> dict[str, Any]:
    """Mirror published content to an external target and record the outcome.

    Any failure of the target becomes a SUPPRESS/DELIVERY receipt; the internal publish stands.
    """

    try:
        result = target.deliver(content)
    except Exception as e:
        if isinstance(e, UpstreamError):
            message, status_code = e.message, e.status_code
            logger.warning(
                "External publish failed",
                extra={"target": target.name, "slug": content.slug, "error": message, "status_code": status_code},
            )
        else:
            message, status_code = f"{type(e).__name__}: {e}", None
            log_exception(logger, "External publish crashed", target=target.name, slug=content.slug)
        receipt = ledger.write(
            kind=ReceiptKind.SUPPRESS,
            actor=Actor.DELIVERY,
            summary=f"External publish to {target.name} failed",
            input={"kind": content.kind, "slug": content.slug},
            output={"error": message, "status_code": status_code},
        )
        return {"ok": False, "target": target.name, "error": message, "receipt_id": receipt.id}

    receipt = ledger.write(
        kind=ReceiptKind.PUBLISH,
        actor=Actor.DELIVERY,
        summary=f"Published to {target.name}",
        input={"kind": content.kind, "slug": content.slug},
        output=result,
    )
    return {"ok": True, "target": target.name, "receipt_id": receipt.id, **result}


def _find_product(session: Session, tenant_id: str, handle: str | None) -> Product | None:
    if not handle:
        return None
    return session.scalar(select(Product).where(Product.tenant_id == tenant_id, Product.handle == handle))


def _mark_answered(session: Session, question_id: str | None) -> None:
    if not question_id:
        return
    question = session.get(Question, question_id)
    if question is None:
        return
    question.state = QuestionState.ANSWERED
    question.gaps.clear()
