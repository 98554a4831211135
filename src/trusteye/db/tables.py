"""SQLAlchemy ORM tables.

Every row is scoped to a tenant, either directly through `tenant_id` or through its parent.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from trusteye.models.enums import (
    Action,
    Actor,
    AssetStatus,
    AssetType,
    CampaignStatus,
    GapType,
    PatchStatus,
    QuestionState,
    QuestionTaxonomy,
    ReceiptKind,
    RecommendationStatus,
    SendStatus,
    Surface,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def _enum(cls: type) -> Enum:
    return Enum(cls, native_enum=False, length=32, validate_strings=True)


class Base(DeclarativeBase):
    """Base class for all tables."""

    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    trust_unsafe_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    trust_caution_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Claim(Base):
    __tablename__ = "claims"
    __table_args__ = (UniqueConstraint("tenant_id", "key", name="uq_claim_tenant_key"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=72)
    freshness_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    scope: Mapped[str] = mapped_column(String(64), nullable=False, default="site")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    evidence: Mapped[list["Evidence"]] = relationship(
        back_populates="claim", order_by="Evidence.captured_at", cascade="all, delete-orphan"
    )


class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    claim_id: Mapped[str] = mapped_column(ForeignKey("claims.id"), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    claim: Mapped[Claim] = relationship(back_populates="evidence")


class Question(Base):
    """A demand signal tracked for coverage. `state` is derived by gap analysis."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    taxonomy: Mapped[QuestionTaxonomy] = mapped_column(
        _enum(QuestionTaxonomy), nullable=False, default=QuestionTaxonomy.GENERAL
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    impact_score: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    state: Mapped[QuestionState] = mapped_column(
        _enum(QuestionState), nullable=False, default=QuestionState.UNANSWERED
    )
    recommended_surface: Mapped[Optional[Surface]] = mapped_column(_enum(Surface), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    needs: Mapped[list["Need"]] = relationship(
        back_populates="question", cascade="all, delete-orphan", order_by="Need.claim_key"
    )
    gaps: Mapped[list["Gap"]] = relationship(
        back_populates="question", cascade="all, delete-orphan"
    )


class Need(Base):
    __tablename__ = "question_needs"
    __table_args__ = (UniqueConstraint("question_id", "claim_key", name="uq_need_question_key"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"), nullable=False, index=True)
    claim_key: Mapped[str] = mapped_column(String(255), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claim_id: Mapped[Optional[str]] = mapped_column(ForeignKey("claims.id"), nullable=True)

    question: Mapped[Question] = relationship(back_populates="needs")
    claim: Mapped[Optional[Claim]] = relationship()


class Gap(Base):
    __tablename__ = "question_gaps"
    __table_args__ = (UniqueConstraint("question_id", "gap_type", name="uq_gap_question_type"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"), nullable=False, index=True)
    gap_type: Mapped[GapType] = mapped_column(_enum(GapType), nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    question: Mapped[Question] = relationship(back_populates="gaps")


class ProbeAnswer(Base):
    """A sampled external (AI assistant) answer to a tenant question."""

    __tablename__ = "probe_answers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    hedging_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    unverifiable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "handle", name="uq_product_tenant_handle"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    handle: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    specs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class Recommendation(Base):
    __tablename__ = "recommendations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "stable_slug", name="uq_recommendation_tenant_slug"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    action: Mapped[Action] = mapped_column(_enum(Action), nullable=False)
    surface: Mapped[Surface] = mapped_column(_enum(Surface), nullable=False)
    status: Mapped[RecommendationStatus] = mapped_column(
        _enum(RecommendationStatus), nullable=False, default=RecommendationStatus.PROPOSED
    )
    stable_slug: Mapped[str] = mapped_column(String(64), nullable=False)
    question_id: Mapped[Optional[str]] = mapped_column(ForeignKey("questions.id"), nullable=True)
    question_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    product_handle: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    theme: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    why: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    impact_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    draft_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Asset(Base):
    __tablename__ = "assets"
    __table_args__ = (UniqueConstraint("tenant_id", "type", "slug", name="uq_asset_tenant_type_slug"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    type: Mapped[AssetType] = mapped_column(_enum(AssetType), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[AssetStatus] = mapped_column(
        _enum(AssetStatus), nullable=False, default=AssetStatus.DRAFT
    )
    target_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    versions: Mapped[list["AssetVersion"]] = relationship(
        back_populates="asset", order_by="AssetVersion.version", cascade="all, delete-orphan"
    )


class AssetVersion(Base):
    __tablename__ = "asset_versions"
    __table_args__ = (UniqueConstraint("asset_id", "version", name="uq_asset_version"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    asset: Mapped[Asset] = relationship(back_populates="versions")


class ProductPatch(Base):
    __tablename__ = "product_patches"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    status: Mapped[PatchStatus] = mapped_column(
        _enum(PatchStatus), nullable=False, default=PatchStatus.DRAFT
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class TrustScoreSnapshot(Base):
    __tablename__ = "trust_score_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    components: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Receipt(Base):
    """Append-only audit entry. See `trusteye.recording.ledger` for the write path."""

    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    kind: Mapped[ReceiptKind] = mapped_column(_enum(ReceiptKind), nullable=False)
    actor: Mapped[Actor] = mapped_column(_enum(Actor), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    input: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class AudienceMember(Base):
    __tablename__ = "audience_members"
    __table_args__ = (UniqueConstraint("tenant_id", "address", name="uq_audience_tenant_address"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class RuleSet(Base):
    __tablename__ = "rule_sets"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_ruleset_tenant_name"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    definition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class SegmentSnapshot(Base):
    __tablename__ = "segment_snapshots"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    rule_set_id: Mapped[str] = mapped_column(ForeignKey("rule_sets.id"), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    suppressed: Mapped[int] = mapped_column(Integer, nullable=False)
    reasons: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    rule_set_id: Mapped[str] = mapped_column(ForeignKey("rule_sets.id"), nullable=False)
    segment_id: Mapped[str] = mapped_column(ForeignKey("segment_snapshots.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    goal: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[CampaignStatus] = mapped_column(
        _enum(CampaignStatus), nullable=False, default=CampaignStatus.READY
    )
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    segment_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    suppressed_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gating: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    send_receipts: Mapped[list["SendReceipt"]] = relationship(
        back_populates="campaign", cascade="all, delete-orphan"
    )


class SendReceipt(Base):
    __tablename__ = "send_receipts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaigns.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[SendStatus] = mapped_column(_enum(SendStatus), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    campaign: Mapped[Campaign] = relationship(back_populates="send_receipts")
