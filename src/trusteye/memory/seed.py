"""Bulk knowledge import.

Loads crawler/extractor output and the other collaborator feeds (demand signals, catalog, probe
answers, audience, trust score) for one tenant from a single JSON document.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from trusteye.db.tables import Tenant
from trusteye.growth.campaigns import upsert_audience
from trusteye.memory.knowledge_store import ExtractedClaim, KnowledgeStore, NeedInput
from trusteye.models.enums import Actor, QuestionTaxonomy, ReceiptKind, Surface
from trusteye.policy import record_trust_score
from trusteye.recording.ledger import ReceiptLedger


class QuestionInput(BaseModel):
    text: str = Field(min_length=1)
    impact_score: int = Field(ge=1, le=100)
    taxonomy: QuestionTaxonomy = QuestionTaxonomy.GENERAL
    recommended_surface: Surface | None = None
    needs: list[NeedInput] = Field(default_factory=list)


class ProductInput(BaseModel):
    handle: str = Field(min_length=1)
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    specs: dict[str, Any] = Field(default_factory=dict)


class ProbeInput(BaseModel):
    provider: str
    question: str
    answer: str
    hedging: int | None = Field(default=None, ge=0, le=100)
    unverifiable: bool | None = None


class AudienceInput(BaseModel):
    address: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)


class TenantSeed(BaseModel):
    claims: list[ExtractedClaim] = Field(default_factory=list)
    questions: list[QuestionInput] = Field(default_factory=list)
    products: list[ProductInput] = Field(default_factory=list)
    probe_answers: list[ProbeInput] = Field(default_factory=list)
    audience: list[AudienceInput] = Field(default_factory=list)
    trust_score: int | None = Field(default=None, ge=0, le=100)
    trust_components: dict[str, int] = Field(default_factory=dict)


def apply_seed(session: Session, tenant: Tenant, seed: TenantSeed, ledger: ReceiptLedger) -> dict[str, int]:
    """Write every section of `seed` for the tenant and record one READ receipt."""

    store = KnowledgeStore(session, tenant.id)
    ingested = store.ingest(seed.claims)
    for q in seed.questions:
        store.upsert_question(
            text=q.text,
            impact_score=q.impact_score,
            taxonomy=q.taxonomy,
            recommended_surface=q.recommended_surface,
            needs=q.needs,
        )
    for p in seed.products:
        store.upsert_product(
            handle=p.handle, title=p.title, description=p.description, tags=p.tags, specs=p.specs
        )
    for a in seed.probe_answers:
        store.record_probe_answer(
            provider=a.provider,
            question=a.question,
            answer=a.answer,
            hedging=a.hedging,
            unverifiable=a.unverifiable,
        )
    audience = upsert_audience(session, tenant.id, ((m.address, m.attributes) for m in seed.audience))
    if seed.trust_score is not None:
        record_trust_score(session, tenant.id, seed.trust_score, seed.trust_components)

    counts = {
        "claims": ingested.claims_upserted,
        "evidence_added": ingested.evidence_added,
        "questions": len(seed.questions),
        "products": len(seed.products),
        "probe_answers": len(seed.probe_answers),
        "audience": audience,
    }
    ledger.write(
        kind=ReceiptKind.READ,
        actor=Actor.CRAWLER,
        summary=f"Knowledge ingested: {counts['claims']} claims, {counts['evidence_added']} new evidence rows.",
        input={"trust_score": seed.trust_score},
        output=counts,
    )
    return counts
