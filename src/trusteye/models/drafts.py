"""Content draft models.

LLM output is validated against `ContentDraft`, a union discriminated on `kind`. Every member is
strict so unexpected keys fail at the generator boundary instead of leaking into storage.
`DraftPayload` is the normalized record attached to a recommendation once a draft exists.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Section(_Strict):
    heading: str
    body: str


class Cta(_Strict):
    label: str
    url: str | None = None
    phone: str | None = None


class Conflict(_Strict):
    key: str
    note: str


class FactMap(_Strict):
    """Which claim keys a draft relied on and which it could not verify."""

    used_claims: list[str] = Field(default_factory=list)
    missing_claims: list[str] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)


class Snippet(_Strict):
    url: str
    excerpt: str


class LlmEvidence(_Strict):
    provider: str
    excerpt: str
    risk_note: str = ""


class DraftEvidence(_Strict):
    used_snippets: list[Snippet] = Field(default_factory=list)
    llm_evidence: list[LlmEvidence] = Field(default_factory=list)


class _DraftBase(_Strict):
    title: str
    slug: str = ""
    target_url: str = ""
    fact_map: FactMap = Field(default_factory=FactMap)
    evidence: DraftEvidence = Field(default_factory=DraftEvidence)
    next_actions: list[str] = Field(default_factory=list)


class _AnswerDraft(_DraftBase):
    short_answer: str
    details: list[Section] = Field(default_factory=list)
    trust_signals: list[str] = Field(default_factory=list)
    cta: Cta | None = None
    disclosures: list[str] = Field(default_factory=list)


class FaqDraft(_AnswerDraft):
    kind: Literal["FAQ"] = "FAQ"


class TruthBlockDraft(_AnswerDraft):
    kind: Literal["TRUTH_BLOCK"] = "TRUTH_BLOCK"


class BlogDraft(_DraftBase):
    kind: Literal["BLOG"] = "BLOG"
    meta_description: str = ""
    outline: list[str] = Field(default_factory=list)
    draft_markdown: str


class QA(_Strict):
    q: str
    a: str


class ProductDraft(_DraftBase):
    kind: Literal["PRODUCT"] = "PRODUCT"
    product_handle: str
    hero_bullets: list[str] = Field(default_factory=list)
    details_sections: list[Section] = Field(default_factory=list)
    faq: list[QA] = Field(default_factory=list)
    trust_signals: list[str] = Field(default_factory=list)
    cta: Cta | None = None


ContentDraft = Annotated[
    Union[FaqDraft, TruthBlockDraft, BlogDraft, ProductDraft],
    Field(discriminator="kind"),
]

content_draft_adapter: TypeAdapter[ContentDraft] = TypeAdapter(ContentDraft)

DraftKind = Literal["FAQ", "TRUTH_BLOCK", "BLOG", "PRODUCT"]


class DraftPayload(BaseModel):
    """Normalized draft stored on a recommendation.

    `body_markdown` carries verification markers inline; `needs_verification` lists the same
    payloads for programmatic checks.
    """

    kind: DraftKind
    title: str
    slug: str
    target_url: str
    short_answer: str = ""
    body_markdown: str
    facts_used: list[str] = Field(default_factory=list)
    needs_verification: list[str] = Field(default_factory=list)
    llm_evidence: list[LlmEvidence] = Field(default_factory=list)
    provider: str = "openai"
    synthetic: bool = False
    fallback_reason: str | None = None
    edited: bool = False
    structured: ContentDraft | None = None
