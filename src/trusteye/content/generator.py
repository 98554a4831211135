"""Draft generation.

Drafts are produced strictly from the tenant's verified claims and evidence. The LLM output is
validated against the `ContentDraft` union at this boundary; when the model is not configured,
fails, times out or returns something that does not validate, a deterministic synthetic draft is
built from the same facts instead, labeled as such, so drafting never stalls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy.orm import Session

from trusteye.config import GeneratorConfig
from trusteye.content.render import render_draft
from trusteye.content.safety import extract_markers, render_marker
from trusteye.db.tables import Claim, Product, Question, Recommendation, Tenant
from trusteye.engine.topics import missing_attributes, product_haystack
from trusteye.errors import ConfigError, UpstreamError
from trusteye.llm.client import ChatMessage, ChatModel, LLMClient
from trusteye.logging import get_logger
from trusteye.memory.knowledge_store import KnowledgeStore
from trusteye.models.drafts import (
    QA,
    BlogDraft,
    ContentDraft,
    DraftEvidence,
    DraftPayload,
    FactMap,
    FaqDraft,
    LlmEvidence,
    ProductDraft,
    Section,
    Snippet,
    content_draft_adapter,
)
from trusteye.models.enums import Surface
from trusteye.prompts import BLOG_DRAFT_PROMPT, DRAFT_SYSTEM_PROMPT, FAQ_DRAFT_PROMPT, PRODUCT_DRAFT_PROMPT
from trusteye.utils.tags import extract_json_object

logger = get_logger(__name__)

SYNTHETIC_PROVIDER = "synthetic"
MAX_FACTS = 12
MAX_ANSWER_SAMPLES = 4
EXCERPT_CHARS = 280

_EXPECTED_KINDS: dict[Surface, frozenset[str]] = {
    Surface.FAQ: frozenset({"FAQ", "TRUTH_BLOCK"}),
    Surface.BLOG: frozenset({"BLOG"}),
    Surface.PRODUCT: frozenset({"PRODUCT"}),
}


@dataclass(frozen=True)
class VerifiedFact:
    key: str
    value: str
    snippets: tuple[Snippet, ...]


@dataclass(frozen=True)
class AnswerSample:
    provider: str
    answer: str
    hedging: int | None


@dataclass(frozen=True)
class DraftContext:
    """Everything a draft may be built from."""

    tenant_domain: str
    surface: Surface
    title: str
    question: str
    slug: str
    target_url: str
    theme: str | None = None
    facts: tuple[VerifiedFact, ...] = ()
    missing: tuple[str, ...] = ()
    answers: tuple[AnswerSample, ...] = ()
    product: Product | None = None
    product_gaps: tuple[str, ...] = field(default_factory=tuple)


def gather_context(session: Session, tenant: Tenant, rec: Recommendation) -> DraftContext:
    """Collect verified facts, missing required facts and answer samples for a recommendation.

    Only claims with at least one evidence row count as verified.
    """

    store = KnowledgeStore(session, tenant.id)
    question = session.get(Question, rec.question_id) if rec.question_id else None

    facts: dict[str, VerifiedFact] = {}
    missing: list[str] = []
    if question is not None:
        bound = store.claims_by_key([n.claim_key for n in question.needs])
        for need in question.needs:
            claim = bound.get(need.claim_key)
            if claim is not None and claim.evidence:
                facts[claim.key] = _fact(claim)
            elif need.required:
                missing.append(need.claim_key)

    product = store.get_product(rec.product_handle) if rec.product_handle else None
    query = " ".join(filter(None, [rec.question_text, product.title if product else None, rec.theme]))
    for claim, _score in store.retrieve_scored(query=query, top_k=MAX_FACTS):
        if len(facts) >= MAX_FACTS:
            break
        facts.setdefault(claim.key, _fact(claim))

    answers = tuple(
        AnswerSample(provider=a.provider, answer=a.answer, hedging=a.hedging_score)
        for a in store.recent_probe_answers(rec.question_text, limit=MAX_ANSWER_SAMPLES)
    )
    slug = rec.product_handle if rec.surface is Surface.PRODUCT and rec.product_handle else rec.stable_slug
    return DraftContext(
        tenant_domain=tenant.domain,
        surface=rec.surface,
        title=rec.title,
        question=rec.question_text,
        slug=slug,
        target_url=rec.target_url,
        theme=rec.theme,
        facts=tuple(facts.values()),
        missing=tuple(missing),
        answers=answers,
        product=product,
        product_gaps=tuple(missing_attributes(product)) if product is not None else (),
    )


def _fact(claim: Claim) -> VerifiedFact:
    return VerifiedFact(
        key=claim.key,
        value=claim.value,
        snippets=tuple(
            Snippet(url=ev.url, excerpt=(ev.snippet or "")[:EXCERPT_CHARS]) for ev in claim.evidence[-3:]
        ),
    )


class DraftGenerator:
    """Generate drafts with an LLM, falling back to a synthetic draft."""

    def __init__(self, config: GeneratorConfig, llm: ChatModel | None = None) -> None:
        self._config = config
        self._llm = llm
        self._llm_error: str | None = None
        if self._llm is None and config.enabled:
            try:
                self._llm = LLMClient(config)
            except ConfigError as e:
                self._llm_error = e.message

    def generate(self, ctx: DraftContext) -> DraftPayload:
        """Produce a draft payload for `ctx`.

        Args:
            ctx: Draft inputs gathered from the knowledge store.

        Returns:
            A normalized payload. `synthetic` is set when the LLM path was not used.
        """

        if self._llm is None:
            reason = "llm_not_configured"
            return self._synthetic(ctx, reason=reason, error=self._llm_error)

        try:
            draft = self._call_llm(ctx)
        except UpstreamError as e:
            logger.warning(
                "Draft generation degraded to synthetic draft",
                extra={"service": e.service, "status_code": e.status_code, "error": e.message},
            )
            return self._synthetic(ctx, reason="llm_unavailable_or_timed_out", error=e.message)
        except (ValidationError, ValueError) as e:
            logger.warning("LLM draft failed validation; using synthetic draft", extra={"error": str(e)[:400]})
            return self._synthetic(ctx, reason="invalid_draft_schema", error=str(e)[:400])

        return self._finalize(ctx, draft, provider=getattr(self._llm, "provider", self._config.provider))

    def _call_llm(self, ctx: DraftContext) -> ContentDraft:
        assert self._llm is not None
        messages = [
            ChatMessage(role="system", content=DRAFT_SYSTEM_PROMPT),
            ChatMessage(role="user", content=build_prompt(ctx)),
        ]
        raw = self._llm.complete(messages, temperature=self._config.temperature)
        data = extract_json_object(raw)
        if data is None:
            raise ValueError(f"LLM output has no JSON object: {raw[:200]!r}")
        draft = content_draft_adapter.validate_python(data)
        if draft.kind not in _EXPECTED_KINDS[ctx.surface]:
            raise ValueError(f"Draft kind {draft.kind} does not fit surface {ctx.surface.value}")
        return draft

    def _finalize(
        self,
        ctx: DraftContext,
        draft: ContentDraft,
        *,
        provider: str,
        synthetic: bool = False,
        fallback_reason: str | None = None,
    ) -> DraftPayload:
        known = {f.key for f in ctx.facts}
        missing = _merge(draft.fact_map.missing_claims, ctx.missing)
        draft.slug = ctx.slug
        draft.target_url = ctx.target_url
        draft.fact_map.missing_claims = missing
        draft.fact_map.used_claims = [k for k in draft.fact_map.used_claims if k in known]
        if isinstance(draft, ProductDraft) and ctx.product is not None:
            draft.product_handle = ctx.product.handle

        body = render_draft(draft, missing)
        return DraftPayload(
            kind=draft.kind,
            title=draft.title,
            slug=ctx.slug,
            target_url=ctx.target_url,
            short_answer=getattr(draft, "short_answer", "") or "",
            body_markdown=body,
            facts_used=list(draft.fact_map.used_claims),
            needs_verification=_merge(extract_markers(body), missing),
            llm_evidence=list(draft.evidence.llm_evidence),
            provider=provider,
            synthetic=synthetic,
            fallback_reason=fallback_reason,
            structured=draft,
        )

    def _synthetic(self, ctx: DraftContext, *, reason: str, error: str | None) -> DraftPayload:
        draft = synthetic_draft(ctx, reason=reason)
        payload = self._finalize(
            ctx, draft, provider=SYNTHETIC_PROVIDER, synthetic=True, fallback_reason=reason
        )
        if error:
            payload.fallback_reason = f"{reason}: {error}"
        return payload


def build_prompt(ctx: DraftContext) -> str:
    """Fill the surface-specific prompt template."""

    facts = "\n".join(f"- {f.key}: {f.value}" for f in ctx.facts) or "(none)"
    evidence = "\n".join(
        f"- {s.url}: {s.excerpt}" for f in ctx.facts for s in f.snippets if s.excerpt
    ) or "(none)"
    answers = "\n".join(
        f"- [{a.provider}] {a.answer[:EXCERPT_CHARS]}" for a in ctx.answers
    ) or "(none)"
    missing = "\n".join(f"- {m}" for m in ctx.missing) or "(none)"
    common = {
        "tenant": ctx.tenant_domain,
        "question": ctx.question,
        "target_url": ctx.target_url,
        "facts": facts,
        "evidence": evidence,
        "answers": answers,
        "missing": missing,
    }
    if ctx.surface is Surface.BLOG:
        return BLOG_DRAFT_PROMPT.format(theme=ctx.theme or "general", **common)
    if ctx.surface is Surface.PRODUCT and ctx.product is not None:
        return PRODUCT_DRAFT_PROMPT.format(
            product_title=ctx.product.title,
            product_handle=ctx.product.handle,
            missing_attributes=", ".join(ctx.product_gaps) or "(none)",
            product_data=product_haystack(ctx.product),
            **common,
        )
    return FAQ_DRAFT_PROMPT.format(**common)


def synthetic_draft(ctx: DraftContext, *, reason: str) -> ContentDraft:
    """Deterministic draft that states only the verified facts in `ctx`.

    When nothing is verified the answer itself is marked as needing verification, so such a draft
    can never pass the safety gate.
    """

    label = f"Synthetic draft ({reason}): built only from verified facts. Review before publishing."
    missing = list(ctx.missing)
    if not ctx.facts:
        missing.append(f"verified answer for: {ctx.question or ctx.title}")
    fact_map = FactMap(used_claims=[f.key for f in ctx.facts], missing_claims=missing)
    evidence = DraftEvidence(
        used_snippets=[s for f in ctx.facts for s in f.snippets][:MAX_FACTS],
        llm_evidence=[
            LlmEvidence(
                provider=a.provider,
                excerpt=a.answer[:EXCERPT_CHARS],
                risk_note=f"hedging {a.hedging}" if a.hedging is not None else "",
            )
            for a in ctx.answers
        ],
    )
    sections = [Section(heading=_label(f.key), body=_sourced(f)) for f in ctx.facts]

    if ctx.surface is Surface.BLOG:
        lines = [label, ""]
        if ctx.question:
            lines += [f"Readers ask: {ctx.question}", ""]
        for s in sections:
            lines += [f"## {s.heading}", s.body, ""]
        return BlogDraft(
            title=ctx.title,
            meta_description=(ctx.facts[0].value[:155] if ctx.facts else ctx.title[:155]),
            outline=[s.heading for s in sections],
            draft_markdown="\n".join(lines),
            fact_map=fact_map,
            evidence=evidence,
        )

    if ctx.surface is Surface.PRODUCT and ctx.product is not None:
        return ProductDraft(
            title=f"{ctx.product.title} verified update",
            product_handle=ctx.product.handle,
            hero_bullets=[f.value for f in ctx.facts[:5]],
            details_sections=sections,
            faq=[QA(q=ctx.question, a=ctx.facts[0].value)] if ctx.facts and ctx.question else [],
            trust_signals=[label],
            fact_map=fact_map,
            evidence=evidence,
            next_actions=[f"Document {attr.replace('_', ' ')} on the product page" for attr in ctx.product_gaps],
        )

    short = ctx.facts[0].value if ctx.facts else render_marker(missing[-1])
    return FaqDraft(
        title=ctx.question or ctx.title,
        short_answer=short,
        details=sections[1:] if ctx.facts else [],
        disclosures=[label],
        fact_map=fact_map,
        evidence=evidence,
    )


def _label(key: str) -> str:
    return key.replace(".", " ").replace("_", " ").strip().capitalize()


def _sourced(fact: VerifiedFact) -> str:
    urls = sorted({s.url for s in fact.snippets})
    if not urls:
        return fact.value
    return f"{fact.value} (source: {', '.join(urls)})"


def _merge(*groups: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for group in groups:
        for x in group:
            if x and x not in seen:
                out.append(x)
                seen.add(x)
    return out
