"""Recommendation classifier.

For each demand signal, decide which content action is warranted (CREATE, UPDATE, NO_OP, DEFER,
SKIP) from topical relevance, demand impact, on-site fact coverage, external answer quality and,
for product questions, attribute completeness. Decisions are keyed by a stable slug so
re-running classification updates recommendations in place instead of forking them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from trusteye.config import Settings
from trusteye.db.tables import (
    Asset,
    Claim,
    Evidence,
    ProbeAnswer,
    Product,
    Question,
    Recommendation,
    Tenant,
)
from trusteye.engine.gaps import answer_quality
from trusteye.engine.topics import (
    DEFAULT_RULES,
    GENERAL,
    ThemeInventory,
    TopicRules,
    build_theme_inventory,
    covered_on_page,
    missing_attributes,
    pick_product,
    route_topic,
)
from trusteye.logging import get_logger
from trusteye.memory.knowledge_store import KnowledgeStore
from trusteye.models.enums import (
    ACTION_PRIORITY,
    ACTIONABLE,
    Action,
    Actor,
    AnswerQuality,
    AssetStatus,
    AssetType,
    QuestionState,
    ReceiptKind,
    RecommendationStatus,
    Surface,
)
from trusteye.recording.ledger import ReceiptLedger
from trusteye.utils.slugs import stable_slug

logger = get_logger(__name__)

WEAK_QUALITIES = frozenset({AnswerQuality.WEAK, AnswerQuality.UNVERIFIABLE})


@dataclass(frozen=True)
class ClassifierThresholds:
    impact_min: int = 55
    hedging_weak: int = 70

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassifierThresholds":
        return cls(impact_min=settings.impact_min, hedging_weak=settings.hedging_weak)


@dataclass(frozen=True)
class Decision:
    """Classifier output for one demand signal."""

    action: Action
    surface: Surface
    reason: str
    stable_slug: str
    source_id: str
    question_id: str
    question_text: str
    impact_score: int
    quality: AnswerQuality
    product_handle: str | None = None
    product_title: str | None = None
    theme: str | None = None
    missing_attributes: tuple[str, ...] = ()
    missing_facts: tuple[str, ...] = ()
    faq_missing_on_page: bool = False
    answered: bool = False

    @property
    def priority(self) -> int:
        return ACTION_PRIORITY[self.action]

    @property
    def target_url(self) -> str:
        if self.surface is Surface.PRODUCT and self.product_handle:
            return f"/site/products/{self.product_handle}"
        if self.surface is Surface.BLOG:
            return f"/site/blog/{self.stable_slug}"
        return "/site/faq"

    def evidence(self) -> dict[str, object]:
        return {
            "reason": self.reason,
            "quality": self.quality.value,
            "impact_score": self.impact_score,
            "missing_attributes": list(self.missing_attributes),
            "missing_facts": list(self.missing_facts),
            "faq_missing_on_page": self.faq_missing_on_page,
        }


@dataclass(frozen=True)
class TenantView:
    """Tenant-wide inputs computed once per classification run."""

    tenant_domain: str
    products: Sequence[Product]
    themes: ThemeInventory
    faq_pages: Sequence[str]


def classify_signal(
    question: Question,
    *,
    view: TenantView,
    claims: dict[str, Claim],
    probe: ProbeAnswer | None,
    thresholds: ClassifierThresholds = ClassifierThresholds(),
    rules: TopicRules = DEFAULT_RULES,
) -> Decision:
    """Decide the content action for one demand signal. First matching rule wins.

    Args:
        question: The demand signal with its needs loaded.
        view: Tenant-wide catalog, blog themes and FAQ page texts.
        claims: Tenant claims keyed by claim key (at least those the needs reference).
        probe: Latest external answer sample for the exact question text.
        thresholds: Impact and hedging thresholds.
        rules: Topic term lists.

    Returns:
        The decision, including its stable slug.
    """

    text = question.text
    route = route_topic(text, rules)
    surface = route.surface
    if route.topic == GENERAL and question.recommended_surface is not None:
        surface = question.recommended_surface

    quality = answer_quality(probe, hedging_weak=thresholds.hedging_weak)
    missing_facts = tuple(
        n.claim_key
        for n in question.needs
        if n.required and (claims.get(n.claim_key) is None or not claims[n.claim_key].evidence)
    )
    product = pick_product(text, view.products) if surface is Surface.PRODUCT else None
    theme = view.themes.first_missing_for(text) if surface is Surface.BLOG else None
    faq_missing = surface is Surface.FAQ and not covered_on_page(text, view.faq_pages)

    if surface is Surface.PRODUCT and product is not None:
        source_id = product.handle
    elif surface is Surface.BLOG and theme is not None:
        source_id = theme
    else:
        source_id = question.id

    def decide(action: Action, reason: str, attrs: Iterable[str] = ()) -> Decision:
        return Decision(
            action=action,
            surface=surface,
            reason=reason,
            stable_slug=stable_slug(surface.value, view.tenant_domain, source_id),
            source_id=source_id,
            question_id=question.id,
            question_text=text,
            impact_score=question.impact_score,
            quality=quality,
            product_handle=product.handle if product is not None else None,
            product_title=product.title if product is not None else None,
            theme=theme,
            missing_attributes=tuple(attrs),
            missing_facts=missing_facts,
            faq_missing_on_page=faq_missing,
            answered=question.state is QuestionState.ANSWERED,
        )

    if not route.relevant:
        return decide(Action.SKIP, "Topic is not relevant to this business.")
    if question.impact_score < thresholds.impact_min:
        return decide(
            Action.DEFER,
            f"Impact {question.impact_score} is below the {thresholds.impact_min} threshold.",
        )
    if surface is Surface.PRODUCT:
        if product is None:
            return decide(Action.DEFER, "No catalog item matches this product question.")
        attrs = missing_attributes(product)
        if not attrs and quality not in WEAK_QUALITIES:
            return decide(Action.NO_OP, f"{product.title} already covers every key attribute.")
    if surface is Surface.BLOG and not view.themes.missing:
        return decide(Action.NO_OP, "Existing blog inventory already covers the demanded themes.")
    if not missing_facts and question.state is QuestionState.ANSWERED and quality is AnswerQuality.STRONG:
        return decide(Action.NO_OP, "Answered on-site with evidence and external answers are strong.")

    if surface is Surface.PRODUCT:
        attrs = missing_attributes(product) if product is not None else []
        return decide(Action.CREATE, _create_reason(question, quality, missing_facts, attrs), attrs)
    return decide(Action.CREATE, _create_reason(question, quality, missing_facts, ()))


def _create_reason(
    question: Question, quality: AnswerQuality, missing_facts: Sequence[str], attrs: Sequence[str]
) -> str:
    parts = [f"Demand impact {question.impact_score}", f"state {question.state.value}"]
    if quality is AnswerQuality.NONE:
        parts.append("no external answer sample")
    else:
        parts.append(f"external answer {quality.value}")
    if missing_facts:
        parts.append(f"unverified facts: {', '.join(missing_facts)}")
    if attrs:
        parts.append(f"missing attributes: {', '.join(attrs)}")
    return "; ".join(parts) + "."


def title_for(decision: Decision) -> str:
    q = decision.question_text
    if decision.action in ACTIONABLE:
        if decision.surface is Surface.PRODUCT:
            return f"Enrich product page: {decision.product_title or decision.product_handle}"
        if decision.surface is Surface.BLOG:
            label = (decision.theme or "guide").replace("_", " & ")
            return f"Write a blog guide on {label}: {q}"
        return f"Publish a verified FAQ answer: {q}"
    if decision.action is Action.NO_OP:
        return f"No change needed: {q}"
    if decision.action is Action.DEFER:
        return f"Defer: {q}"
    return f"Skip: {q}"


# Ranking and caps


def rank(decisions: Iterable[Decision]) -> list[Decision]:
    return sorted(decisions, key=lambda d: (d.priority, -d.impact_score, d.stable_slug))


def dedupe(decisions: Iterable[Decision]) -> list[Decision]:
    """Keep one decision per stable slug: the best-ranked one."""

    seen: set[str] = set()
    out: list[Decision] = []
    for d in rank(decisions):
        if d.stable_slug in seen:
            continue
        seen.add(d.stable_slug)
        out.append(d)
    return out


@dataclass(frozen=True)
class SurfaceCaps:
    product: int = 3
    blog: int = 2
    faq: int = 7
    faq_missing_preference: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "SurfaceCaps":
        return cls(
            product=settings.cap_product,
            blog=settings.cap_blog,
            faq=settings.cap_faq,
            faq_missing_preference=settings.faq_missing_preference,
        )


def apply_caps(decisions: Sequence[Decision], caps: SurfaceCaps = SurfaceCaps()) -> list[Decision]:
    """Cap actionable decisions per surface; non-actionable ones pass through.

    FAQ slots go first to up to `faq_missing_preference` questions with no answer on the FAQ page.
    """

    ranked = rank(decisions)
    actionable = [d for d in ranked if d.action in ACTIONABLE]
    kept: list[Decision] = []
    kept += [d for d in actionable if d.surface is Surface.PRODUCT][: caps.product]
    kept += [d for d in actionable if d.surface is Surface.BLOG][: caps.blog]

    faq = [d for d in actionable if d.surface is Surface.FAQ]
    preferred = [d for d in faq if d.faq_missing_on_page][: min(caps.faq_missing_preference, caps.faq)]
    rest = [d for d in faq if d not in preferred][: max(0, caps.faq - len(preferred))]
    kept += preferred + rest

    kept += [d for d in ranked if d.action not in ACTIONABLE]
    return rank(kept)


# Persistence


@dataclass
class ClassificationRun:
    decisions: list[Decision]
    recommendations: list[Recommendation]
    pruned: int
    receipt_id: int
    counts: dict[str, int] = field(default_factory=dict)


def build_tenant_view(session: Session, tenant: Tenant, settings: Settings) -> TenantView:
    """Load catalog, blog theme inventory and FAQ page texts for a tenant."""

    store = KnowledgeStore(session, tenant.id)
    assets = list(session.scalars(select(Asset).where(Asset.tenant_id == tenant.id)))
    evidence_rows = list(
        session.scalars(
            select(Evidence).join(Claim, Evidence.claim_id == Claim.id).where(Claim.tenant_id == tenant.id)
        )
    )

    blog_inventory = [f"{a.title} {a.slug}" for a in assets if a.type is AssetType.BLOG]
    blog_inventory += [
        f"{ev.url} {ev.snippet or ''}" for ev in evidence_rows if "/blog" in ev.url.lower()
    ]
    demand = [
        q.text
        for q in store.list_questions(limit=settings.theme_question_limit)
        if q.impact_score >= settings.theme_impact_min
    ]
    themes = build_theme_inventory(inventory_texts=blog_inventory, demand_texts=demand)

    faq_pages = [
        a.versions[-1].body if a.versions else a.title
        for a in assets
        if a.type in (AssetType.FAQ, AssetType.TRUTH_BLOCK) and a.status is AssetStatus.PUBLISHED
    ]
    faq_pages += [ev.snippet or "" for ev in evidence_rows if "faq" in ev.url.lower()]

    return TenantView(
        tenant_domain=tenant.domain,
        products=store.list_products(),
        themes=themes,
        faq_pages=faq_pages,
    )


def classify_tenant(
    session: Session,
    tenant: Tenant,
    settings: Settings,
    *,
    rules: TopicRules = DEFAULT_RULES,
) -> list[Decision]:
    """Classify the tenant's top questions without writing anything."""

    store = KnowledgeStore(session, tenant.id)
    view = build_tenant_view(session, tenant, settings)
    questions = store.list_questions(limit=settings.question_limit)
    claims = store.claims_by_key({n.claim_key for q in questions for n in q.needs})
    thresholds = ClassifierThresholds.from_settings(settings)
    return [
        classify_signal(
            q,
            view=view,
            claims=claims,
            probe=store.latest_probe_answer(q.text),
            thresholds=thresholds,
            rules=rules,
        )
        for q in questions
    ]


def generate_recommendations(
    session: Session,
    tenant: Tenant,
    settings: Settings,
    ledger: ReceiptLedger,
    *,
    rules: TopicRules = DEFAULT_RULES,
) -> ClassificationRun:
    """Classify, rank, cap and upsert recommendations for a tenant.

    Safe to re-run: rows are matched by stable slug, in-progress work keeps its status, and only
    stale PROPOSED rows are pruned.
    """

    decisions = dedupe(classify_tenant(session, tenant, settings, rules=rules))
    decisions = apply_caps(decisions, SurfaceCaps.from_settings(settings))

    existing = {
        r.stable_slug: r
        for r in session.scalars(select(Recommendation).where(Recommendation.tenant_id == tenant.id))
    }
    kept_slugs: set[str] = set()
    for d in decisions:
        kept_slugs.add(d.stable_slug)
        rec = existing.get(d.stable_slug)
        if rec is None:
            rec = Recommendation(
                tenant_id=tenant.id,
                stable_slug=d.stable_slug,
                action=d.action,
                surface=d.surface,
                status=RecommendationStatus.PROPOSED,
            )
            session.add(rec)
        elif rec.status is RecommendationStatus.PUBLISHED and d.action is Action.CREATE and not d.answered:
            # Published content stays live until its signal loses the ANSWERED state.
            rec.status = RecommendationStatus.PROPOSED
            rec.draft_payload = None
            rec.approved_at = None
            rec.approved_by = None
        _apply_decision(rec, d)

    pruned = 0
    for slug, rec in existing.items():
        if slug not in kept_slugs and rec.status is RecommendationStatus.PROPOSED:
            session.delete(rec)
            pruned += 1
    session.flush()

    counts = dict(Counter(d.action.value for d in decisions))
    actionable = [d for d in decisions if d.action in ACTIONABLE]
    receipt = ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.ORCHESTRATOR,
        summary=f"Generated {len(actionable)} content recommendations.",
        input={"questions": len(decisions), "impact_min": settings.impact_min},
        output={
            "counts": counts,
            "pruned": pruned,
            "actionable": [
                {"slug": d.stable_slug, "surface": d.surface.value, "impact": d.impact_score}
                for d in actionable
            ],
        },
    )
    logger.info(
        "Recommendations generated",
        extra={"tenant": tenant.domain, "counts": counts, "pruned": pruned},
    )
    return ClassificationRun(
        decisions=decisions,
        recommendations=list_recommendations(session, tenant.id),
        pruned=pruned,
        receipt_id=receipt.id,
        counts=counts,
    )


def _apply_decision(rec: Recommendation, d: Decision) -> None:
    rec.action = d.action
    rec.surface = d.surface
    rec.question_id = d.question_id
    rec.question_text = d.question_text
    rec.product_handle = d.product_handle
    rec.theme = d.theme
    rec.title = title_for(d)
    rec.why = d.reason
    rec.target_url = d.target_url
    rec.impact_score = d.impact_score
    rec.evidence = d.evidence()


def list_recommendations(session: Session, tenant_id: str) -> list[Recommendation]:
    """Tenant recommendations ordered by action priority, then impact."""

    rows = session.scalars(select(Recommendation).where(Recommendation.tenant_id == tenant_id))
    return sorted(
        rows,
        key=lambda r: (ACTION_PRIORITY[r.action], -r.impact_score, r.stable_slug),
    )
