"""Gap analysis.

Binds each demand signal's needs to the tenant's claims, records why a signal is not answered
(missing claim, missing proof, stale fact, weak external answer) and derives its state. Gap rows
are upserted or deleted per type so re-running never duplicates them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from trusteye.config import Settings
from trusteye.db.tables import Claim, Gap, ProbeAnswer, Question, Tenant, utcnow
from trusteye.logging import get_logger
from trusteye.memory.knowledge_store import KnowledgeStore
from trusteye.models.enums import Actor, AnswerQuality, GapType, QuestionState, ReceiptKind
from trusteye.recording.ledger import ReceiptLedger

logger = get_logger(__name__)

# Hedging score assumed when the prober did not report one.
DEFAULT_HEDGING = 50


def answer_quality(probe: ProbeAnswer | None, *, hedging_weak: int) -> AnswerQuality:
    """Classify the latest external answer sample for a question."""

    if probe is None:
        return AnswerQuality.NONE
    if probe.unverifiable:
        return AnswerQuality.UNVERIFIABLE
    hedging = probe.hedging_score if probe.hedging_score is not None else DEFAULT_HEDGING
    if hedging >= hedging_weak:
        return AnswerQuality.WEAK
    return AnswerQuality.STRONG


def severity_for(impact: int) -> int:
    return max(40, min(95, impact))


@dataclass
class QuestionGaps:
    state: QuestionState
    gaps: dict[GapType, str] = field(default_factory=dict)


def evaluate_question(
    question: Question,
    claims: dict[str, Claim],
    probe: ProbeAnswer | None,
    *,
    hedging_weak: int,
    stale_before: datetime,
) -> QuestionGaps:
    """Compute gaps and state for one question from already-loaded claims."""

    missing_claim: list[str] = []
    missing_proof: list[str] = []
    stale: list[str] = []
    for need in question.needs:
        claim = claims.get(need.claim_key)
        if claim is None:
            if need.required:
                missing_claim.append(need.claim_key)
            continue
        if need.required and not claim.evidence:
            missing_proof.append(need.claim_key)
        if claim.freshness_at is not None and claim.freshness_at < stale_before:
            stale.append(need.claim_key)

    quality = answer_quality(probe, hedging_weak=hedging_weak)
    llm_weak = quality in (AnswerQuality.WEAK, AnswerQuality.UNVERIFIABLE)

    gaps: dict[GapType, str] = {}
    if missing_claim:
        gaps[GapType.MISSING_CLAIM] = f"No claim for: {', '.join(missing_claim)}"
    if missing_proof:
        gaps[GapType.MISSING_PROOF] = f"No evidence for: {', '.join(missing_proof)}"
    if stale:
        gaps[GapType.STALE] = f"Stale facts: {', '.join(stale)}"
    if llm_weak:
        gaps[GapType.LLM_WEAK] = f"External answer is {quality.value}"

    if missing_claim:
        state = QuestionState.UNANSWERED
    elif llm_weak or missing_proof:
        state = QuestionState.WEAK
    elif stale:
        state = QuestionState.STALE
    else:
        state = QuestionState.ANSWERED
    return QuestionGaps(state=state, gaps=gaps)


@dataclass(frozen=True)
class GapSummary:
    questions: int
    states: dict[str, int]
    gaps: dict[str, int]
    receipt_id: int


def analyze_gaps(
    session: Session,
    tenant: Tenant,
    settings: Settings,
    ledger: ReceiptLedger,
    *,
    now: datetime | None = None,
) -> GapSummary:
    """Refresh need bindings, gap rows and derived states for every tenant question.

    Args:
        session: Database session.
        tenant: Tenant to analyze.
        settings: Thresholds (hedging, freshness).
        ledger: Receipt ledger for the tenant.
        now: Clock override.

    Returns:
        Counts by state and by gap type, and the receipt id.
    """

    store = KnowledgeStore(session, tenant.id)
    stale_before = (now or utcnow()) - timedelta(days=settings.freshness_days)
    questions = store.list_questions()

    all_keys = {n.claim_key for q in questions for n in q.needs}
    claims = store.claims_by_key(all_keys)

    state_counts: Counter[str] = Counter()
    gap_counts: Counter[str] = Counter()
    for question in questions:
        for need in question.needs:
            claim = claims.get(need.claim_key)
            need.claim_id = claim.id if claim is not None else None

        result = evaluate_question(
            question,
            claims,
            store.latest_probe_answer(question.text),
            hedging_weak=settings.hedging_weak,
            stale_before=stale_before,
        )
        _sync_gaps(question, result.gaps)
        question.state = result.state
        state_counts[result.state.value] += 1
        gap_counts.update(g.value for g in result.gaps)

    session.flush()
    receipt = ledger.write(
        kind=ReceiptKind.DECIDE,
        actor=Actor.INTENT_ENGINE,
        summary=f"Gap analysis refreshed {len(questions)} questions.",
        input={"freshness_days": settings.freshness_days, "hedging_weak": settings.hedging_weak},
        output={"states": dict(state_counts), "gaps": dict(gap_counts)},
    )
    logger.info(
        "Gap analysis done",
        extra={"tenant": tenant.domain, "questions": len(questions), "gaps": sum(gap_counts.values())},
    )
    return GapSummary(
        questions=len(questions),
        states=dict(state_counts),
        gaps=dict(gap_counts),
        receipt_id=receipt.id,
    )


def _sync_gaps(question: Question, wanted: dict[GapType, str]) -> None:
    severity = severity_for(question.impact_score)
    existing = {g.gap_type: g for g in question.gaps}
    for gap_type, row in existing.items():
        if gap_type not in wanted:
            question.gaps.remove(row)
    for gap_type, description in wanted.items():
        row = existing.get(gap_type)
        if row is None:
            question.gaps.append(Gap(gap_type=gap_type, severity=severity, description=description))
        else:
            row.severity = severity
            row.description = description
