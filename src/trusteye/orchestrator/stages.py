"""Orchestrator stages.

Each stage takes the run state and a shared context and returns what it read, decided and did,
plus a patch of facts for later stages. Receipts written through `ctx.ledger` during a stage are
attached to its trace by the runner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from trusteye import policy as trust_policy
from trusteye import workflow
from trusteye.config import Settings
from trusteye.content.generator import DraftGenerator
from trusteye.db.tables import Campaign, Claim, Question, Receipt, Recommendation, Tenant
from trusteye.engine.classifier import generate_recommendations
from trusteye.engine.gaps import analyze_gaps
from trusteye.growth.campaigns import create_campaign
from trusteye.models.enums import Action, Actor, Command, ReceiptKind, RecommendationStatus, StageName
from trusteye.models.results import OperationResult, StageTrace
from trusteye.orchestrator.state import RunState
from trusteye.publish.pipeline import ExternalPublishTarget
from trusteye.recording.ledger import ReceiptLedger

_REC_ID_RE = re.compile(r"\b([0-9a-f]{32})\b", re.I)
_APPROVER_RE = re.compile(r"\bby\s+(?:\"([^\"]+)\"|([A-Za-z0-9 ._@-]+))", re.I)

CONTENT_COMMANDS = frozenset({Command.DRAFT_CONTENT, Command.APPROVE_CONTENT, Command.PUBLISH_CONTENT})


@dataclass
class StageContext:
    session: Session
    tenant: Tenant
    settings: Settings
    ledger: ReceiptLedger
    generator: DraftGenerator
    target: ExternalPublishTarget | None = None


StageFn = Callable[[RunState, StageContext], "tuple[StageTrace, dict[str, Any]]"]


def extract_recommendation_id(text: str) -> str | None:
    m = _REC_ID_RE.search(text or "")
    return m.group(1).lower() if m else None


def extract_approver(text: str) -> str | None:
    m = _APPROVER_RE.search(text or "")
    if not m:
        return None
    return (m.group(1) or m.group(2) or "").strip() or None


def analyzer(state: RunState, ctx: StageContext) -> tuple[StageTrace, dict[str, Any]]:
    trace = StageTrace(stage=StageName.ANALYZER)
    trace.read.append("Tenant questions, needs, bound claims and latest probe answers.")

    if state.command in (Command.ANALYZE_GAPS, Command.RECOMMEND_CONTENT):
        trace.decide.append("Refresh gap rows and question states before anything reads them.")
        summary = analyze_gaps(ctx.session, ctx.tenant, ctx.settings, ctx.ledger)
        trace.do.append(f"Gap analysis over {summary.questions} questions.")
        return trace, {
            "facts": {
                "questions": summary.questions,
                "question_states": summary.states,
                "gap_counts": summary.gaps,
            }
        }

    trace.decide.append("No gap refresh needed for this command.")
    questions = ctx.session.scalar(
        select(func.count()).select_from(Question).where(Question.tenant_id == ctx.tenant.id)
    )
    return trace, {"facts": {"questions": int(questions or 0)}}


def knowledge(state: RunState, ctx: StageContext) -> tuple[StageTrace, dict[str, Any]]:
    trace = StageTrace(stage=StageName.KNOWLEDGE)
    trace.read.append("Claims with evidence, catalog products and current recommendations.")

    if state.command is Command.RECOMMEND_CONTENT:
        trace.decide.append("Classify every signal and keep the top actionable ones per surface.")
        run = generate_recommendations(ctx.session, ctx.tenant, ctx.settings, ctx.ledger)
        actionable = [
            r for r in run.recommendations if r.status is RecommendationStatus.PROPOSED and r.action is Action.CREATE
        ]
        trace.do.append(f"Upserted recommendations; pruned {run.pruned} stale proposals.")
        return trace, {
            "facts": {
                "decision_counts": run.counts,
                "recommendations": [
                    {"id": r.id, "slug": r.stable_slug, "surface": r.surface.value, "title": r.title}
                    for r in actionable
                ],
            }
        }

    if state.command in CONTENT_COMMANDS:
        rec_id = state.recommendation_id or extract_recommendation_id(state.free_text)
        if rec_id is None:
            trace.decide.append("No recommendation id supplied; nothing to do.")
            result = OperationResult.failure(
                "recommendation_required", "This command needs a recommendation id."
            )
            return trace, {"facts": {"operation": result.model_dump(exclude_none=True)}}

        result = _content_operation(state, ctx, rec_id, trace)
        facts: dict[str, Any] = {
            "operation": result.model_dump(exclude={"data"}, exclude_none=True),
            "recommendation_id": rec_id,
        }
        if "draft" in result.data:
            facts["draft_provider"] = result.data["draft"].get("provider")
        return trace, {"facts": facts}

    trace.decide.append("No knowledge actions required for this command.")
    claims = ctx.session.scalar(
        select(func.count()).select_from(Claim).where(Claim.tenant_id == ctx.tenant.id)
    )
    return trace, {
        "facts": {
            "claims": int(claims or 0),
            "open_recommendations": open_recommendations(ctx.session, ctx.tenant.id),
        }
    }


def trust(state: RunState, ctx: StageContext) -> tuple[StageTrace, dict[str, Any]]:
    trace = StageTrace(stage=StageName.TRUST)
    trace.read.append("Latest trust score snapshot and tenant zone thresholds.")
    pol, reading = trust_policy.tenant_policy(ctx.session, ctx.tenant, ctx.settings)
    trace.decide.append(f"Trust {reading.total}/100 puts the tenant in zone {pol.zone.value}.")

    if state.command is Command.CHECK_TRUST:
        ctx.ledger.write(
            kind=ReceiptKind.DECIDE,
            actor=Actor.TRUST_ENGINE,
            summary=f"Policy computed: zone {pol.zone.value}, trust {reading.total}/100.",
            input={"trust_total": reading.total, "trust_default": reading.is_default, "snapshot_id": reading.snapshot_id},
            output=pol.as_dict(),
        )
        trace.do.append("Recorded the policy decision.")

    return trace, {
        "facts": {
            "trust": {
                "total": reading.total,
                "default": reading.is_default,
                "zone": pol.zone.value,
                "allowed": list(pol.allowed),
                "blocked": list(pol.blocked),
            }
        }
    }


def growth(state: RunState, ctx: StageContext) -> tuple[StageTrace, dict[str, Any]]:
    trace = StageTrace(stage=StageName.GROWTH)
    trace.read.append("Audience members, rule sets and trust policy.")

    if state.command is not Command.LAUNCH_CAMPAIGN:
        trace.decide.append("No growth actions requested.")
        if state.command is Command.SUMMARIZE:
            return trace, {"facts": {"campaigns": campaign_count(ctx.session, ctx.tenant.id)}}
        return trace, {}

    trace.decide.append("Create the referral segment as a dry-run, only if the trust gate passes.")
    result = create_campaign(ctx.session, ctx.tenant, ctx.settings, ctx.ledger, dry_run=True)
    if result.ok:
        trace.do.append(
            f"Campaign ready: {result.data['segment_size']} eligible, {result.data['suppressed_size']} suppressed."
        )
    else:
        trace.do.append(f"Blocked: {result.message}")
    return trace, {"facts": {"campaign": result.model_dump(exclude_none=True)}}


def reporter(state: RunState, ctx: StageContext) -> tuple[StageTrace, dict[str, Any]]:
    trace = StageTrace(stage=StageName.REPORTER)
    trace.read.append("Facts and receipts produced earlier in this run.")
    trace.decide.append("Compose one answer with next actions.")

    ids = [r.id for r in state.receipts]
    receipts = (
        list(ctx.session.scalars(select(Receipt).where(Receipt.id.in_(ids)).order_by(Receipt.id)))
        if ids
        else []
    )
    message = compose_summary(state, receipts)
    trace.do.append("Returned the summary.")
    return trace, {"final_message": message}


STAGES: tuple[tuple[StageName, StageFn], ...] = (
    (StageName.ANALYZER, analyzer),
    (StageName.KNOWLEDGE, knowledge),
    (StageName.TRUST, trust),
    (StageName.GROWTH, growth),
    (StageName.REPORTER, reporter),
)


def compose_summary(state: RunState, receipts: list[Receipt]) -> str:
    """Summary text built only from run facts and this run's receipts."""

    facts = state.facts
    lines = [f"{_TITLES[state.command]} for {state.tenant_domain}."]

    if "question_states" in facts:
        states = ", ".join(f"{k} {v}" for k, v in sorted(facts["question_states"].items())) or "none"
        lines.append(f"- Questions: {facts['questions']} ({states})")
    if "gap_counts" in facts and facts["gap_counts"]:
        lines.append("- Gaps: " + ", ".join(f"{k} {v}" for k, v in sorted(facts["gap_counts"].items())))
    if "recommendations" in facts:
        recs = facts["recommendations"]
        lines.append(f"- Open content recommendations: {len(recs)}")
        lines += [f"  - [{r['surface']}] {r['title']} ({r['id']})" for r in recs[:7]]
    if "operation" in facts:
        op = facts["operation"]
        if op.get("ok"):
            lines.append(f"- Recommendation {facts.get('recommendation_id')}: {op.get('status')}")
        else:
            lines.append(f"- Blocked: {op.get('error')} - {op.get('message')}")
            if op.get("missing_claims"):
                lines.append("- Needs verification: " + ", ".join(op["missing_claims"]))
    if "claims" in facts:
        lines.append(f"- Verified claims: {facts['claims']}")
    if "open_recommendations" in facts:
        lines.append(f"- Open recommendations: {facts['open_recommendations']}")
    if "trust" in facts:
        t = facts["trust"]
        suffix = " (default)" if t["default"] else ""
        lines.append(f"- Trust: {t['total']}/100{suffix}, zone {t['zone']}")
    if "campaign" in facts:
        c = facts["campaign"]
        if c.get("ok"):
            d = c.get("data", {})
            lines.append(
                f"- Campaign {d.get('name')}: {d.get('segment_size')} eligible, "
                f"{d.get('suppressed_size')} suppressed (dry-run)"
            )
        else:
            lines.append(f"- Campaign blocked: {c.get('message')}")

    if "campaigns" in facts:
        lines.append(f"- Campaigns: {facts['campaigns']}")

    if receipts:
        lines.append("")
        lines.append("Receipts:")
        lines += [f"- #{r.id} {r.kind.value}/{r.actor.value}: {r.summary}" for r in receipts]

    nxt = _NEXT.get(state.command)
    if nxt:
        lines += ["", f"Next: {nxt}"]
    return "\n".join(lines)


_TITLES: dict[Command, str] = {
    Command.ANALYZE_GAPS: "Gap analysis",
    Command.RECOMMEND_CONTENT: "Content recommendations",
    Command.DRAFT_CONTENT: "Draft",
    Command.APPROVE_CONTENT: "Approval",
    Command.PUBLISH_CONTENT: "Publish",
    Command.CHECK_TRUST: "Trust check",
    Command.LAUNCH_CAMPAIGN: "Trust-gated campaign",
    Command.SUMMARIZE: "Summary",
}

_NEXT: dict[Command, str] = {
    Command.ANALYZE_GAPS: "generate content recommendations for the top gaps.",
    Command.RECOMMEND_CONTENT: "draft the highest-impact recommendation.",
    Command.DRAFT_CONTENT: "review the draft, verify flagged facts, then approve.",
    Command.APPROVE_CONTENT: "publish the approved draft.",
    Command.PUBLISH_CONTENT: "re-run gap analysis to confirm the question is answered.",
    Command.CHECK_TRUST: "launch a dry-run campaign if the zone allows it.",
    Command.LAUNCH_CAMPAIGN: "approve and execute the campaign when trust allows sends.",
}


def _content_operation(
    state: RunState, ctx: StageContext, rec_id: str, trace: StageTrace
) -> OperationResult:
    if state.command is Command.DRAFT_CONTENT:
        trace.decide.append("Draft from verified claims only; flag every missing fact.")
        result = workflow.draft_recommendation(
            ctx.session, ctx.tenant, rec_id, ctx.ledger, generator=ctx.generator
        )
    elif state.command is Command.APPROVE_CONTENT:
        approver = extract_approver(state.free_text) or "operator"
        trace.decide.append(f"Record approval by {approver}.")
        result = workflow.approve_recommendation(
            ctx.session, ctx.tenant, rec_id, ctx.ledger, approved_by=approver
        )
    else:
        trace.decide.append("Publish only if the safety gate finds no unresolved markers.")
        result = workflow.publish(ctx.session, ctx.tenant, rec_id, ctx.ledger, target=ctx.target)

    trace.do.append(f"Now {result.status}." if result.ok else f"Blocked: {result.error}.")
    return result


def open_recommendations(session: Session, tenant_id: str) -> int:
    return int(
        session.scalar(
            select(func.count())
            .select_from(Recommendation)
            .where(
                Recommendation.tenant_id == tenant_id,
                Recommendation.status.in_(
                    [RecommendationStatus.PROPOSED, RecommendationStatus.DRAFTED, RecommendationStatus.APPROVED]
                ),
            )
        )
        or 0
    )


def campaign_count(session: Session, tenant_id: str) -> int:
    return int(
        session.scalar(select(func.count()).select_from(Campaign).where(Campaign.tenant_id == tenant_id)) or 0
    )
