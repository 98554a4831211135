"""Command runner.

Threads one command through the fixed stage list over a single `RunState`. Every stage commits on
its own, so a failure in a later stage keeps the receipts and side effects of earlier ones and the
run returns the partial trace with debug information instead of raising.
"""

from __future__ import annotations

import uuid

from sqlalchemy.orm import Session, sessionmaker

from trusteye.config import Settings
from trusteye.content.generator import DraftGenerator
from trusteye.logging import get_logger, log_exception, run_context, set_stage
from trusteye.models.enums import Actor, Command, ReceiptKind, StageName
from trusteye.models.results import Overlay, RunResult, StageTrace
from trusteye.orchestrator.stages import STAGES, StageContext
from trusteye.orchestrator.state import RunState
from trusteye.publish.pipeline import ExternalPublishTarget
from trusteye.recording.ledger import ReceiptLedger, receipt_ref
from trusteye.tenancy import get_tenant, normalize_domain

logger = get_logger(__name__)

_OVERLAYS: dict[Command, tuple[Overlay, ...]] = {
    Command.ANALYZE_GAPS: (Overlay(id="demand", text="Demand is answered questions."),),
    Command.RECOMMEND_CONTENT: (Overlay(id="demand", text="Demand is answered questions."),),
    Command.DRAFT_CONTENT: (Overlay(id="authority", text="Authority starts with verified facts."),),
    Command.APPROVE_CONTENT: (Overlay(id="publish", text="We publish verified answers."),),
    Command.PUBLISH_CONTENT: (Overlay(id="publish", text="We publish verified answers."),),
    Command.CHECK_TRUST: (Overlay(id="gated", text="Automation is gated by trust."),),
    Command.LAUNCH_CAMPAIGN: (Overlay(id="gated", text="Automation is gated by trust."),),
    Command.SUMMARIZE: (Overlay(id="measurable", text="Visibility becomes measurable."),),
}


def run_command(
    session_factory: sessionmaker[Session],
    settings: Settings,
    *,
    tenant_domain: str,
    command: Command,
    free_text: str = "",
    recommendation_id: str | None = None,
    generator: DraftGenerator | None = None,
    target: ExternalPublishTarget | None = None,
) -> RunResult:
    """Run one command for a tenant.

    Args:
        session_factory: Session factory; the run uses one session and commits per stage.
        settings: Runtime settings.
        tenant_domain: Tenant domain (any URL form).
        command: Resolved command.
        free_text: The operator's original message.
        recommendation_id: Target recommendation for draft/approve/publish commands.
        generator: Draft generator; built from settings when omitted.
        target: Optional external publish target.

    Returns:
        Overlays, per-stage trace, summary text and debug info. `ok=False` when a stage failed.

    Raises:
        NotFoundError: Unknown tenant.
    """

    run_id = uuid.uuid4().hex
    domain = normalize_domain(tenant_domain)
    generator = generator or DraftGenerator(settings.generator_config())

    with run_context(run_id=run_id, tenant=domain), session_factory() as session:
        tenant = get_tenant(session, domain)
        ledger = ReceiptLedger(session, tenant.id)
        state = RunState(
            run_id=run_id,
            tenant_domain=tenant.domain,
            command=command,
            free_text=free_text,
            recommendation_id=recommendation_id,
            overlays=list(_OVERLAYS.get(command, ())),
        )

        start = ledger.write(
            kind=ReceiptKind.READ,
            actor=Actor.ORCHESTRATOR,
            summary=f"Run started: {command.value}",
            input={"run_id": run_id, "command": command.value, "free_text": free_text},
        )
        session.commit()
        state.receipts.append(receipt_ref(start))
        logger.info("Run started", extra={"command": command.value})

        ctx = StageContext(
            session=session,
            tenant=tenant,
            settings=settings,
            ledger=ledger,
            generator=generator,
            target=target,
        )
        last_ok: StageName | None = None
        for name, fn in STAGES:
            set_stage(name.value)
            mark = len(ledger.written)
            try:
                trace, patch = fn(state, ctx)
                session.commit()
            except Exception as e:
                session.rollback()
                del ledger.written[mark:]
                log_exception(logger, "Stage failed", stage=name.value, command=command.value)
                return _fail(session, ledger, state, name, last_ok, e)

            trace.receipts.extend(receipt_ref(r) for r in ledger.written[mark:])
            state.apply(trace, patch)
            last_ok = name

        set_stage("-")
        end = ledger.write(
            kind=ReceiptKind.DECIDE,
            actor=Actor.ORCHESTRATOR,
            summary=f"Run completed: {command.value}",
            input={"run_id": run_id},
            output={"stages": [t.stage.value for t in state.trace], "receipts": len(state.receipts)},
        )
        session.commit()
        state.receipts.append(receipt_ref(end))
        logger.info("Run completed", extra={"command": command.value, "receipts": len(state.receipts)})

        return RunResult(
            run_id=run_id,
            ok=True,
            overlays=state.overlays,
            trace=state.trace,
            summary_text=state.final_message,
            debug={"state": state.snapshot(), "facts": state.facts},
        )


def _fail(
    session: Session,
    ledger: ReceiptLedger,
    state: RunState,
    failed: StageName,
    last_ok: StageName | None,
    error: Exception,
) -> RunResult:
    last_receipt_id = state.receipts[-1].id if state.receipts else None
    debug = {
        "failed_stage": failed.value,
        "last_successful_stage": last_ok.value if last_ok is not None else None,
        "last_receipt_id": last_receipt_id,
        "error": f"{type(error).__name__}: {error}",
    }
    receipt = ledger.write(
        kind=ReceiptKind.SUPPRESS,
        actor=Actor.ORCHESTRATOR,
        summary=f"Run failed at {failed.value}",
        input={"run_id": state.run_id, "command": state.command.value},
        output=debug,
    )
    session.commit()
    state.receipts.append(receipt_ref(receipt))
    state.trace.append(
        StageTrace(
            stage=failed,
            decide=["Stopped: unexpected error."],
            do=[debug["error"]],
            receipts=[receipt_ref(receipt)],
        )
    )
    return RunResult(
        run_id=state.run_id,
        ok=False,
        overlays=state.overlays,
        trace=state.trace,
        summary_text=f"Run failed at {failed.value}: {debug['error']}",
        debug=debug,
    )
