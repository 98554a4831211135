"""CLI entrypoints for TrustEye."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import typer
from sqlalchemy.orm import Session, sessionmaker

from trusteye import workflow
from trusteye.config import Settings, load_settings
from trusteye.content.generator import DraftGenerator
from trusteye.db import create_db_engine, init_db, make_session_factory, session_scope
from trusteye.engine.classifier import generate_recommendations
from trusteye.errors import TrustEyeError
from trusteye.logging import configure_logging, get_logger
from trusteye.memory.seed import TenantSeed, apply_seed
from trusteye.models.enums import Actor, Command, ReceiptKind
from trusteye.models.results import OperationResult
from trusteye.orchestrator import run_command
from trusteye.publish.pipeline import ExternalPublishTarget
from trusteye.publish.shopify import ShopifyPublisher
from trusteye.recording import ReceiptLedger, list_receipts
from trusteye.tenancy import ensure_tenant, get_tenant

app = typer.Typer(add_completion=False, help="TrustEye trust-gated content and growth CLI")
logger = get_logger(__name__)


def _bootstrap() -> tuple[Settings, sessionmaker[Session]]:
    settings = load_settings()
    configure_logging(settings.log_level)
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return settings, make_session_factory(engine)


def _target(settings: Settings, enabled: bool) -> ExternalPublishTarget | None:
    if not enabled:
        return None
    return ShopifyPublisher.from_settings(settings)


def _echo_json(data: object) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _fail(e: TrustEyeError) -> NoReturn:
    typer.echo(json.dumps(e.to_dict(), ensure_ascii=False), err=True)
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db_cmd() -> None:
    """Create database tables."""

    settings, _ = _bootstrap()
    typer.echo(f"Database ready: {settings.database_url}")


@app.command("add-tenant")
def add_tenant(
    domain: str = typer.Argument(..., help="Tenant domain, e.g. shop.example.com"),
    name: str = typer.Option("", "--name", help="Display name"),
    seed: Path | None = typer.Option(
        None, "--seed", help="JSON file with claims, questions, products, probe answers and audience"
    ),
) -> None:
    """Register a tenant and optionally import its knowledge."""

    _, factory = _bootstrap()
    try:
        with session_scope(factory) as session:
            tenant = ensure_tenant(session, domain, name=name)
            out: dict[str, object] = {"tenant_id": tenant.id, "domain": tenant.domain}
            if seed is not None:
                data = TenantSeed.model_validate_json(seed.read_text(encoding="utf-8"))
                out["imported"] = apply_seed(session, tenant, data, ReceiptLedger(session, tenant.id))
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    _echo_json(out)


@app.command()
def run(
    domain: str = typer.Argument(..., help="Tenant domain"),
    command: Command = typer.Argument(..., help="Command to run"),
    text: str = typer.Option("", "--text", "-t", help="Operator message"),
    recommendation_id: str | None = typer.Option(None, "--rec", help="Recommendation id"),
    shopify: bool = typer.Option(False, "--shopify", help="Mirror publishes to Shopify"),
) -> None:
    """Run one command through the stage orchestrator and print the summary."""

    settings, factory = _bootstrap()
    logger.info("CLI run requested", extra={"command": command.value})
    try:
        result = run_command(
            factory,
            settings,
            tenant_domain=domain,
            command=command,
            free_text=text,
            recommendation_id=recommendation_id,
            target=_target(settings, shopify),
        )
    except TrustEyeError as e:
        _fail(e)
    typer.echo(result.summary_text)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def recommend(domain: str = typer.Argument(..., help="Tenant domain")) -> None:
    """Classify demand signals and list recommendations."""

    settings, factory = _bootstrap()
    try:
        with session_scope(factory) as session:
            tenant = get_tenant(session, domain)
            outcome = generate_recommendations(session, tenant, settings, ReceiptLedger(session, tenant.id))
            rows = [
                {
                    "id": r.id,
                    "action": r.action.value,
                    "surface": r.surface.value,
                    "status": r.status.value,
                    "impact": r.impact_score,
                    "title": r.title,
                }
                for r in outcome.recommendations
            ]
    except TrustEyeError as e:
        _fail(e)
    _echo_json(rows)


@app.command()
def publish(
    domain: str = typer.Argument(..., help="Tenant domain"),
    recommendation_id: str = typer.Argument(..., help="Recommendation id"),
    draft: bool = typer.Option(False, "--draft", help="Draft and approve before publishing"),
    approver: str = typer.Option("operator", "--approver", help="Recorded approver"),
    shopify: bool = typer.Option(False, "--shopify", help="Mirror to Shopify"),
) -> None:
    """Publish an approved recommendation."""

    settings, factory = _bootstrap()
    try:
        with session_scope(factory) as session:
            tenant = get_tenant(session, domain)
            ledger = ReceiptLedger(session, tenant.id)
            result: OperationResult | None = None
            if draft:
                generator = DraftGenerator(settings.generator_config())
                step = workflow.draft_recommendation(
                    session, tenant, recommendation_id, ledger, generator=generator
                )
                if step.ok:
                    step = workflow.approve_recommendation(
                        session, tenant, recommendation_id, ledger, approved_by=approver
                    )
                result = step
            if result is None or result.ok:
                result = workflow.publish(
                    session, tenant, recommendation_id, ledger, target=_target(settings, shopify)
                )
    except TrustEyeError as e:
        _fail(e)
    _echo_json(result.model_dump(exclude_none=True))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def receipts(
    domain: str = typer.Argument(..., help="Tenant domain"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max receipts (1-200)"),
    kind: ReceiptKind | None = typer.Option(None, "--kind", help="Filter by kind"),
    actor: Actor | None = typer.Option(None, "--actor", help="Filter by actor"),
) -> None:
    """List receipts, newest first."""

    _, factory = _bootstrap()
    try:
        with session_scope(factory) as session:
            tenant = get_tenant(session, domain)
            rows = list_receipts(session, tenant.id, limit=limit, kind=kind, actor=actor)
    except TrustEyeError as e:
        _fail(e)
    for r in rows:
        typer.echo(f"#{r.id} {r.created_at:%Y-%m-%d %H:%M:%S} {r.kind.value:<8} {r.actor.value:<15} {r.summary}")


if __name__ == "__main__":
    app()
