"""FastAPI app exposing the command entry point and the recommendation, receipt and campaign APIs."""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from trusteye import workflow
from trusteye.config import Settings, load_settings
from trusteye.content.generator import DraftGenerator
from trusteye.db import create_db_engine, init_db, make_session_factory, session_scope
from trusteye.db.tables import Campaign, Recommendation, Tenant
from trusteye.engine.classifier import generate_recommendations, list_recommendations
from trusteye.errors import TrustEyeError
from trusteye.growth.campaigns import approve_campaign, create_campaign, execute_campaign, list_campaigns
from trusteye.growth.segments import ReferralRule
from trusteye.logging import configure_logging, get_logger
from trusteye.memory.knowledge_store import ExtractedClaim
from trusteye.memory.seed import TenantSeed, apply_seed
from trusteye.models.enums import Actor, Command, ReceiptKind
from trusteye.models.results import OperationResult, ReceiptView, RunResult
from trusteye.orchestrator import run_command
from trusteye.policy import tenant_policy
from trusteye.publish.pipeline import ExternalPublishTarget
from trusteye.publish.shopify import ShopifyPublisher
from trusteye.recording import ReceiptLedger, list_receipts
from trusteye.tenancy import get_tenant

# HTTP status for structured failures; anything unlisted is a 409 state conflict.
_FAILURE_STATUS = {
    "needs_verification": 400,
    "recommendation_required": 400,
    "policy_blocked": 403,
    "product_not_found": 404,
}


class CommandRequest(BaseModel):
    tenant_domain: str
    command: Command
    free_text: str = ""
    recommendation_id: str | None = None


class DraftRequest(BaseModel):
    override_markdown: str | None = None


class ApproveRequest(BaseModel):
    approved_by: str = "operator"


class DismissRequest(BaseModel):
    reason: str = ""


class ClaimsRequest(BaseModel):
    claims: list[ExtractedClaim] = Field(min_length=1)


class CampaignRequest(BaseModel):
    rule: ReferralRule = Field(default_factory=ReferralRule)
    goal: str = "Referral ask to happy customers"
    dry_run: bool = True


class RecommendationView(BaseModel):
    id: str
    action: str
    surface: str
    status: str
    stable_slug: str
    title: str
    why: str
    target_url: str
    impact_score: int
    question_text: str
    product_handle: str | None = None
    theme: str | None = None
    has_draft: bool

    @classmethod
    def of(cls, rec: Recommendation) -> "RecommendationView":
        return cls(
            id=rec.id,
            action=rec.action.value,
            surface=rec.surface.value,
            status=rec.status.value,
            stable_slug=rec.stable_slug,
            title=rec.title,
            why=rec.why,
            target_url=rec.target_url,
            impact_score=rec.impact_score,
            question_text=rec.question_text,
            product_handle=rec.product_handle,
            theme=rec.theme,
            has_draft=rec.draft_payload is not None,
        )


class CampaignView(BaseModel):
    id: str
    name: str
    status: str
    dry_run: bool
    requires_approval: bool
    segment_size: int
    suppressed_size: int
    created_at: datetime

    @classmethod
    def of(cls, campaign: Campaign) -> "CampaignView":
        return cls(
            id=campaign.id,
            name=campaign.name,
            status=campaign.status.value,
            dry_run=campaign.dry_run,
            requires_approval=campaign.requires_approval,
            segment_size=campaign.segment_size,
            suppressed_size=campaign.suppressed_size,
            created_at=campaign.created_at,
        )


def _respond(result: OperationResult) -> JSONResponse:
    status = 200 if result.ok else _FAILURE_STATUS.get(result.error or "", 409)
    return JSONResponse(status_code=status, content=result.model_dump(mode="json", exclude_none=True))


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    generator: DraftGenerator | None = None,
    target: ExternalPublishTarget | None = None,
) -> FastAPI:
    """Create FastAPI app."""

    settings = settings or load_settings()
    configure_logging(settings.log_level)
    logger = get_logger(__name__)

    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
    factory = session_factory
    generator = generator or DraftGenerator(settings.generator_config())
    if target is None and settings.shopify_enabled:
        target = ShopifyPublisher.from_settings(settings)

    app = FastAPI(title="TrustEye", version="0.1.0")

    @app.exception_handler(TrustEyeError)
    def trusteye_error(_: Request, exc: TrustEyeError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    def db() -> Generator[Session, None, None]:
        with session_scope(factory) as session:
            yield session

    def tenant_of(domain: str, session: Session = Depends(db)) -> Tenant:
        return get_tenant(session, domain)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/commands")
    def commands(req: CommandRequest) -> RunResult:
        logger.info("API command requested", extra={"command": req.command.value})
        return run_command(
            factory,
            settings,
            tenant_domain=req.tenant_domain,
            command=req.command,
            free_text=req.free_text,
            recommendation_id=req.recommendation_id,
            generator=generator,
            target=target,
        )

    @app.get("/tenants/{domain}/recommendations")
    def recommendations(
        tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)
    ) -> list[RecommendationView]:
        return [RecommendationView.of(r) for r in list_recommendations(session, tenant.id)]

    @app.post("/tenants/{domain}/recommendations")
    def generate(tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)) -> list[RecommendationView]:
        run = generate_recommendations(session, tenant, settings, ReceiptLedger(session, tenant.id))
        return [RecommendationView.of(r) for r in run.recommendations]

    @app.post("/tenants/{domain}/recommendations/{rec_id}/draft")
    def draft(
        rec_id: str,
        req: DraftRequest | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> JSONResponse:
        result = workflow.draft_recommendation(
            session,
            tenant,
            rec_id,
            ReceiptLedger(session, tenant.id),
            generator=generator,
            override_markdown=req.override_markdown if req is not None else None,
        )
        return _respond(result)

    @app.post("/tenants/{domain}/recommendations/{rec_id}/approve")
    def approve(
        rec_id: str,
        req: ApproveRequest | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> JSONResponse:
        approved_by = req.approved_by if req is not None else "operator"
        return _respond(
            workflow.approve_recommendation(
                session, tenant, rec_id, ReceiptLedger(session, tenant.id), approved_by=approved_by
            )
        )

    @app.post("/tenants/{domain}/recommendations/{rec_id}/publish")
    def publish(rec_id: str, tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)) -> JSONResponse:
        return _respond(
            workflow.publish(session, tenant, rec_id, ReceiptLedger(session, tenant.id), target=target)
        )

    @app.post("/tenants/{domain}/recommendations/{rec_id}/dismiss")
    def dismiss(
        rec_id: str,
        req: DismissRequest | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> JSONResponse:
        reason = req.reason if req is not None else ""
        return _respond(
            workflow.dismiss_recommendation(
                session, tenant, rec_id, ReceiptLedger(session, tenant.id), reason=reason
            )
        )

    @app.get("/tenants/{domain}/receipts")
    def receipts(
        limit: int = Query(50),
        kind: ReceiptKind | None = None,
        actor: Actor | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> list[ReceiptView]:
        return list_receipts(session, tenant.id, limit=limit, kind=kind, actor=actor)

    @app.get("/tenants/{domain}/policy")
    def trust_policy(tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)) -> dict[str, Any]:
        pol, reading = tenant_policy(session, tenant, settings)
        return {**pol.as_dict(), "default": reading.is_default, "snapshot_id": reading.snapshot_id}

    @app.post("/tenants/{domain}/claims")
    def claims(
        req: ClaimsRequest, tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)
    ) -> dict[str, int]:
        return apply_seed(session, tenant, TenantSeed(claims=req.claims), ReceiptLedger(session, tenant.id))

    @app.get("/tenants/{domain}/campaigns")
    def campaign_list(tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)) -> list[CampaignView]:
        return [CampaignView.of(c) for c in list_campaigns(session, tenant.id)]

    @app.post("/tenants/{domain}/campaigns")
    def campaigns(
        req: CampaignRequest | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> JSONResponse:
        req = req or CampaignRequest()
        result = create_campaign(
            session,
            tenant,
            settings,
            ReceiptLedger(session, tenant.id),
            rule=req.rule,
            goal=req.goal,
            dry_run=req.dry_run,
        )
        return _respond(result)

    @app.post("/tenants/{domain}/campaigns/{campaign_id}/approve")
    def campaign_approve(
        campaign_id: str,
        req: ApproveRequest | None = None,
        tenant: Tenant = Depends(tenant_of),
        session: Session = Depends(db),
    ) -> JSONResponse:
        approved_by = req.approved_by if req is not None else "operator"
        return _respond(
            approve_campaign(
                session, tenant, campaign_id, ReceiptLedger(session, tenant.id), approved_by=approved_by
            )
        )

    @app.post("/tenants/{domain}/campaigns/{campaign_id}/execute")
    def campaign_execute(
        campaign_id: str, tenant: Tenant = Depends(tenant_of), session: Session = Depends(db)
    ) -> JSONResponse:
        return _respond(
            execute_campaign(session, tenant, settings, campaign_id, ReceiptLedger(session, tenant.id))
        )

    return app
