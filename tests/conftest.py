"""Shared fixtures: in-memory database, a seeded tenant, a fake LLM and fake publish targets."""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any, Sequence

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from trusteye.config import Settings
from trusteye.db import create_db_engine, init_db, make_session_factory, session_scope
from trusteye.db.tables import Receipt, Recommendation, Tenant, utcnow
from trusteye.errors import UpstreamError
from trusteye.llm.client import ChatMessage
from trusteye.memory.seed import TenantSeed, apply_seed
from trusteye.models.enums import ReceiptKind
from trusteye.publish.pipeline import PublishedContent
from trusteye.recording import ReceiptLedger
from trusteye.tenancy import ensure_tenant

DOMAIN = "shop.example.com"

RETURNS_QUESTION = "What is your return policy?"
SALE_QUESTION = "Can I return sale items?"
PRODUCT_QUESTION = "What material is the linen shirt and does it fit true to size?"
IRRELEVANT_QUESTION = "Do you offer lease deals on a used car?"
LOW_IMPACT_QUESTION = "Do you ship to Canada?"


def seed_document() -> TenantSeed:
    return TenantSeed.model_validate(
        {
            "claims": [
                {
                    "key": "returns.window",
                    "value": "Returns are accepted within 30 days of delivery.",
                    "confidence": 90,
                    "evidence": [
                        {
                            "url": "https://shop.example.com/pages/returns",
                            "snippet": "You can return any item within 30 days of delivery.",
                        }
                    ],
                },
                {
                    "key": "shipping.regions",
                    "value": "We ship to the US and Canada.",
                    "evidence": [{"url": "https://shop.example.com/pages/shipping"}],
                },
            ],
            "questions": [
                {
                    "text": RETURNS_QUESTION,
                    "impact_score": 85,
                    "taxonomy": "POLICY",
                    "needs": [{"claim_key": "returns.window"}],
                },
                {
                    "text": SALE_QUESTION,
                    "impact_score": 75,
                    "taxonomy": "POLICY",
                    "needs": [{"claim_key": "returns.sale_items"}],
                },
                {
                    "text": PRODUCT_QUESTION,
                    "impact_score": 70,
                    "taxonomy": "PRODUCT",
                },
                {"text": IRRELEVANT_QUESTION, "impact_score": 90},
                {"text": LOW_IMPACT_QUESTION, "impact_score": 40, "taxonomy": "SHIPPING"},
            ],
            "products": [
                {"handle": "linen-shirt", "title": "Linen Shirt", "tags": ["summer"]},
            ],
            "audience": [
                {"address": "ana@example.com", "attributes": {"rating": 5, "sentiment": "positive"}},
                {"address": "ben@example.com", "attributes": {"rating": 3, "sentiment": "positive"}},
                {"address": "cat@example.com", "attributes": {"rating": 5, "sentiment": "positive", "opted_out": True}},
                {"address": "", "attributes": {"rating": 5, "sentiment": "positive"}},
            ],
        }
    )


class FakeLLM:
    """Chat model double returning a canned reply or raising a canned error."""

    provider = "fake"

    def __init__(self, reply: str | dict[str, Any] = "", error: Exception | None = None) -> None:
        self.reply = json.dumps(reply) if isinstance(reply, dict) else reply
        self.error = error
        self.calls: list[Sequence[ChatMessage]] = []

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.2) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingTarget:
    """External publish target that remembers what it received."""

    name = "recording"

    def __init__(self) -> None:
        self.delivered: list[PublishedContent] = []

    def deliver(self, content: PublishedContent) -> dict[str, Any]:
        self.delivered.append(content)
        return {"resource": "page", "id": len(self.delivered)}


class BrokenTarget:
    name = "broken"

    def deliver(self, content: PublishedContent) -> dict[str, Any]:
        raise UpstreamError("storefront unavailable", service=self.name, status_code=503)


@pytest.fixture()
def settings() -> Settings:
    return Settings(database_url="sqlite:///:memory:", openai_api_key=None, log_level="WARNING")


@pytest.fixture()
def engine(settings: Settings) -> Iterator[Engine]:
    eng = create_db_engine(settings.database_url)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def session(factory: sessionmaker[Session]) -> Iterator[Session]:
    s = factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def tenant(session: Session) -> Tenant:
    return ensure_tenant(session, f"https://www.{DOMAIN}/", name="Example Shop")


@pytest.fixture()
def ledger(session: Session, tenant: Tenant) -> ReceiptLedger:
    return ReceiptLedger(session, tenant.id)


@pytest.fixture()
def seeded(session: Session, tenant: Tenant, ledger: ReceiptLedger) -> Tenant:
    apply_seed(session, tenant, seed_document(), ledger)
    return tenant


@pytest.fixture()
def seeded_factory(factory: sessionmaker[Session]) -> sessionmaker[Session]:
    """Factory over a committed, seeded tenant, for code that opens its own sessions."""

    with session_scope(factory) as s:
        t = ensure_tenant(s, DOMAIN, name="Example Shop")
        apply_seed(s, t, seed_document(), ReceiptLedger(s, t.id))
    return factory


def find_rec(session: Session, tenant_id: str, question: str) -> Recommendation:
    return session.scalars(
        select(Recommendation).where(
            Recommendation.tenant_id == tenant_id, Recommendation.question_text == question
        )
    ).one()


def receipts_of(session: Session, tenant_id: str, kind: ReceiptKind | None = None) -> list[Receipt]:
    stmt = select(Receipt).where(Receipt.tenant_id == tenant_id)
    if kind is not None:
        stmt = stmt.where(Receipt.kind == kind)
    return list(session.scalars(stmt.order_by(Receipt.id)))


def old(days: int) -> datetime:
    return utcnow() - timedelta(days=days)
