"""Tests for the knowledge store."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy.orm import Session

from trusteye.db.tables import Tenant
from trusteye.memory.knowledge_store import (
    EvidenceInput,
    ExtractedClaim,
    KnowledgeStore,
    NeedInput,
    hedging_score,
)


def _claim(value: str, snippet: str) -> ExtractedClaim:
    return ExtractedClaim(
        key="returns.window",
        value=value,
        evidence=[EvidenceInput(url="https://shop.example.com/returns", snippet=snippet)],
    )


def test_ingest_deduplicates_evidence_by_snippet(session: Session, tenant: Tenant) -> None:
    """It should append evidence once per (key, snippet) and keep the latest value."""

    store = KnowledgeStore(session, tenant.id)
    first = store.ingest([_claim("30 days", "Return within 30 days.")])
    second = store.ingest([_claim("45 days", " Return within 30 days. ")])

    claim = store.get_claim("returns.window")
    assert claim is not None
    assert claim.value == "45 days"
    assert len(claim.evidence) == 1
    assert (first.evidence_added, second.evidence_added) == (1, 0)


def test_bare_claim_is_rejected() -> None:
    """It should refuse a claim that carries no evidence."""

    with pytest.raises(ValidationError):
        ExtractedClaim(key="returns.window", value="30 days", evidence=[])


def test_retrieve_scored_ranks_by_overlap(session: Session, tenant: Tenant) -> None:
    """It should rank evidenced claims by token overlap, ties broken by key."""

    store = KnowledgeStore(session, tenant.id)
    store.ingest(
        [
            _claim("Returns within 30 days", "Return any item within 30 days."),
            ExtractedClaim(
                key="shipping.time",
                value="Orders ship in 2 days",
                evidence=[EvidenceInput(url="https://shop.example.com/shipping")],
            ),
        ]
    )
    hits = store.retrieve_scored(query="return item within days", top_k=5)
    assert [c.key for c, _ in hits][0] == "returns.window"
    assert store.retrieve_scored(query="", top_k=5) == []


def test_upsert_question_merges_needs(session: Session, tenant: Tenant) -> None:
    """It should update a question by text and merge its needs by claim key."""

    store = KnowledgeStore(session, tenant.id)
    store.upsert_question(text="Q?", impact_score=60, needs=[NeedInput(claim_key="a")])
    q = store.upsert_question(
        text="Q?", impact_score=150, needs=[NeedInput(claim_key="a", required=False), NeedInput(claim_key="b")]
    )
    assert q.impact_score == 100
    assert [(n.claim_key, n.required) for n in q.needs] == [("a", False), ("b", True)]
    assert len(store.list_questions()) == 1


def test_probe_answer_scoring(session: Session, tenant: Tenant) -> None:
    """It should score hedging and detect unverifiable answers when the prober did not."""

    store = KnowledgeStore(session, tenant.id)
    row = store.record_probe_answer(
        provider="assistant", question="Q?", answer="NOT_VERIFIABLE: it might be 30 days, maybe."
    )
    assert row.unverifiable
    assert row.hedging_score == 50
    assert store.latest_probe_answer("Q?") is not None
    assert hedging_score("Returns take 30 days.") == 30
