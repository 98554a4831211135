"""Knowledge store.

Tenant-scoped claims, each backed by one or more evidence citations, plus the inputs the engines
read next to them: demand signals with their needs, the product catalog and sampled external
answers. Claims are upserted by key (latest wins); evidence is append-only with best-effort
deduplication on the `(key, snippet)` signature.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from trusteye.db.tables import Claim, Evidence, Need, ProbeAnswer, Product, Question, utcnow
from trusteye.logging import get_logger
from trusteye.models.enums import QuestionTaxonomy, Surface

logger = get_logger(__name__)

HEDGE_WORDS = ("maybe", "might", "could", "possibly", "generally", "often")
UNVERIFIABLE_RE = re.compile(r"not_verifiable\s*:", re.IGNORECASE)


class EvidenceInput(BaseModel):
    url: str
    snippet: str | None = None
    captured_at: datetime | None = None


class ExtractedClaim(BaseModel):
    """One claim as produced by the crawler/extractor. A claim without evidence is invalid."""

    key: str = Field(min_length=1)
    value: str
    confidence: int = Field(default=72, ge=0, le=100)
    scope: str = "site"
    freshness_at: datetime | None = None
    evidence: list[EvidenceInput] = Field(min_length=1)


class NeedInput(BaseModel):
    claim_key: str
    required: bool = True


@dataclass(frozen=True)
class IngestResult:
    claims_upserted: int
    evidence_added: int


def hedging_score(answer: str) -> int:
    """Score how much an answer hedges: 30 plus 10 per distinct hedge word, capped at 100."""

    text = answer.lower()
    score = 30
    for word in HEDGE_WORDS:
        if re.search(rf"\b{word}\b", text):
            score += 10
    return min(100, score)


class KnowledgeStore:
    """Read/write access to one tenant's knowledge."""

    def __init__(self, session: Session, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    # Claims and evidence

    def ingest(self, claims: Iterable[ExtractedClaim]) -> IngestResult:
        """Store crawler/extractor output.

        Args:
            claims: Extracted claims, each with at least one evidence row.

        Returns:
            Counts of claims upserted and evidence rows appended.
        """

        upserted = 0
        added = 0
        for item in claims:
            _, new_rows = self.upsert_claim(
                key=item.key,
                value=item.value,
                confidence=item.confidence,
                scope=item.scope,
                freshness_at=item.freshness_at,
                evidence=item.evidence,
            )
            upserted += 1
            added += new_rows
        logger.info(
            "Knowledge ingested",
            extra={"tenant_id": self._tenant_id, "claims": upserted, "evidence_added": added},
        )
        return IngestResult(claims_upserted=upserted, evidence_added=added)

    def upsert_claim(
        self,
        *,
        key: str,
        value: str,
        confidence: int = 72,
        scope: str = "site",
        freshness_at: datetime | None = None,
        evidence: Iterable[EvidenceInput] = (),
    ) -> tuple[Claim, int]:
        """Insert or update a claim by key and append new evidence.

        Returns:
            The claim and the number of evidence rows actually appended.
        """

        claim = self.get_claim(key)
        if claim is None:
            claim = Claim(tenant_id=self._tenant_id, key=key, value=value)
            self._session.add(claim)
        claim.value = value
        claim.confidence = confidence
        claim.scope = scope
        claim.freshness_at = freshness_at or utcnow()
        self._session.flush()

        seen = {_signature(key, ev.snippet, ev.url) for ev in claim.evidence}
        added = 0
        for ev in evidence:
            sig = _signature(key, ev.snippet, ev.url)
            if sig in seen:
                continue
            seen.add(sig)
            claim.evidence.append(
                Evidence(url=ev.url, snippet=ev.snippet, captured_at=ev.captured_at or utcnow())
            )
            added += 1
        self._session.flush()
        return claim, added

    def get_claim(self, key: str) -> Claim | None:
        return self._session.scalar(
            select(Claim).where(Claim.tenant_id == self._tenant_id, Claim.key == key)
        )

    def claims_by_key(self, keys: Iterable[str]) -> dict[str, Claim]:
        keys = list(keys)
        if not keys:
            return {}
        rows = self._session.scalars(
            select(Claim).where(Claim.tenant_id == self._tenant_id, Claim.key.in_(keys))
        )
        return {c.key: c for c in rows}

    def retrieve_scored(self, *, query: str, top_k: int) -> list[tuple[Claim, int]]:
        """Retrieve evidenced claims relevant to `query`, with a deterministic integer score."""

        tokens = _tokenize(query)
        if not tokens:
            return []

        scored: list[tuple[int, str, Claim]] = []
        for claim in self._session.scalars(select(Claim).where(Claim.tenant_id == self._tenant_id)):
            if not claim.evidence:
                continue
            hay = " ".join(
                [claim.key.replace(".", " ").replace("_", " "), claim.value]
                + [ev.snippet or "" for ev in claim.evidence]
            )
            score = _score(tokens, hay)
            if score <= 0:
                continue
            scored.append((score, claim.key, claim))

        scored.sort(key=lambda x: (-x[0], x[1]))
        return [(claim, score) for score, _key, claim in scored[:top_k]]

    # Demand signals

    def upsert_question(
        self,
        *,
        text: str,
        impact_score: int,
        taxonomy: QuestionTaxonomy = QuestionTaxonomy.GENERAL,
        recommended_surface: Surface | None = None,
        needs: Iterable[NeedInput] = (),
    ) -> Question:
        """Insert or update a demand signal by its exact text and merge its needs."""

        question = self._session.scalar(
            select(Question).where(Question.tenant_id == self._tenant_id, Question.text == text)
        )
        if question is None:
            question = Question(tenant_id=self._tenant_id, text=text)
            self._session.add(question)
        question.impact_score = max(1, min(100, int(impact_score)))
        question.taxonomy = taxonomy
        question.recommended_surface = recommended_surface

        existing = {n.claim_key: n for n in question.needs}
        for need in needs:
            row = existing.get(need.claim_key)
            if row is None:
                question.needs.append(Need(claim_key=need.claim_key, required=need.required))
            else:
                row.required = need.required
        self._session.flush()
        return question

    def list_questions(self, *, limit: int | None = None) -> list[Question]:
        """Questions by impact, highest first."""

        stmt = (
            select(Question)
            .where(Question.tenant_id == self._tenant_id)
            .order_by(Question.impact_score.desc(), Question.created_at, Question.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt))

    # Catalog

    def upsert_product(
        self,
        *,
        handle: str,
        title: str,
        description: str = "",
        tags: list[str] | None = None,
        specs: dict[str, Any] | None = None,
    ) -> Product:
        product = self.get_product(handle)
        if product is None:
            product = Product(tenant_id=self._tenant_id, handle=handle, title=title)
            self._session.add(product)
        product.title = title
        product.description = description
        product.tags = list(tags or [])
        product.specs = dict(specs or {})
        self._session.flush()
        return product

    def get_product(self, handle: str) -> Product | None:
        return self._session.scalar(
            select(Product).where(Product.tenant_id == self._tenant_id, Product.handle == handle)
        )

    def list_products(self) -> list[Product]:
        return list(
            self._session.scalars(
                select(Product).where(Product.tenant_id == self._tenant_id).order_by(Product.handle)
            )
        )

    # External answer samples

    def record_probe_answer(
        self,
        *,
        provider: str,
        question: str,
        answer: str,
        hedging: int | None = None,
        unverifiable: bool | None = None,
    ) -> ProbeAnswer:
        """Store a sampled external answer, scoring hedging when the prober did not."""

        row = ProbeAnswer(
            tenant_id=self._tenant_id,
            provider=provider,
            question=question,
            answer=answer,
            hedging_score=hedging if hedging is not None else hedging_score(answer),
            unverifiable=(
                unverifiable
                if unverifiable is not None
                else bool(UNVERIFIABLE_RE.search(answer))
            ),
        )
        self._session.add(row)
        self._session.flush()
        return row

    def recent_probe_answers(self, question: str, *, limit: int = 4) -> list[ProbeAnswer]:
        """Newest samples for the exact question text."""

        return list(
            self._session.scalars(
                select(ProbeAnswer)
                .where(ProbeAnswer.tenant_id == self._tenant_id, ProbeAnswer.question == question)
                .order_by(ProbeAnswer.created_at.desc(), ProbeAnswer.id.desc())
                .limit(limit)
            )
        )

    def latest_probe_answer(self, question: str) -> ProbeAnswer | None:
        rows = self.recent_probe_answers(question, limit=1)
        return rows[0] if rows else None


def _signature(key: str, snippet: str | None, url: str) -> tuple[str, str]:
    return (key, snippet.strip() if snippet else f"url:{url}")


_WORD_RE = re.compile(r"[A-Za-z0-9_]+")


def _tokenize(text: str) -> set[str]:
    return {t.lower() for t in _WORD_RE.findall(text) if len(t) >= 3}


def _score(tokens: set[str], text: str) -> int:
    hay = text.lower()
    s = 0
    for t in tokens:
        if t in hay:
            s += 1
    return s
