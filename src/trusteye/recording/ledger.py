"""Receipt ledger.

Append-only audit log of decisions and side effects, scoped to a tenant. Receipts are flushed as
they are written so later stages of the same run can read them back in order. A flush guard
refuses any UPDATE or DELETE of an existing receipt row.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from trusteye.db.tables import Receipt
from trusteye.errors import LedgerError
from trusteye.logging import get_logger
from trusteye.models.enums import Actor, ReceiptKind
from trusteye.models.results import ReceiptRef, ReceiptView

logger = get_logger(__name__)

MAX_STRING_CHARS = 2000
MAX_DEPTH = 4
MAX_LIST_ITEMS = 50
MAX_PAYLOAD_CHARS = 20_000
LIST_LIMIT_MAX = 200


def truncate_value(value: Any, *, depth: int = 0) -> Any:
    """Bound strings, lists and nesting depth of a JSON-like value."""

    if isinstance(value, str):
        if len(value) <= MAX_STRING_CHARS:
            return value
        return value[:MAX_STRING_CHARS] + "…"
    if depth >= MAX_DEPTH:
        if isinstance(value, (dict, list, tuple)):
            return "[truncated]"
        return value
    if isinstance(value, (list, tuple)):
        return [truncate_value(v, depth=depth + 1) for v in list(value)[:MAX_LIST_ITEMS]]
    if isinstance(value, dict):
        return {str(k): truncate_value(v, depth=depth + 1) for k, v in value.items()}
    return value


def safe_payload(value: dict[str, Any] | None) -> dict[str, Any] | None:
    """Make a receipt payload JSON-safe and bounded in size.

    Payloads whose serialized form still exceeds the cap are replaced by a preview.
    """

    if value is None:
        return None
    bounded = truncate_value(value)
    try:
        text = json.dumps(bounded, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return {"truncated": True, "preview": str(value)[:MAX_STRING_CHARS]}
    if len(text) > MAX_PAYLOAD_CHARS:
        return {"truncated": True, "preview": text[:MAX_STRING_CHARS]}
    return json.loads(text)


@dataclass
class ReceiptLedger:
    """Writes receipts for one tenant within one session."""

    session: Session
    tenant_id: str
    written: list[Receipt] = field(default_factory=list)

    def write(
        self,
        *,
        kind: ReceiptKind,
        actor: Actor,
        summary: str,
        input: dict[str, Any] | None = None,  # noqa: A002
        output: dict[str, Any] | None = None,
    ) -> Receipt:
        """Append a receipt and flush it so it has an id.

        Args:
            kind: Receipt kind.
            actor: Component that made the decision or side effect.
            summary: Human-readable one-liner.
            input: What the decision was based on.
            output: What it produced.

        Returns:
            The stored receipt.
        """

        receipt = Receipt(
            tenant_id=self.tenant_id,
            kind=kind,
            actor=actor,
            summary=summary,
            input=safe_payload(input),
            output=safe_payload(output),
        )
        self.session.add(receipt)
        self.session.flush()
        self.written.append(receipt)
        logger.debug(
            "Receipt written",
            extra={"receipt_id": receipt.id, "kind": kind.value, "actor": actor.value},
        )
        return receipt

    def count(self) -> int:
        stmt = select(func.count()).select_from(Receipt).where(Receipt.tenant_id == self.tenant_id)
        return int(self.session.scalar(stmt) or 0)


def receipt_ref(receipt: Receipt) -> ReceiptRef:
    return ReceiptRef(kind=receipt.kind, id=receipt.id, summary=receipt.summary)


def list_receipts(
    session: Session,
    tenant_id: str,
    *,
    limit: int = 50,
    kind: ReceiptKind | None = None,
    actor: Actor | None = None,
) -> list[ReceiptView]:
    """List receipts newest first. `limit` is clamped to 1..200."""

    limit = max(1, min(LIST_LIMIT_MAX, int(limit)))
    stmt = select(Receipt).where(Receipt.tenant_id == tenant_id)
    if kind is not None:
        stmt = stmt.where(Receipt.kind == kind)
    if actor is not None:
        stmt = stmt.where(Receipt.actor == actor)
    stmt = stmt.order_by(Receipt.created_at.desc(), Receipt.id.desc()).limit(limit)
    return [
        ReceiptView(
            id=r.id,
            kind=r.kind,
            actor=r.actor,
            summary=r.summary,
            input=r.input,
            output=r.output,
            created_at=r.created_at,
        )
        for r in session.scalars(stmt)
    ]


@event.listens_for(Session, "before_flush")
def _guard_receipts(session: Session, flush_context: Any, instances: Any) -> None:
    for obj in session.deleted:
        if isinstance(obj, Receipt):
            raise LedgerError(f"Receipt {obj.id} cannot be deleted")
    for obj in session.dirty:
        if isinstance(obj, Receipt) and session.is_modified(obj):
            raise LedgerError(f"Receipt {obj.id} cannot be modified")
