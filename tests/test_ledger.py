"""Tests for the receipt ledger."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from trusteye.db.tables import Tenant
from trusteye.errors import LedgerError
from trusteye.models.enums import Actor, ReceiptKind
from trusteye.recording import ReceiptLedger, list_receipts
from trusteye.recording.ledger import MAX_STRING_CHARS, safe_payload, truncate_value
from trusteye.tenancy import ensure_tenant


def test_receipt_cannot_be_modified(session: Session, ledger: ReceiptLedger) -> None:
    """It should refuse to flush a change to an existing receipt."""

    receipt = ledger.write(kind=ReceiptKind.READ, actor=Actor.CRAWLER, summary="Crawled")
    receipt.summary = "Rewritten"
    with pytest.raises(LedgerError):
        session.flush()


def test_receipt_cannot_be_deleted(session: Session, ledger: ReceiptLedger) -> None:
    """It should refuse to delete a receipt."""

    receipt = ledger.write(kind=ReceiptKind.READ, actor=Actor.CRAWLER, summary="Crawled")
    session.delete(receipt)
    with pytest.raises(LedgerError):
        session.flush()


def test_write_assigns_ids_in_order(ledger: ReceiptLedger) -> None:
    """It should flush each receipt so ids follow write order."""

    a = ledger.write(kind=ReceiptKind.READ, actor=Actor.ORCHESTRATOR, summary="a")
    b = ledger.write(kind=ReceiptKind.DECIDE, actor=Actor.ORCHESTRATOR, summary="b")
    assert a.id < b.id
    assert ledger.written == [a, b]
    assert ledger.count() == 2


def test_list_receipts_newest_first_with_filters(session: Session, tenant: Tenant, ledger: ReceiptLedger) -> None:
    """It should list newest first, filter by kind and actor, and stay inside the tenant."""

    ledger.write(kind=ReceiptKind.READ, actor=Actor.CRAWLER, summary="one")
    ledger.write(kind=ReceiptKind.DECIDE, actor=Actor.TRUST_ENGINE, summary="two")
    ledger.write(kind=ReceiptKind.DECIDE, actor=Actor.ORCHESTRATOR, summary="three")
    other = ensure_tenant(session, "other.example.com")
    ReceiptLedger(session, other.id).write(kind=ReceiptKind.READ, actor=Actor.CRAWLER, summary="elsewhere")

    rows = list_receipts(session, tenant.id)
    assert [r.summary for r in rows] == ["three", "two", "one"]
    assert [r.summary for r in list_receipts(session, tenant.id, kind=ReceiptKind.DECIDE)] == ["three", "two"]
    assert [r.summary for r in list_receipts(session, tenant.id, actor=Actor.CRAWLER)] == ["one"]
    assert len(list_receipts(session, tenant.id, limit=0)) == 1
    assert len(list_receipts(session, tenant.id, limit=5000)) == 3


def test_truncate_value_bounds_strings_lists_and_depth() -> None:
    """It should cut long strings, long lists and deep nesting."""

    assert len(truncate_value("x" * 5000)) == MAX_STRING_CHARS + 1
    assert len(truncate_value(list(range(80)))) == 50
    deep = {"a": {"b": {"c": {"d": {"e": 1}}}}}
    assert truncate_value(deep) == {"a": {"b": {"c": {"d": "[truncated]"}}}}


def test_safe_payload_replaces_oversized_payload_with_preview() -> None:
    """It should replace a payload still too large after bounding with a preview."""

    big = {f"k{i}": "y" * 1500 for i in range(40)}
    out = safe_payload(big)
    assert out is not None
    assert out["truncated"] is True
    assert len(out["preview"]) == MAX_STRING_CHARS
    assert safe_payload(None) is None
    assert safe_payload({"when": object}) is not None
