"""Receipt recording."""

from __future__ import annotations

from trusteye.recording.ledger import ReceiptLedger, list_receipts, receipt_ref

__all__ = ["ReceiptLedger", "list_receipts", "receipt_ref"]
