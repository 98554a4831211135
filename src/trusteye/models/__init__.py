"""Pydantic models and enums used across the project."""

from __future__ import annotations

from trusteye.models.drafts import ContentDraft, DraftPayload
from trusteye.models.results import OperationResult, ReceiptRef, ReceiptView, RunResult, StageTrace

__all__ = [
    "ContentDraft",
    "DraftPayload",
    "OperationResult",
    "ReceiptRef",
    "ReceiptView",
    "RunResult",
    "StageTrace",
]
