"""Result and trace models returned by operations and the orchestrator."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from trusteye.models.enums import Actor, ReceiptKind, StageName


class OperationResult(BaseModel):
    """Outcome of a discrete recommendation or campaign operation.

    Blocks (safety gate, policy zone, invalid state) come back with `ok=False`, an error code and
    a human-readable `message` explaining why.
    """

    ok: bool
    status: str | None = None
    error: str | None = None
    message: str | None = None
    missing_claims: list[str] | None = None
    receipt_id: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def success(cls, status: str, **kwargs: Any) -> "OperationResult":
        return cls(ok=True, status=status, **kwargs)

    @classmethod
    def failure(cls, error: str, message: str, **kwargs: Any) -> "OperationResult":
        return cls(ok=False, error=error, message=message, **kwargs)


class ReceiptView(BaseModel):
    """Receipt as listed for audit display."""

    id: int
    kind: ReceiptKind
    actor: Actor
    summary: str
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    created_at: datetime


class ReceiptRef(BaseModel):
    kind: ReceiptKind
    id: int
    summary: str


class StageTrace(BaseModel):
    """What one orchestrator stage read, decided and did."""

    stage: StageName
    read: list[str] = Field(default_factory=list)
    decide: list[str] = Field(default_factory=list)
    do: list[str] = Field(default_factory=list)
    receipts: list[ReceiptRef] = Field(default_factory=list)


class Overlay(BaseModel):
    id: str
    text: str


class RunResult(BaseModel):
    """Command entry point response."""

    run_id: str
    ok: bool = True
    overlays: list[Overlay] = Field(default_factory=list)
    trace: list[StageTrace] = Field(default_factory=list)
    summary_text: str = ""
    debug: dict[str, Any] = Field(default_factory=dict)
