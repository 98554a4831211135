from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from trusteye.models.enums import Command
from trusteye.models.results import Overlay, ReceiptRef, StageTrace


@dataclass
class RunState:
    run_id: str
    tenant_domain: str
    command: Command
    free_text: str = ""
    recommendation_id: str | None = None
    trace: list[StageTrace] = field(default_factory=list)
    receipts: list[ReceiptRef] = field(default_factory=list)
    facts: dict[str, Any] = field(default_factory=dict)
    overlays: list[Overlay] = field(default_factory=list)
    final_message: str = ""

    def apply(self, trace: StageTrace, patch: dict[str, Any]) -> None:
        """Fold one stage's output into the run."""

        self.trace.append(trace)
        self.receipts.extend(trace.receipts)
        self.facts.update(patch.get("facts") or {})
        if "final_message" in patch:
            self.final_message = str(patch["final_message"])

    def snapshot(self) -> dict[str, str | int | None]:
        return {
            "run_id": self.run_id,
            "tenant": self.tenant_domain,
            "command": self.command.value,
            "stages_done": len(self.trace),
            "receipt_count": len(self.receipts),
            "last_receipt_id": self.receipts[-1].id if self.receipts else None,
        }
