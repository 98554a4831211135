"""Stage orchestrator for operator commands."""

from __future__ import annotations

from trusteye.orchestrator.runner import run_command

__all__ = ["run_command"]
