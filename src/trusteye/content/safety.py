"""Verification marker parsing and the publish safety gate."""

from __future__ import annotations

import re
from typing import Iterable

from trusteye.errors import NeedsVerificationError
from trusteye.models.drafts import DraftPayload

MARKER_TOKEN = "NEEDS_VERIFICATION"

_MARKER_RE = re.compile(r"\[\s*NEEDS_VERIFICATION\s*:\s*([^\]]+?)\s*\]", re.IGNORECASE)
_BARE_RE = re.compile(r"NEEDS_VERIFICATION", re.IGNORECASE)


def render_marker(payload: str) -> str:
    """Inline marker for a fact that could not be verified."""

    return f"[{MARKER_TOKEN}: {payload.strip()}]"


def extract_markers(text: str) -> list[str]:
    """Extract marker payloads from `[NEEDS_VERIFICATION: ...]` tokens.

    Args:
        text: Rendered draft text.

    Returns:
        Payloads in first-seen order. A bare `NEEDS_VERIFICATION` token without a bracketed
        payload yields `["NEEDS_VERIFICATION"]`.
    """

    if not text:
        return []
    found = [p for p in (m.group(1).strip() for m in _MARKER_RE.finditer(text)) if p]
    if not found and _BARE_RE.search(text):
        return [MARKER_TOKEN]
    return _dedupe(found)


def unresolved_markers(draft: DraftPayload) -> list[str]:
    """Markers in the rendered body merged with the structured list."""

    return _dedupe([*extract_markers(draft.body_markdown), *draft.needs_verification])


def enforce(draft: DraftPayload) -> None:
    """Raise `NeedsVerificationError` if the draft carries any unresolved marker."""

    markers = unresolved_markers(draft)
    if markers:
        raise NeedsVerificationError(markers)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for x in items:
        if x and x not in seen:
            out.append(x)
            seen.add(x)
    return out
