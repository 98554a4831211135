"""Stable identifier utilities."""

from __future__ import annotations


def stable_hash32(text: str) -> int:
    """Deterministic 32-bit string hash (`h = h * 31 + code point`, wrapped).

    Unlike the builtin `hash`, the value is stable across processes.
    """

    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def stable_slug(prefix: str, *parts: str) -> str:
    """Build an identifier such as `faq-1a2b3c4d` from a prefix and seed parts.

    Args:
        prefix: Human-readable prefix, usually the surface name.
        parts: Seed values that identify the source (tenant, surface, source id).

    Returns:
        The stable slug.
    """

    seed = "|".join([prefix, *parts]).lower()
    return f"{prefix.lower()}-{stable_hash32(seed):08x}"
