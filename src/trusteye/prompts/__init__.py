from __future__ import annotations

from trusteye.prompts.drafts import (
    BLOG_DRAFT_PROMPT,
    DRAFT_SYSTEM_PROMPT,
    FAQ_DRAFT_PROMPT,
    PRODUCT_DRAFT_PROMPT,
)

__all__ = [
    "DRAFT_SYSTEM_PROMPT",
    "FAQ_DRAFT_PROMPT",
    "BLOG_DRAFT_PROMPT",
    "PRODUCT_DRAFT_PROMPT",
]
