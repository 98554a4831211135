"""Render structured drafts to markdown.

Every missing fact ends up as an inline marker in the rendered body, so a reader of the plain text
sees exactly what the safety gate sees.
"""

from __future__ import annotations

from typing import Sequence

from trusteye.content.safety import extract_markers, render_marker
from trusteye.models.drafts import BlogDraft, ContentDraft, Cta, FaqDraft, ProductDraft, TruthBlockDraft


def render_draft(draft: ContentDraft, missing: Sequence[str] = ()) -> str:
    """Render any draft kind and append markers for missing facts not already inline."""

    if isinstance(draft, (FaqDraft, TruthBlockDraft)):
        body = _render_answer(draft)
    elif isinstance(draft, BlogDraft):
        body = _render_blog(draft)
    else:
        body = _render_product(draft)
    return append_markers(body, missing)


def append_markers(body: str, missing: Sequence[str]) -> str:
    present = set(extract_markers(body))
    extra = [render_marker(m) for m in missing if m and m not in present]
    if not extra:
        return body
    return body.rstrip() + "\n\n" + "\n".join(extra) + "\n"


def _render_answer(draft: FaqDraft | TruthBlockDraft) -> str:
    lines = [f"Q: {draft.title}", "", f"A: {draft.short_answer}"]
    for section in draft.details:
        lines += ["", f"### {section.heading}", section.body]
    lines += _bullets("Trust signals:", draft.trust_signals)
    lines += _bullets("Disclosures:", draft.disclosures)
    lines += _cta(draft.cta)
    return "\n".join(lines).strip() + "\n"


def _render_blog(draft: BlogDraft) -> str:
    return f"# {draft.title}\n\n{draft.draft_markdown.strip()}\n"


def _render_product(draft: ProductDraft) -> str:
    lines = [f"# {draft.title}", ""]
    lines += [f"- {b}" for b in draft.hero_bullets]
    for section in draft.details_sections:
        lines += ["", f"## {section.heading}", section.body]
    if draft.faq:
        lines += ["", "## FAQ"]
        for qa in draft.faq:
            lines += [f"**Q:** {qa.q}", f"A: {qa.a}", ""]
    if draft.trust_signals:
        lines += ["", "## Trust & proof"] + [f"- {s}" for s in draft.trust_signals]
    lines += _cta(draft.cta)
    return "\n".join(lines).strip() + "\n"


def _bullets(label: str, items: Sequence[str]) -> list[str]:
    if not items:
        return []
    return ["", label] + [f"- {x}" for x in items]


def _cta(cta: Cta | None) -> list[str]:
    if cta is None:
        return []
    target = cta.url or cta.phone
    return ["", f"{cta.label}: {target}" if target else cta.label]
