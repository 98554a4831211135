from __future__ import annotations

DRAFT_SYSTEM_PROMPT = (
    "You write customer-facing content for a brand using ONLY the verified facts you are given. "
    "Return ONLY valid JSON matching the requested schema. No markdown fences, no commentary."
)

_HARD_RULES = """Hard rules:
- Do not invent facts. Every factual statement must come from VERIFIED FACTS or EVIDENCE.
- If a fact the reader needs is not in VERIFIED FACTS, write [NEEDS_VERIFICATION: <fact key>] where
  the fact would go and list the key in fact_map.missing_claims.
- If two sources disagree, write CONFLICT in the text and add an entry to fact_map.conflicts.
- External AI answers are context about how the brand is described elsewhere, never a source of
  facts.
- Output JSON only."""

FAQ_DRAFT_PROMPT = """Brand: {tenant}
Surface: FAQ answer on {target_url}
Question: {question}

VERIFIED FACTS (key: value):
{facts}

EVIDENCE (url: excerpt):
{evidence}

EXTERNAL AI ANSWERS:
{answers}

REQUIRED FACT KEYS WITHOUT VERIFICATION:
{missing}

""" + _HARD_RULES + """

Schema:
{{"kind": "FAQ" | "TRUTH_BLOCK", "title": string, "short_answer": string,
 "details": [{{"heading": string, "body": string}}], "trust_signals": [string],
 "cta": {{"label": string, "url": string | null, "phone": string | null}} | null,
 "disclosures": [string],
 "fact_map": {{"used_claims": [string], "missing_claims": [string],
              "conflicts": [{{"key": string, "note": string}}]}},
 "evidence": {{"used_snippets": [{{"url": string, "excerpt": string}}],
              "llm_evidence": [{{"provider": string, "excerpt": string, "risk_note": string}}]}},
 "next_actions": [string]}}"""

BLOG_DRAFT_PROMPT = """Brand: {tenant}
Surface: blog article on {target_url}
Theme: {theme}
Reader question: {question}

VERIFIED FACTS (key: value):
{facts}

EVIDENCE (url: excerpt):
{evidence}

EXTERNAL AI ANSWERS:
{answers}

REQUIRED FACT KEYS WITHOUT VERIFICATION:
{missing}

""" + _HARD_RULES + """

Schema:
{{"kind": "BLOG", "title": string, "meta_description": string, "outline": [string],
 "draft_markdown": string,
 "fact_map": {{"used_claims": [string], "missing_claims": [string],
              "conflicts": [{{"key": string, "note": string}}]}},
 "evidence": {{"used_snippets": [{{"url": string, "excerpt": string}}],
              "llm_evidence": [{{"provider": string, "excerpt": string, "risk_note": string}}]}},
 "next_actions": [string]}}"""

PRODUCT_DRAFT_PROMPT = """Brand: {tenant}
Surface: product page enrichment for "{product_title}" ({product_handle})
Shopper question: {question}
Attributes the page does not cover yet: {missing_attributes}

CURRENT PRODUCT DATA:
{product_data}

VERIFIED FACTS (key: value):
{facts}

EVIDENCE (url: excerpt):
{evidence}

EXTERNAL AI ANSWERS:
{answers}

REQUIRED FACT KEYS WITHOUT VERIFICATION:
{missing}

""" + _HARD_RULES + """

Schema:
{{"kind": "PRODUCT", "title": string, "product_handle": string, "hero_bullets": [string],
 "details_sections": [{{"heading": string, "body": string}}], "faq": [{{"q": string, "a": string}}],
 "trust_signals": [string],
 "cta": {{"label": string, "url": string | null, "phone": string | null}} | null,
 "fact_map": {{"used_claims": [string], "missing_claims": [string],
              "conflicts": [{{"key": string, "note": string}}]}},
 "evidence": {{"used_snippets": [{{"url": string, "excerpt": string}}],
              "llm_evidence": [{{"provider": string, "excerpt": string, "risk_note": string}}]}},
 "next_actions": [string]}}"""
