"""Topic routing and coverage heuristics for the recommendation classifier.

Everything here is pure: it works on plain strings and catalog rows so the classifier stays
deterministic for a fixed tenant state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from trusteye.db.tables import Product
from trusteye.models.enums import Surface
from trusteye.utils.slugs import stable_hash32

GENERAL = "general"


def _terms(*words: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(rf"\b{re.escape(w)}\b", re.IGNORECASE) for w in words)


@dataclass(frozen=True)
class TopicRules:
    """Term lists that decide relevance and the surface a question belongs on."""

    irrelevant: tuple[re.Pattern[str], ...] = _terms(
        "nissan", "lease", "apr", "trade-in", "trade in", "test drive",
        "service appointment", "used car", "financing",
    )
    policy: tuple[re.Pattern[str], ...] = _terms(
        "return", "returns", "refund", "exchange", "shipping", "ship", "delivery", "warranty",
        "guarantee", "policy", "track", "order", "payment", "discount",
    )
    product: tuple[re.Pattern[str], ...] = _terms(
        "size", "sizing", "fit", "fits", "material", "fabric", "waterproof", "water",
        "care", "wash", "dimensions", "weight", "stretch",
    )
    blog: tuple[re.Pattern[str], ...] = _terms(
        "which", "best", "difference", "vs", "versus", "compare", "office", "wedding",
        "travel", "guide", "how to", "style", "occasion",
    )


DEFAULT_RULES = TopicRules()


@dataclass(frozen=True)
class TopicRoute:
    relevant: bool
    surface: Surface
    topic: str


def route_topic(text: str, rules: TopicRules = DEFAULT_RULES) -> TopicRoute:
    """Decide whether a question is on-topic and which surface should answer it."""

    if _hits(rules.irrelevant, text):
        return TopicRoute(relevant=False, surface=Surface.FAQ, topic="irrelevant")
    if _hits(rules.policy, text):
        return TopicRoute(relevant=True, surface=Surface.FAQ, topic="policy")
    if _hits(rules.product, text):
        return TopicRoute(relevant=True, surface=Surface.PRODUCT, topic="product")
    if _hits(rules.blog, text):
        return TopicRoute(relevant=True, surface=Surface.BLOG, topic="guide")
    return TopicRoute(relevant=True, surface=Surface.FAQ, topic=GENERAL)


def _hits(patterns: Iterable[re.Pattern[str]], text: str) -> bool:
    return any(p.search(text) for p in patterns)


# Product attributes

PRODUCT_ATTRIBUTES: dict[str, re.Pattern[str]] = {
    "materials": re.compile(
        r"\b(materials?|fabric|cotton|wool|leather|polyester|linen|silk|nylon|merino)\b", re.I
    ),
    "fit_sizing": re.compile(
        r"\b(fit|fits|sizing|size guide|size chart|true to size|runs (small|large))\b", re.I
    ),
    "care": re.compile(r"\b(care|machine wash|hand wash|dry clean|wash)\b", re.I),
    "returns": re.compile(r"\b(returns?|refunds?|exchanges?)\b", re.I),
    "shipping": re.compile(r"\b(ships?|shipping|delivery|dispatch)\b", re.I),
    "use_cases": re.compile(
        r"\b(occasions?|ideal for|perfect for|great for|use cases?|office|wedding|travel|everyday)\b",
        re.I,
    ),
}


def product_haystack(product: Product) -> str:
    specs = " ".join(f"{k}: {_flatten(v)}" for k, v in sorted((product.specs or {}).items()))
    return " ".join([product.title, " ".join(product.tags or []), specs, product.description or ""])


def missing_attributes(product: Product) -> list[str]:
    """Attributes not evidenced anywhere in the product's tags, specs or description."""

    hay = product_haystack(product)
    return [name for name, pattern in PRODUCT_ATTRIBUTES.items() if not pattern.search(hay)]


def _flatten(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(_flatten(v) for v in value)
    if isinstance(value, dict):
        return " ".join(f"{k} {_flatten(v)}" for k, v in value.items())
    return str(value)


def pick_product(text: str, products: Sequence[Product]) -> Product | None:
    """Resolve the catalog item a question is about.

    An explicit handle or title mention wins; otherwise a deterministic hash of the text picks
    one so repeated runs agree.
    """

    if not products:
        return None
    lowered = text.lower()
    for product in products:
        handle_words = product.handle.replace("-", " ").replace("_", " ").lower()
        if product.handle.lower() in lowered or handle_words in lowered:
            return product
        if product.title and product.title.lower() in lowered:
            return product
    return products[stable_hash32(lowered) % len(products)]


# Blog themes

THEMES: dict[str, re.Pattern[str]] = {
    "shipping": re.compile(r"\b(ship\w*|deliver\w*)\b", re.I),
    "returns": re.compile(r"\b(return\w*|refund\w*|exchange\w*)\b", re.I),
    "sizing": re.compile(r"\b(size|sizing|fit|fits)\b", re.I),
    "occasions": re.compile(r"\b(occasions?|wedding|office|travel|party|work)\b", re.I),
    "materials_care": re.compile(r"\b(materials?|fabric|cotton|wool|linen|wash|care)\b", re.I),
}


def themes_for(text: str) -> list[str]:
    return [name for name, pattern in THEMES.items() if pattern.search(text)]


@dataclass
class ThemeInventory:
    """Which blog themes are already covered and which are demanded but uncovered."""

    covered: set[str] = field(default_factory=set)
    demanded: set[str] = field(default_factory=set)

    @property
    def missing(self) -> list[str]:
        return sorted(self.demanded - self.covered)

    def first_missing_for(self, text: str) -> str | None:
        missing = set(self.missing)
        for theme in themes_for(text):
            if theme in missing:
                return theme
        return None


def build_theme_inventory(
    *, inventory_texts: Iterable[str], demand_texts: Iterable[str]
) -> ThemeInventory:
    """Compare existing blog inventory against the themes of top demand.

    Args:
        inventory_texts: Titles/slugs/snippets of content already on the blog.
        demand_texts: Texts of high-impact questions.
    """

    inv = ThemeInventory()
    for text in inventory_texts:
        inv.covered.update(themes_for(text))
    for text in demand_texts:
        inv.demanded.update(themes_for(text))
    return inv


# FAQ coverage

_WORD_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"the", "and", "for", "you", "your", "are", "does", "what", "how", "can", "with", "this", "that", "from", "have", "any", "is", "do", "a", "an", "of", "to", "in", "on", "it", "my", "i"}
)


def content_tokens(text: str) -> set[str]:
    return {t for t in _WORD_RE.findall(text.lower()) if len(t) >= 3 and t not in _STOPWORDS}


def covered_on_page(question: str, page_texts: Iterable[str], *, min_overlap: float = 0.6) -> bool:
    """True when some page text contains most of the question's content words."""

    tokens = content_tokens(question)
    if not tokens:
        return True
    for text in page_texts:
        hay = content_tokens(text)
        if len(tokens & hay) / len(tokens) >= min_overlap:
            return True
    return False
