"""Closed vocabularies shared by the store, the engines and the API."""

from __future__ import annotations

from enum import Enum


class ReceiptKind(str, Enum):
    """What a receipt records."""

    READ = "READ"
    DECIDE = "DECIDE"
    EXECUTE = "EXECUTE"
    PUBLISH = "PUBLISH"
    SUPPRESS = "SUPPRESS"


class Actor(str, Enum):
    """Component that wrote a receipt."""

    CRAWLER = "CRAWLER"
    ORCHESTRATOR = "ORCHESTRATOR"
    INTENT_ENGINE = "INTENT_ENGINE"
    TRUST_ENGINE = "TRUST_ENGINE"
    CONTENT_ENGINE = "CONTENT_ENGINE"
    RULE_ENGINE = "RULE_ENGINE"
    DELIVERY = "DELIVERY"


class QuestionTaxonomy(str, Enum):
    PRODUCT = "PRODUCT"
    POLICY = "POLICY"
    SHIPPING = "SHIPPING"
    PRICING = "PRICING"
    TRUST = "TRUST"
    COMPARISON = "COMPARISON"
    GENERAL = "GENERAL"


class QuestionState(str, Enum):
    UNANSWERED = "UNANSWERED"
    WEAK = "WEAK"
    ANSWERED = "ANSWERED"
    STALE = "STALE"
    TRUSTED = "TRUSTED"


class GapType(str, Enum):
    MISSING_CLAIM = "MISSING_CLAIM"
    MISSING_PROOF = "MISSING_PROOF"
    STALE = "STALE"
    LLM_WEAK = "LLM_WEAK"


class Action(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    NO_OP = "NO_OP"
    DEFER = "DEFER"
    SKIP = "SKIP"


ACTION_PRIORITY: dict[Action, int] = {
    Action.CREATE: 0,
    Action.UPDATE: 0,
    Action.NO_OP: 1,
    Action.DEFER: 2,
    Action.SKIP: 3,
}

ACTIONABLE = frozenset({Action.CREATE, Action.UPDATE})


class Surface(str, Enum):
    FAQ = "FAQ"
    BLOG = "BLOG"
    PRODUCT = "PRODUCT"


class RecommendationStatus(str, Enum):
    PROPOSED = "PROPOSED"
    DRAFTED = "DRAFTED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    DISMISSED = "DISMISSED"


class AssetType(str, Enum):
    FAQ = "FAQ"
    BLOG = "BLOG"
    TRUTH_BLOCK = "TRUTH_BLOCK"


class AssetStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"


class PatchStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    SUPERSEDED = "SUPERSEDED"


class AnswerQuality(str, Enum):
    """External-answer quality of the latest probe sample."""

    NONE = "none"
    UNVERIFIABLE = "unverifiable"
    WEAK = "weak"
    STRONG = "strong"


class TrustZone(str, Enum):
    UNSAFE = "UNSAFE"
    CAUTION = "CAUTION"
    SAFE = "SAFE"


class CampaignStatus(str, Enum):
    READY = "READY"
    APPROVED = "APPROVED"
    EXECUTED = "EXECUTED"


class SendStatus(str, Enum):
    DRY_RUN = "DRY_RUN"
    SUPPRESSED = "SUPPRESSED"
    SENT = "SENT"
    FAILED = "FAILED"


class SuppressionReason(str, Enum):
    """Why an audience row was excluded from a segment, in evaluation order."""

    MISSING_ADDRESS = "missing_address"
    OPTED_OUT = "opted_out"
    MISSING_RATING = "missing_rating"
    # Code kept stable for ledger consumers even when the rating threshold is configured.
    RATING_BELOW_THRESHOLD = "rating_below_5"
    NON_POSITIVE_SENTIMENT = "non_positive_sentiment"
    ALREADY_REFERRED = "already_referred"


class Command(str, Enum):
    """Orchestrator command discriminator."""

    ANALYZE_GAPS = "analyze_gaps"
    RECOMMEND_CONTENT = "recommend_content"
    DRAFT_CONTENT = "draft_content"
    APPROVE_CONTENT = "approve_content"
    PUBLISH_CONTENT = "publish_content"
    CHECK_TRUST = "check_trust"
    LAUNCH_CAMPAIGN = "launch_campaign"
    SUMMARIZE = "summarize"


class StageName(str, Enum):
    ANALYZER = "analyzer"
    KNOWLEDGE = "knowledge"
    TRUST = "trust"
    GROWTH = "growth"
    REPORTER = "reporter"
