"""Audience segmentation for growth campaigns.

`compute_segment` is pure: it never touches the database, so the same members and rule always give
the same eligible/suppressed split.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field

from trusteye.models.enums import SuppressionReason


class ReferralRule(BaseModel):
    """Who qualifies for a referral ask."""

    name: str = "Referral advocates"
    rating_gte: int = Field(default=5, ge=1, le=5)
    sentiment: str = "positive"
    exclude_already_referred: bool = True

    def definition(self) -> dict[str, Any]:
        return {"kind": "referral_advocates", **self.model_dump(exclude={"name"})}


@dataclass(frozen=True)
class AudienceRow:
    address: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Suppressed:
    address: str
    reason: SuppressionReason


@dataclass(frozen=True)
class SegmentResult:
    eligible: tuple[str, ...]
    suppressed: tuple[Suppressed, ...]

    @property
    def reasons(self) -> dict[str, int]:
        """Counts per reason, keyed in reason order."""

        counts = Counter(s.reason for s in self.suppressed)
        return {r.value: counts[r] for r in SuppressionReason if counts[r]}


def suppression_reason(row: AudienceRow, rule: ReferralRule) -> SuppressionReason | None:
    """First failing check for a row, or None when it is eligible."""

    attrs = row.attributes or {}
    if not (row.address or "").strip():
        return SuppressionReason.MISSING_ADDRESS
    if bool(attrs.get("opted_out")):
        return SuppressionReason.OPTED_OUT
    rating = _as_number(attrs.get("rating"))
    if rating is None:
        return SuppressionReason.MISSING_RATING
    if rating < rule.rating_gte:
        return SuppressionReason.RATING_BELOW_THRESHOLD
    if str(attrs.get("sentiment") or "").strip().lower() != rule.sentiment.lower():
        return SuppressionReason.NON_POSITIVE_SENTIMENT
    if rule.exclude_already_referred and bool(attrs.get("referral_sent")):
        return SuppressionReason.ALREADY_REFERRED
    return None


def compute_segment(members: Iterable[AudienceRow], rule: ReferralRule) -> SegmentResult:
    """Split members into eligible addresses and suppressed rows with reasons.

    Args:
        members: Audience rows in a stable order.
        rule: Eligibility rule.

    Returns:
        Eligible addresses and suppressed rows, both in input order.
    """

    eligible: list[str] = []
    suppressed: list[Suppressed] = []
    for row in members:
        reason = suppression_reason(row, rule)
        if reason is None:
            eligible.append(row.address.strip())
        else:
            suppressed.append(Suppressed(address=(row.address or "").strip(), reason=reason))
    return SegmentResult(eligible=tuple(eligible), suppressed=tuple(suppressed))


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
