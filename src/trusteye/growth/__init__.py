"""Trust-gated growth campaigns."""

from __future__ import annotations

from trusteye.growth.campaigns import approve_campaign, create_campaign, execute_campaign
from trusteye.growth.segments import ReferralRule, compute_segment

__all__ = ["ReferralRule", "approve_campaign", "compute_segment", "create_campaign", "execute_campaign"]
