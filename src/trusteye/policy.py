"""Trust policy engine.

`policy()` is a pure function from a trust-score total to a zone and an explicit allow/block
list. Allowed sets are nested by zone, so a higher score never allows fewer actions.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from trusteye.config import Settings, TrustThresholds
from trusteye.db.tables import Tenant, TrustScoreSnapshot
from trusteye.models.enums import TrustZone

CRAWL = "crawl"
BUILD_KNOWLEDGE = "build_knowledge"
GENERATE_DRAFTS = "generate_drafts"
PUBLISH_WITH_APPROVAL = "publish_with_approval"
CAMPAIGNS_DRY_RUN = "campaigns_dry_run"
PUBLISH = "publish"
CAMPAIGNS_SEND = "campaigns_send"
AUTOMATED_OUTREACH = "automated_outreach"

ZONE_ORDER: tuple[TrustZone, ...] = (TrustZone.UNSAFE, TrustZone.CAUTION, TrustZone.SAFE)

# Actions unlocked on entering each zone; a zone allows its own plus every lower zone's.
_UNLOCKS: dict[TrustZone, tuple[str, ...]] = {
    TrustZone.UNSAFE: (CRAWL, BUILD_KNOWLEDGE, GENERATE_DRAFTS),
    TrustZone.CAUTION: (PUBLISH_WITH_APPROVAL, CAMPAIGNS_DRY_RUN),
    TrustZone.SAFE: (PUBLISH, CAMPAIGNS_SEND, AUTOMATED_OUTREACH),
}

ALL_ACTIONS: tuple[str, ...] = tuple(a for zone in ZONE_ORDER for a in _UNLOCKS[zone])
GROWTH_ACTIONS = frozenset({CAMPAIGNS_DRY_RUN, CAMPAIGNS_SEND, AUTOMATED_OUTREACH})


@dataclass(frozen=True)
class TrustPolicy:
    zone: TrustZone
    total: int
    allowed: tuple[str, ...]
    blocked: tuple[str, ...]

    def allows(self, action: str) -> bool:
        return action in self.allowed

    def as_dict(self) -> dict[str, object]:
        return {
            "zone": self.zone.value,
            "total": self.total,
            "allowed": list(self.allowed),
            "blocked": list(self.blocked),
        }


def trust_zone(total: int, thresholds: TrustThresholds | None = None) -> TrustZone:
    """Map a 0-100 total to its zone."""

    t = thresholds or TrustThresholds()
    if total <= t.unsafe_max:
        return TrustZone.UNSAFE
    if total <= t.caution_max:
        return TrustZone.CAUTION
    return TrustZone.SAFE


def policy(total: int, thresholds: TrustThresholds | None = None) -> TrustPolicy:
    """Compute the trust policy for a score.

    Args:
        total: Trust score; clamped to 0..100.
        thresholds: Zone cut-offs; defaults to 40/65.

    Returns:
        Zone plus allowed and blocked actions.
    """

    total = max(0, min(100, int(total)))
    zone = trust_zone(total, thresholds)
    allowed: list[str] = []
    for z in ZONE_ORDER:
        allowed.extend(_UNLOCKS[z])
        if z is zone:
            break
    blocked = tuple(a for a in ALL_ACTIONS if a not in allowed)
    return TrustPolicy(zone=zone, total=total, allowed=tuple(allowed), blocked=blocked)


# Snapshot access


@dataclass(frozen=True)
class TrustReading:
    total: int
    snapshot_id: int | None

    @property
    def is_default(self) -> bool:
        return self.snapshot_id is None


def record_trust_score(
    session: Session, tenant_id: str, total: int, components: dict[str, int] | None = None
) -> TrustScoreSnapshot:
    """Append an immutable trust score snapshot."""

    snap = TrustScoreSnapshot(
        tenant_id=tenant_id, total=max(0, min(100, int(total))), components=dict(components or {})
    )
    session.add(snap)
    session.flush()
    return snap


def latest_trust(session: Session, tenant_id: str, settings: Settings) -> TrustReading:
    """Most recent snapshot total, or the configured default when none exists."""

    snap = session.scalar(
        select(TrustScoreSnapshot)
        .where(TrustScoreSnapshot.tenant_id == tenant_id)
        .order_by(TrustScoreSnapshot.created_at.desc(), TrustScoreSnapshot.id.desc())
        .limit(1)
    )
    if snap is None:
        return TrustReading(total=settings.trust_default_total, snapshot_id=None)
    return TrustReading(total=snap.total, snapshot_id=snap.id)


def tenant_policy(session: Session, tenant: Tenant, settings: Settings) -> tuple[TrustPolicy, TrustReading]:
    """Current policy for a tenant, honoring its threshold overrides."""

    reading = latest_trust(session, tenant.id, settings)
    thresholds = settings.trust_thresholds(
        unsafe_max=tenant.trust_unsafe_max, caution_max=tenant.trust_caution_max
    )
    return policy(reading.total, thresholds), reading
