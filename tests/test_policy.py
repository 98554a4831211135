"""Tests for the trust policy engine."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from trusteye.config import Settings, TrustThresholds
from trusteye.db.tables import Tenant
from trusteye.errors import ConfigError
from trusteye.models.enums import TrustZone
from trusteye.policy import (
    ALL_ACTIONS,
    CAMPAIGNS_DRY_RUN,
    CAMPAIGNS_SEND,
    CRAWL,
    PUBLISH,
    latest_trust,
    policy,
    record_trust_score,
    tenant_policy,
)


@pytest.mark.parametrize(
    ("total", "zone"),
    [
        (0, TrustZone.UNSAFE),
        (10, TrustZone.UNSAFE),
        (40, TrustZone.UNSAFE),
        (41, TrustZone.CAUTION),
        (65, TrustZone.CAUTION),
        (66, TrustZone.SAFE),
        (100, TrustZone.SAFE),
    ],
)
def test_policy_zone_boundaries(total: int, zone: TrustZone) -> None:
    """It should map totals to zones with inclusive upper bounds 40 and 65."""

    assert policy(total).zone is zone


def test_policy_is_monotonic() -> None:
    """It should never allow fewer actions at a higher score."""

    for total in range(100):
        lower = set(policy(total).allowed)
        higher = set(policy(total + 1).allowed)
        assert lower <= higher


def test_policy_allowed_and_blocked_partition_all_actions() -> None:
    """It should list every action exactly once, as allowed or blocked."""

    for total in (5, 50, 90):
        p = policy(total)
        assert sorted(p.allowed + p.blocked) == sorted(ALL_ACTIONS)
        assert not set(p.allowed) & set(p.blocked)


def test_policy_gates_growth_by_zone() -> None:
    """It should block campaigns when UNSAFE and sends below SAFE."""

    unsafe, caution, safe = policy(10), policy(50), policy(80)
    assert unsafe.allows(CRAWL)
    assert not unsafe.allows(CAMPAIGNS_DRY_RUN)
    assert caution.allows(CAMPAIGNS_DRY_RUN)
    assert not caution.allows(CAMPAIGNS_SEND)
    assert not caution.allows(PUBLISH)
    assert safe.allows(CAMPAIGNS_SEND)


def test_policy_clamps_out_of_range_totals() -> None:
    """It should clamp totals into 0..100."""

    assert policy(-20).total == 0
    assert policy(250).total == 100


def test_thresholds_must_be_ordered() -> None:
    """It should reject thresholds that do not satisfy unsafe_max < caution_max."""

    with pytest.raises(ConfigError):
        TrustThresholds(unsafe_max=70, caution_max=60)


def test_custom_thresholds_move_zone_boundaries() -> None:
    """It should honor configured cut-offs."""

    t = TrustThresholds(unsafe_max=20, caution_max=30)
    assert policy(25, t).zone is TrustZone.CAUTION
    assert policy(31, t).zone is TrustZone.SAFE


def test_latest_trust_defaults_without_snapshot(session: Session, tenant: Tenant, settings: Settings) -> None:
    """It should fall back to the configured default and flag it."""

    reading = latest_trust(session, tenant.id, settings)
    assert reading.total == 70
    assert reading.is_default


def test_tenant_policy_uses_latest_snapshot(session: Session, tenant: Tenant, settings: Settings) -> None:
    """It should read the most recent snapshot."""

    record_trust_score(session, tenant.id, 90)
    snap = record_trust_score(session, tenant.id, 12, {"proof": 4})
    pol, reading = tenant_policy(session, tenant, settings)
    assert reading.snapshot_id == snap.id
    assert pol.zone is TrustZone.UNSAFE


def test_tenant_policy_applies_tenant_overrides(session: Session, tenant: Tenant, settings: Settings) -> None:
    """It should use per-tenant threshold overrides when present."""

    tenant.trust_unsafe_max = 10
    tenant.trust_caution_max = 20
    record_trust_score(session, tenant.id, 30)
    pol, _ = tenant_policy(session, tenant, settings)
    assert pol.zone is TrustZone.SAFE
