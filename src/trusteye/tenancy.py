"""Tenant lookup by domain."""

from __future__ import annotations

from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.orm import Session

from trusteye.db.tables import Tenant
from trusteye.errors import NotFoundError


def normalize_domain(raw: str) -> str:
    """Reduce a URL or host to a bare lowercase domain (`https://www.Shop.com/x` -> `shop.com`)."""

    value = (raw or "").strip().lower()
    if "://" not in value:
        value = "//" + value
    host = urlsplit(value).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def get_tenant(session: Session, domain: str) -> Tenant:
    """Resolve a tenant by domain or raise `NotFoundError(customer_not_found)`."""

    normalized = normalize_domain(domain)
    tenant = session.scalar(select(Tenant).where(Tenant.domain == normalized))
    if tenant is None:
        raise NotFoundError(f"No customer registered for domain '{normalized}'", code="customer_not_found")
    return tenant


def ensure_tenant(session: Session, domain: str, *, name: str = "") -> Tenant:
    """Get or create the tenant for `domain`."""

    normalized = normalize_domain(domain)
    if not normalized:
        raise ValueError(f"Invalid domain: {domain!r}")
    tenant = session.scalar(select(Tenant).where(Tenant.domain == normalized))
    if tenant is None:
        tenant = Tenant(domain=normalized, name=name or normalized)
        session.add(tenant)
        session.flush()
    return tenant
