"""HTTP API tests using FastAPI's TestClient over an in-memory database."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from conftest import DOMAIN, RETURNS_QUESTION, SALE_QUESTION, RecordingTarget
from trusteye.api.app import create_app
from trusteye.config import Settings
from trusteye.db import session_scope
from trusteye.db.tables import Asset
from trusteye.policy import record_trust_score
from trusteye.publish.shopify import ShopifyPublisher
from trusteye.tenancy import get_tenant


@pytest.fixture()
def target() -> RecordingTarget:
    return RecordingTarget()


@pytest.fixture()
def client(settings: Settings, seeded_factory: sessionmaker[Session], target: RecordingTarget) -> TestClient:
    return TestClient(create_app(settings, session_factory=seeded_factory, target=target))


def _generated(client: TestClient) -> dict[str, dict]:
    res = client.post(f"/tenants/{DOMAIN}/recommendations")
    assert res.status_code == 200
    return {r["question_text"]: r for r in res.json()}


def test_health(client: TestClient) -> None:
    """It should report ok."""

    assert client.get("/health").json() == {"status": "ok"}


def test_command_for_unknown_tenant_is_404(client: TestClient) -> None:
    """It should map customer_not_found to a 404 error body."""

    res = client.post("/commands", json={"tenant_domain": "nobody.example.com", "command": "summarize"})
    assert res.status_code == 404
    assert res.json()["error"] == "customer_not_found"


def test_command_runs_the_pipeline(client: TestClient) -> None:
    """It should return the stage trace and summary for a known tenant."""

    res = client.post("/commands", json={"tenant_domain": f"https://{DOMAIN}/", "command": "recommend_content"})
    body = res.json()
    assert res.status_code == 200
    assert body["ok"] is True
    assert [t["stage"] for t in body["trace"]] == ["analyzer", "knowledge", "trust", "growth", "reporter"]
    assert body["summary_text"].startswith(f"Content recommendations for {DOMAIN}.")


def test_generate_and_list_recommendations(client: TestClient) -> None:
    """It should upsert recommendations and list them again without duplicates."""

    first = _generated(client)
    listed = client.get(f"/tenants/{DOMAIN}/recommendations").json()

    assert first[RETURNS_QUESTION]["surface"] == "FAQ"
    assert first[RETURNS_QUESTION]["target_url"] == "/site/faq"
    assert first[RETURNS_QUESTION]["has_draft"] is False
    assert {r["id"] for r in listed} == {r["id"] for r in first.values()}
    again = _generated(client)
    assert again[RETURNS_QUESTION]["id"] == first[RETURNS_QUESTION]["id"]


def test_draft_approve_publish_flow(client: TestClient, target: RecordingTarget) -> None:
    """It should move a verified recommendation to PUBLISHED and deliver it."""

    rec_id = _generated(client)[RETURNS_QUESTION]["id"]
    base = f"/tenants/{DOMAIN}/recommendations/{rec_id}"

    drafted = client.post(f"{base}/draft")
    approved = client.post(f"{base}/approve", json={"approved_by": "dana"})
    published = client.post(f"{base}/publish")

    assert drafted.status_code == 200 and drafted.json()["status"] == "DRAFTED"
    assert approved.status_code == 200 and approved.json()["status"] == "APPROVED"
    assert published.status_code == 200 and published.json()["status"] == "PUBLISHED"
    assert len(target.delivered) == 1

    receipts = client.get(f"/tenants/{DOMAIN}/receipts", params={"kind": "PUBLISH"}).json()
    assert [r["actor"] for r in receipts] == ["DELIVERY", "CONTENT_ENGINE"]


def test_publish_with_markers_is_400(client: TestClient) -> None:
    """It should refuse to publish a draft with unresolved facts."""

    rec_id = _generated(client)[SALE_QUESTION]["id"]
    base = f"/tenants/{DOMAIN}/recommendations/{rec_id}"
    client.post(f"{base}/draft")
    client.post(f"{base}/approve")

    res = client.post(f"{base}/publish")
    assert res.status_code == 400
    assert res.json()["error"] == "needs_verification"
    assert res.json()["missing_claims"] == ["returns.sale_items"]


def test_state_conflicts_are_409(client: TestClient) -> None:
    """It should map invalid transitions to 409 and unknown ids to 404."""

    rec_id = _generated(client)[RETURNS_QUESTION]["id"]
    base = f"/tenants/{DOMAIN}/recommendations"

    assert client.post(f"{base}/{rec_id}/publish").status_code == 409
    assert client.post(f"{base}/{rec_id}/dismiss", json={"reason": "covered elsewhere"}).status_code == 200
    assert client.post(f"{base}/{rec_id}/draft").status_code == 409
    missing = client.post(f"{base}/{'0' * 32}/draft")
    assert missing.status_code == 404
    assert missing.json()["error"] == "recommendation_not_found"


def test_claims_endpoint_adds_knowledge(client: TestClient) -> None:
    """It should store new claims and reject an empty batch."""

    res = client.post(
        f"/tenants/{DOMAIN}/claims",
        json={
            "claims": [
                {
                    "key": "returns.sale_items",
                    "value": "Sale items can be returned for store credit.",
                    "evidence": [{"url": "https://shop.example.com/pages/returns"}],
                }
            ]
        },
    )
    assert res.status_code == 200
    assert res.json()["claims"] == 1
    assert client.post(f"/tenants/{DOMAIN}/claims", json={"claims": []}).status_code == 422


def test_policy_and_blocked_campaign(client: TestClient, seeded_factory: sessionmaker[Session]) -> None:
    """It should expose the zone and answer 403 when trust blocks campaigns."""

    policy = client.get(f"/tenants/{DOMAIN}/policy").json()
    assert policy["zone"] == "SAFE"
    assert policy["default"] is True

    with session_scope(seeded_factory) as s:
        record_trust_score(s, get_tenant(s, DOMAIN).id, 10)

    assert client.get(f"/tenants/{DOMAIN}/policy").json()["zone"] == "UNSAFE"
    res = client.post(f"/tenants/{DOMAIN}/campaigns")
    assert res.status_code == 403
    assert res.json()["error"] == "policy_blocked"


def test_dry_run_campaign(client: TestClient) -> None:
    """It should create a dry-run campaign with segment counts."""

    res = client.post(f"/tenants/{DOMAIN}/campaigns", json={"dry_run": True})
    body = res.json()
    assert res.status_code == 200
    assert body["data"]["segment_size"] == 1
    assert body["data"]["suppressed_size"] == 3

    campaign_id = body["data"]["campaign_id"]
    executed = client.post(f"/tenants/{DOMAIN}/campaigns/{campaign_id}/execute")
    assert executed.status_code == 200
    assert executed.json()["status"] == "EXECUTED"
    assert client.post(f"/tenants/{DOMAIN}/campaigns/{campaign_id}/execute").status_code == 409


def test_campaigns_are_listed(client: TestClient) -> None:
    """It should list created campaigns newest first."""

    assert client.get(f"/tenants/{DOMAIN}/campaigns").json() == []
    created = client.post(f"/tenants/{DOMAIN}/campaigns").json()["data"]["campaign_id"]

    listed = client.get(f"/tenants/{DOMAIN}/campaigns").json()
    assert [c["id"] for c in listed] == [created]
    assert listed[0]["status"] == "READY"
    assert listed[0]["dry_run"] is True


def test_publish_survives_storefront_outage(settings: Settings, seeded_factory: sessionmaker[Session]) -> None:
    """It should commit the internal publish even when the storefront answers with an HTML page."""

    shopify = ShopifyPublisher(
        store_domain="example.myshopify.com",
        access_token="shpat_test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
    )
    client = TestClient(create_app(settings, session_factory=seeded_factory, target=shopify))
    rec = _generated(client)[RETURNS_QUESTION]
    rec_id = rec["id"]
    base = f"/tenants/{DOMAIN}/recommendations/{rec_id}"
    client.post(f"{base}/draft")
    client.post(f"{base}/approve")

    res = client.post(f"{base}/publish")

    assert res.status_code == 200
    assert res.json()["data"]["delivery"]["ok"] is False
    published = client.get(f"/tenants/{DOMAIN}/receipts", params={"kind": "PUBLISH"}).json()
    assert [r["actor"] for r in published] == ["CONTENT_ENGINE"]
    with session_scope(seeded_factory) as s:
        assert s.scalars(select(Asset)).one().slug == rec["stable_slug"]
