"""Shopify publisher tests using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from trusteye.config import Settings
from trusteye.errors import ConfigError, UpstreamError
from trusteye.publish.pipeline import PublishedContent
from trusteye.publish.shopify import ShopifyPublisher, markdown_to_html

FAQ = PublishedContent(
    kind="FAQ",
    slug="faq-1a2b3c4d",
    title="What is your return policy?",
    body_markdown="Returns are accepted within 30 days.\n\n- Unworn items\n- Original packaging",
    target_url="/site/faq",
)


def _publisher(handler, **kwargs) -> ShopifyPublisher:
    return ShopifyPublisher(
        store_domain="https://example.myshopify.com/",
        access_token="shpat_test",
        transport=httpx.MockTransport(handler),
        retry_backoff_s=0,
        **kwargs,
    )


def test_markdown_to_html() -> None:
    """It should render headings, bullets and escaped paragraphs."""

    out = markdown_to_html("## Returns\n\nKeep tags <on>.\n\n- One\n- Two")
    assert out == "<h2>Returns</h2>\n<p>Keep tags &lt;on&gt;.</p>\n<ul><li>One</li><li>Two</li></ul>"


def test_faq_updates_existing_page_section() -> None:
    """It should replace the anchored section on the FAQ page and keep the rest."""

    seen: list[tuple[str, str, dict]] = []
    existing = '<p>Intro</p>\n<section id="faq-1a2b3c4d"><h2>Old</h2><p>stale</p></section>'

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        seen.append((request.method, request.url.path, body))
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
        if request.method == "GET":
            assert request.url.params["handle"] == "faq"
            return httpx.Response(200, json={"pages": [{"id": 7, "body_html": existing}]})
        return httpx.Response(200, json={"page": {"id": 7}})

    result = _publisher(handler).deliver(FAQ)

    assert result == {"resource": "page", "id": 7, "created": False}
    method, path, body = seen[-1]
    assert (method, path) == ("PUT", "/admin/api/2024-01/pages/7.json")
    html = body["page"]["body_html"]
    assert html.startswith("<p>Intro</p>")
    assert "stale" not in html
    assert html.count('<section id="faq-1a2b3c4d">') == 1


def test_faq_creates_page_when_missing() -> None:
    """It should create the FAQ page when the store has none."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"pages": []})
        assert request.method == "POST"
        return httpx.Response(201, json={"page": {"id": 11}})

    assert _publisher(handler).deliver(FAQ) == {"resource": "page", "id": 11, "created": True}


def test_product_patch_writes_metafield() -> None:
    """It should look the product up by handle and post a metafield."""

    content = PublishedContent(
        kind="PRODUCT",
        slug="linen-shirt",
        title="Linen Shirt",
        body_markdown="100% linen.",
        target_url="/site/products/linen-shirt",
        product_handle="linen-shirt",
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"products": [{"id": 42}]})
        assert request.url.path.endswith("/products/42/metafields.json")
        assert json.loads(request.content)["metafield"]["value"] == "100% linen."
        return httpx.Response(201, json={"metafield": {"id": 5}})

    assert _publisher(handler).deliver(content) == {"resource": "metafield", "id": 5, "product_id": 42}


def test_retries_transient_status() -> None:
    """It should retry a 503 and succeed on the next attempt."""

    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503)
        if request.method == "GET":
            return httpx.Response(200, json={"pages": []})
        return httpx.Response(201, json={"page": {"id": 3}})

    result = _publisher(handler, max_retries=2).deliver(FAQ)
    assert result["id"] == 3
    assert calls["n"] == 3


def test_failure_raises_upstream_error() -> None:
    """It should raise UpstreamError carrying the last status code."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(UpstreamError) as exc:
        _publisher(handler, max_retries=0).deliver(FAQ)
    assert exc.value.status_code == 500
    assert exc.value.service == "shopify"


def test_client_error_is_not_retried() -> None:
    """It should give up immediately on a 401."""

    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401)

    with pytest.raises(UpstreamError):
        _publisher(handler, max_retries=3).deliver(FAQ)
    assert calls["n"] == 1


def test_from_settings_requires_credentials() -> None:
    """It should name the missing settings."""

    with pytest.raises(ConfigError) as exc:
        ShopifyPublisher.from_settings(Settings(shopify_store_domain=None, shopify_admin_token=None))
    assert "TRUSTEYE_SHOPIFY_ADMIN_TOKEN" in str(exc.value)


def test_non_json_body_raises_upstream_error() -> None:
    """It should turn a maintenance page served with 200 into an UpstreamError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(UpstreamError) as exc:
        _publisher(handler).deliver(FAQ)
    assert "non-JSON" in exc.value.message
    assert exc.value.status_code == 200


def test_page_without_id_raises_upstream_error() -> None:
    """It should reject a page listing whose entries carry no id."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"pages": [{"title": "FAQ"}]})

    with pytest.raises(UpstreamError) as exc:
        _publisher(handler).deliver(FAQ)
    assert exc.value.message == "Shopify page payload has no id"


def test_product_content_without_handle_is_upstream_error() -> None:
    """It should report a product write without a handle as a delivery failure."""

    content = PublishedContent(
        kind="PRODUCT", slug="x", title="X", body_markdown="x", target_url="/site/products/x"
    )
    with pytest.raises(UpstreamError):
        _publisher(lambda request: httpx.Response(200, json={})).deliver(content)
