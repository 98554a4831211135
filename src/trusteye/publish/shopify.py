"""Shopify Admin API publish target.

Mirrors published content to a Shopify store: FAQ and truth-block assets update one FAQ page, blog
assets upsert an article in the configured blog, and product patches are written as a product
metafield. Only the outbound write lives here; the internal publish has already happened.
"""

from __future__ import annotations

import html
import time
from dataclasses import dataclass
from typing import Any

import httpx

from trusteye.config import Settings
from trusteye.errors import UpstreamError, require_settings
from trusteye.logging import get_logger
from trusteye.publish.pipeline import PublishedContent

logger = get_logger(__name__)

_TRANSIENT = {429, 500, 502, 503, 504}


def markdown_to_html(body: str) -> str:
    """Very small markdown subset: headings, bullets, paragraphs."""

    blocks: list[str] = []
    for chunk in body.strip().split("\n\n"):
        lines = [ln for ln in chunk.splitlines() if ln.strip()]
        if not lines:
            continue
        if all(ln.lstrip().startswith("- ") for ln in lines):
            items = "".join(f"<li>{html.escape(ln.lstrip()[2:])}</li>" for ln in lines)
            blocks.append(f"<ul>{items}</ul>")
            continue
        for ln in lines:
            stripped = ln.lstrip("#")
            level = len(ln) - len(stripped)
            if 0 < level <= 6 and stripped.startswith(" "):
                blocks.append(f"<h{level}>{html.escape(stripped.strip())}</h{level}>")
            else:
                blocks.append(f"<p>{html.escape(ln.strip())}</p>")
    return "\n".join(blocks)


@dataclass(frozen=True)
class ShopifyPublisher:
    """External publish target backed by the Shopify Admin REST API.

    Notes:
        - Credentials come from settings (`TRUSTEYE_SHOPIFY_STORE_DOMAIN`,
          `TRUSTEYE_SHOPIFY_ADMIN_TOKEN`).
        - `transport` lets tests plug an `httpx.MockTransport`.
    """

    store_domain: str
    access_token: str
    api_version: str = "2024-01"
    blog_handle: str = "news"
    faq_page_handle: str = "faq"
    timeout_s: float = 10.0
    max_retries: int = 2
    retry_backoff_s: float = 0.5
    retry_max_backoff_s: float = 4.0
    transport: httpx.BaseTransport | None = None
    name: str = "shopify"

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ShopifyPublisher":
        require_settings(
            {
                "TRUSTEYE_SHOPIFY_STORE_DOMAIN": settings.shopify_store_domain,
                "TRUSTEYE_SHOPIFY_ADMIN_TOKEN": settings.shopify_admin_token,
            }
        )
        return cls(
            store_domain=settings.shopify_store_domain or "",
            access_token=settings.shopify_admin_token or "",
            api_version=settings.shopify_api_version,
            blog_handle=settings.shopify_blog_handle,
            faq_page_handle=settings.shopify_faq_page_handle,
            timeout_s=settings.shopify_timeout_s,
            **overrides,
        )

    @property
    def base_url(self) -> str:
        domain = self.store_domain.removeprefix("https://").removeprefix("http://").rstrip("/")
        return f"https://{domain}/admin/api/{self.api_version}"

    def deliver(self, content: PublishedContent) -> dict[str, Any]:
        """Write published content to the store.

        Args:
            content: What was published internally.

        Returns:
            Identifiers of the Shopify resource that was written.

        Raises:
            UpstreamError: Shopify rejected the write or was unreachable.
        """

        with self._client() as client:
            if content.kind == "PRODUCT":
                return self.update_product_metafield(client, content)
            if content.kind == "BLOG":
                return self.upsert_blog_article(client, content)
            return self.upsert_faq_page(client, content)

    def upsert_faq_page(self, client: httpx.Client, content: PublishedContent) -> dict[str, Any]:
        body_html = markdown_to_html(content.body_markdown)
        data = self._request(client, "GET", "/pages.json", params={"handle": self.faq_page_handle})
        pages = data.get("pages") or []
        if pages:
            page_id = self._id_of(pages[0], "page")
            existing = str(pages[0].get("body_html") or "")
            anchor = f'<section id="{content.slug}">'
            section = f"{anchor}<h2>{html.escape(content.title)}</h2>{body_html}</section>"
            if anchor in existing:
                start = existing.index(anchor)
                end = existing.find("</section>", start)
                end = len(existing) if end < 0 else end + len("</section>")
                merged = existing[:start] + section + existing[end:]
            else:
                merged = (existing + "\n" + section).strip()
            self._request(client, "PUT", f"/pages/{page_id}.json", json={"page": {"id": page_id, "body_html": merged}})
            return {"resource": "page", "id": page_id, "created": False}

        section = f'<section id="{content.slug}"><h2>{html.escape(content.title)}</h2>{body_html}</section>'
        created = self._request(
            client,
            "POST",
            "/pages.json",
            json={"page": {"title": "FAQ", "handle": self.faq_page_handle, "body_html": section}},
        )
        return {"resource": "page", "id": created.get("page", {}).get("id"), "created": True}

    def upsert_blog_article(self, client: httpx.Client, content: PublishedContent) -> dict[str, Any]:
        blogs = self._request(client, "GET", "/blogs.json", params={"handle": self.blog_handle}).get("blogs") or []
        if not blogs:
            raise UpstreamError(f"Shopify blog '{self.blog_handle}' not found", service=self.name, status_code=404)
        blog_id = self._id_of(blogs[0], "blog")
        article = {"title": content.title, "handle": content.slug, "body_html": markdown_to_html(content.body_markdown)}

        found = self._request(
            client, "GET", f"/blogs/{blog_id}/articles.json", params={"handle": content.slug}
        ).get("articles") or []
        if found:
            article_id = self._id_of(found[0], "article")
            self._request(client, "PUT", f"/blogs/{blog_id}/articles/{article_id}.json", json={"article": {"id": article_id, **article}})
            return {"resource": "article", "id": article_id, "blog_id": blog_id, "created": False}

        created = self._request(client, "POST", f"/blogs/{blog_id}/articles.json", json={"article": article})
        return {"resource": "article", "id": created.get("article", {}).get("id"), "blog_id": blog_id, "created": True}

    def update_product_metafield(self, client: httpx.Client, content: PublishedContent) -> dict[str, Any]:
        if not content.product_handle:
            raise UpstreamError("Product content without a handle", service=self.name)
        products = self._request(
            client, "GET", "/products.json", params={"handle": content.product_handle}
        ).get("products") or []
        if not products:
            raise UpstreamError(
                f"Shopify product '{content.product_handle}' not found", service=self.name, status_code=404
            )
        product_id = self._id_of(products[0], "product")
        metafield = {
            "namespace": "trusteye",
            "key": "enrichment",
            "type": "multi_line_text_field",
            "value": content.body_markdown,
        }
        created = self._request(
            client, "POST", f"/products/{product_id}/metafields.json", json={"metafield": metafield}
        )
        return {"resource": "metafield", "id": created.get("metafield", {}).get("id"), "product_id": product_id}

    def _decode(self, resp: httpx.Response, method: str, path: str) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(
                f"Shopify {method} {path} returned a non-JSON body", service=self.name, status_code=resp.status_code
            ) from e
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Shopify {method} {path} returned {type(data).__name__}, expected an object",
                service=self.name,
                status_code=resp.status_code,
            )
        return data

    def _id_of(self, item: Any, resource: str) -> Any:
        if not isinstance(item, dict) or item.get("id") is None:
            raise UpstreamError(f"Shopify {resource} payload has no id", service=self.name)
        return item["id"]

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_s),
            headers={"X-Shopify-Access-Token": self.access_token, "Accept": "application/json"},
            transport=self.transport,
        )

    def _request(
        self,
        client: httpx.Client,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        last_err: Exception | None = None
        status_code: int | None = None
        started = time.monotonic()

        for attempt in range(self.max_retries + 1):
            try:
                resp = client.request(method, path, params=params, json=json)
                status_code = resp.status_code
                if status_code in _TRANSIENT:
                    raise httpx.HTTPStatusError(
                        f"shopify transient status={status_code}", request=resp.request, response=resp
                    )
                resp.raise_for_status()
                logger.info(
                    "Shopify request ok",
                    extra={
                        "method": method,
                        "path": path,
                        "attempt": attempt,
                        "status_code": status_code,
                        "latency_ms": int((time.monotonic() - started) * 1000),
                    },
                )
                return self._decode(resp, method, path)
            except httpx.HTTPStatusError as e:
                last_err = e
                if e.response.status_code not in _TRANSIENT:
                    break
            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_err = e

            if attempt >= self.max_retries:
                break

            retry_after_s: float | None = None
            if isinstance(last_err, httpx.HTTPStatusError) and last_err.response.status_code == 429:
                ra = last_err.response.headers.get("retry-after")
                if ra is not None:
                    try:
                        retry_after_s = float(ra)
                    except ValueError:
                        retry_after_s = None
            backoff = min(self.retry_max_backoff_s, self.retry_backoff_s * (2**attempt))
            sleep_s = retry_after_s if retry_after_s is not None else backoff
            logger.warning(
                "Shopify request retry",
                extra={"method": method, "path": path, "attempt": attempt, "status_code": status_code, "sleep_s": sleep_s},
            )
            time.sleep(sleep_s)

        logger.error(
            "Shopify request failed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "elapsed_ms": int((time.monotonic() - started) * 1000),
                "error_type": type(last_err).__name__ if last_err is not None else None,
            },
        )
        raise UpstreamError(
            f"Shopify {method} {path} failed: {last_err}", service=self.name, status_code=status_code
        ) from last_err
