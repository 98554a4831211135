"""Publishing of approved drafts."""

from __future__ import annotations

from trusteye.publish.pipeline import ExternalPublishTarget, PublishedContent, publish_recommendation

__all__ = ["ExternalPublishTarget", "PublishedContent", "publish_recommendation"]
