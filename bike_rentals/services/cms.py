"""
Waiver copy from the CMS site settings.

Shop staff edit the waiver text in the CMS; it is stored as a Lexical
rich-text tree and flattened to plain paragraphs here.
"""
import logging

import httpx

from bike_rentals.config import settings
from bike_rentals.services.content_cache import ContentCache

logger = logging.getLogger(__name__)

SITE_SETTINGS_PATH = "/api/globals/site-settings"
BLOCK_TYPES = {"paragraph", "heading", "listitem", "quote"}


def _flatten(node: dict) -> str:
    if node.get("type") == "text":
        return node.get("text") or ""
    if node.get("type") == "linebreak":
        return "\n"
    text = "".join(_flatten(child) for child in node.get("children") or [])
    if node.get("type") in BLOCK_TYPES:
        return text.strip() + "\n\n"
    return text


def lexical_to_text(document) -> str | None:
    """Plain text of a Lexical document, None if it has no visible content"""
    if not isinstance(document, dict) or not isinstance(document.get("root"), dict):
        return None
    text = _flatten(document["root"]).strip()
    return text or None


def fetch_waiver_text(client: httpx.Client | None = None) -> str | None:
    """Fetch and flatten the waiver text. Raises on transport or HTTP errors."""
    url = f"{settings.cms_url.rstrip('/')}{SITE_SETTINGS_PATH}"
    owns_client = client is None
    client = client or httpx.Client(timeout=settings.cms_timeout_seconds)
    try:
        response = client.get(url, params={"depth": 0})
        response.raise_for_status()
        return lexical_to_text(response.json().get("waiverText"))
    except httpx.TimeoutException:
        logger.error("CMS request timed out: %s", url)
        raise
    except httpx.HTTPStatusError as e:
        logger.error("CMS fetch failed: %s %s", e.response.status_code, url)
        raise
    finally:
        if owns_client:
            client.close()


waiver_text_cache: ContentCache[str] = ContentCache(
    fetch_waiver_text,
    ttl_seconds=settings.cms_cache_ttl_seconds,
    name="waiver text",
)


def get_waiver_text() -> str | None:
    """Cached waiver text; None means the caller should use its default copy"""
    return waiver_text_cache.get()


def invalidate_waiver_text():
    waiver_text_cache.invalidate()
