"""
Tests for the content cache and CMS waiver text
"""
import httpx
import pytest

from bike_rentals.services.cms import fetch_waiver_text, lexical_to_text
from bike_rentals.services.content_cache import ContentCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestContentCache:
    """Test TTL, invalidation and fail-open behavior"""

    def test_serves_cached_value_within_ttl(self):
        calls = []
        clock = Clock()
        cache = ContentCache(lambda: calls.append(1) or "v1", ttl_seconds=300, clock=clock)

        assert cache.get() == "v1"
        clock.now = 299
        assert cache.get() == "v1"
        assert len(calls) == 1

    def test_refetches_after_ttl(self):
        values = iter(["v1", "v2"])
        clock = Clock()
        cache = ContentCache(lambda: next(values), ttl_seconds=300, clock=clock)

        assert cache.get() == "v1"
        clock.now = 300
        assert cache.get() == "v2"

    def test_stale_value_served_on_failure(self):
        clock = Clock()
        state = {"fail": False}

        def fetch():
            if state["fail"]:
                raise httpx.ConnectError("down")
            return "v1"

        cache = ContentCache(fetch, ttl_seconds=10, clock=clock)
        assert cache.get() == "v1"

        state["fail"] = True
        clock.now = 60
        assert cache.get() == "v1"

    def test_failure_with_nothing_cached(self):
        def fetch():
            raise httpx.ConnectError("down")

        assert ContentCache(fetch, ttl_seconds=10).get() is None

    def test_invalidate(self):
        values = iter(["v1", "v2"])
        cache = ContentCache(lambda: next(values), ttl_seconds=300, clock=Clock())

        assert cache.get() == "v1"
        cache.invalidate()
        assert cache.get() == "v2"


WAIVER_DOC = {
    "root": {
        "type": "root",
        "children": [
            {"type": "heading", "children": [{"type": "text", "text": "Release of Liability"}]},
            {
                "type": "paragraph",
                "children": [
                    {"type": "text", "text": "I accept the risks "},
                    {"type": "text", "text": "of cycling."},
                ],
            },
        ],
    }
}


@pytest.mark.unit
class TestWaiverText:
    """Test CMS waiver text fetch"""

    def test_lexical_to_text(self):
        assert lexical_to_text(WAIVER_DOC) == "Release of Liability\n\nI accept the risks of cycling."

    def test_empty_document(self):
        empty = {"root": {"type": "root", "children": [{"type": "paragraph", "children": []}]}}
        assert lexical_to_text(empty) is None
        assert lexical_to_text(None) is None

    def test_fetch(self):
        def handler(request):
            assert request.url.path == "/api/globals/site-settings"
            return httpx.Response(200, json={"waiverText": WAIVER_DOC})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        assert fetch_waiver_text(client).startswith("Release of Liability")

    def test_fetch_http_error_raises(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        with pytest.raises(httpx.HTTPStatusError):
            fetch_waiver_text(client)
