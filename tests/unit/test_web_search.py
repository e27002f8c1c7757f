"""
Unit tests for assistant/company/web_search.py

Tests FireCrawl response normalization across SDK shapes and the search
client's failure handling.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from assistant.company.web_search import (
    WebSearchClient,
    _extract_search_results,
    create_search_client,
    to_hits,
)


# ===== TESTS: Response Shapes =====

class TestExtractSearchResults:
    """Tests for _extract_search_results."""

    def test_new_client_web_attribute(self):
        response = SimpleNamespace(web=[SimpleNamespace(url="https://acme.com", title="Acme")])
        assert len(_extract_search_results(response)) == 1

    def test_old_client_data_attribute(self):
        response = SimpleNamespace(data=[{"url": "https://acme.com"}])
        assert _extract_search_results(response) == [{"url": "https://acme.com"}]

    @pytest.mark.parametrize("key", ["web", "data", "results"])
    def test_dict_responses(self, key):
        assert _extract_search_results({key: [{"url": "https://acme.com"}]}) == [{"url": "https://acme.com"}]

    def test_bare_list(self):
        assert _extract_search_results([{"url": "https://acme.com"}]) == [{"url": "https://acme.com"}]

    def test_empty(self):
        assert _extract_search_results(None) == []
        assert _extract_search_results({}) == []


class TestToHits:
    """Tests for to_hits."""

    def test_objects_and_dicts(self):
        """Title and description come from the result or its metadata."""
        response = {"data": [
            {"url": "https://acme.com", "title": "Acme", "description": "Robots"},
            {"metadata": {"sourceURL": "https://acme.com/about", "title": "About Acme"}},
            {"title": "No URL"},
        ]}
        hits = to_hits(response)

        assert [h.url for h in hits] == ["https://acme.com", "https://acme.com/about"]
        assert hits[0].description == "Robots"
        assert hits[1].title == "About Acme"

    def test_attribute_results(self):
        response = SimpleNamespace(web=[SimpleNamespace(url="https://acme.com", title="Acme", description=None)])
        hits = to_hits(response)

        assert hits[0].title == "Acme"
        assert hits[0].description == ""


# ===== TESTS: Client =====

class TestWebSearchClient:
    """Tests for WebSearchClient."""

    def test_requires_api_key(self):
        """Without an API key or app the client cannot be built."""
        with pytest.raises(ValueError):
            WebSearchClient()

    def test_factory_returns_none_without_key(self):
        assert create_search_client() is None

    @pytest.mark.asyncio
    async def test_search_returns_hits(self):
        """Searches go through the FireCrawl app with the requested limit."""
        app = MagicMock()
        app.search.return_value = {"web": [{"url": "https://acme.com", "title": "Acme"}]}

        hits = await WebSearchClient(app=app).search("Acme official website", limit=3)

        assert [h.url for h in hits] == ["https://acme.com"]
        app.search.assert_called_once_with("Acme official website", limit=3)

    @pytest.mark.asyncio
    async def test_search_failure_returns_empty(self):
        """A failing search is retried and then yields no hits."""
        app = MagicMock()
        app.search.side_effect = RuntimeError("rate limited")

        hits = await WebSearchClient(app=app).search("Acme Wikipedia")

        assert hits == []
        assert app.search.call_count == 2
