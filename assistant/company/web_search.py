"""
Web search client for company dossier discovery (FireCrawl).

The FireCrawl SDK is synchronous; searches run in a worker thread so the
pipeline's event loop and cancellation stay responsive.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from firecrawl import FirecrawlApp
from tenacity import retry, stop_after_attempt, wait_exponential

from assistant.common.config import Config

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    url: str
    title: str = ""
    description: str = ""


def _extract_search_results(search_response: Any) -> List[Any]:
    """
    Normalize FireCrawl search responses across SDK versions into a list of result objects.

    Supports:
      - New client: response.web (list of objects with .url / .title)
      - Older client: response.data
      - Dict responses: {"web": [...]} or {"data": [...]}
      - Bare lists
    """
    if not search_response:
        return []

    results = getattr(search_response, "web", None)
    if results is None and hasattr(search_response, "data"):
        results = getattr(search_response, "data", None)

    if results is None and isinstance(search_response, dict):
        results = (
            search_response.get("web")
            or search_response.get("data")
            or search_response.get("results")
        )

    if results is None and isinstance(search_response, list):
        results = search_response

    return results or []


def _field(result: Any, name: str) -> str:
    if isinstance(result, dict):
        value = result.get(name)
        if value is None and isinstance(result.get("metadata"), dict):
            value = result["metadata"].get(name)
    else:
        value = getattr(result, name, None)
        metadata = getattr(result, "metadata", None)
        if value is None and metadata is not None:
            value = metadata.get(name) if isinstance(metadata, dict) else getattr(metadata, name, None)
    return str(value) if value else ""


def to_hits(search_response: Any) -> List[SearchHit]:
    """Convert any FireCrawl search response shape to SearchHits (URL required)."""
    hits = []
    for result in _extract_search_results(search_response):
        url = _field(result, "url") or _field(result, "sourceURL")
        if not url:
            continue
        hits.append(SearchHit(
            url=url,
            title=_field(result, "title"),
            description=_field(result, "description"),
        ))
    return hits


class WebSearchClient:
    """
    FireCrawl-backed web search.

    Args:
        api_key: Defaults to Config.FIRECRAWL_API_KEY
        app: Pre-built FirecrawlApp (tests)
    """

    def __init__(self, api_key: Optional[str] = None, app: Optional[FirecrawlApp] = None):
        api_key = api_key or Config.FIRECRAWL_API_KEY
        if app is None and not api_key:
            raise ValueError("FIRECRAWL_API_KEY is required for web search")
        self.app = app or FirecrawlApp(api_key=api_key)

    @retry(stop=stop_after_attempt(2), wait=wait_exponential(multiplier=1, min=1, max=4), reraise=True)
    def _search_sync(self, query: str, limit: int) -> Any:
        return self.app.search(query, limit=limit)

    async def search(self, query: str, limit: int = 5) -> List[SearchHit]:
        """
        Run one search.

        Returns:
            SearchHits; [] when the search fails
        """
        try:
            response = await asyncio.to_thread(self._search_sync, query, limit)
        except Exception as e:
            logger.warning(f"[FireCrawl] Search failed for '{query[:80]}': {e}")
            return []
        hits = to_hits(response)
        logger.info(f"[FireCrawl] '{query[:80]}' -> {len(hits)} results")
        return hits


def create_search_client() -> Optional[WebSearchClient]:
    """WebSearchClient when FireCrawl is configured, else None (fallback paths only)."""
    if not Config.FIRECRAWL_API_KEY:
        logger.info("FIRECRAWL_API_KEY not set; dossier discovery uses fallback paths only")
        return None
    return WebSearchClient()
