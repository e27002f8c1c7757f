"""
Deep Company Research

Builds a company dossier by visiting a bounded set of pages:

1. URL discovery: web search queries (when a search client is configured)
   plus well-known paths on the company's own site
2. Per-page fact extraction with the GENERAL tier (JSON, 13 core fields)
3. Merge into a fresh dossier after every page; stop early once coverage
   reaches the target; fields an older dossier held are carried forward
   only where the fresh pass found nothing

Cancellation and the run's wrap-up window are checked before every hop.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from assistant.browser.link_filter import is_ats_host, normalize_url
from assistant.company.dossier import (
    CORE_FIELDS,
    DossierMemory,
    carry_forward,
    create_empty_dossier,
    merge_extraction,
)
from assistant.company.identity_resolver import CompanyResolution, is_job_board_host
from assistant.company.prompts import COMPANY_FACTS_PROMPT
from assistant.company.web_search import WebSearchClient
from assistant.common.config import Config
from assistant.common.errors import LLMError, NavigationError
from assistant.common.json_utils import parse_llm_json
from assistant.common.llm_client import CompletionOptions, LLMClient
from assistant.common.model_tiers import ModelTier
from assistant.common.types import PageCapture
from assistant.common.utils import get_hostname, host_matches, html_to_text

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[PageCapture]]

MAX_FACT_TEXT_CHARS = 20000
MIN_FACT_TEXT_CHARS = 100
FACTS_MAX_TOKENS = 1024
SEARCH_RESULTS_PER_QUERY = 3

SEARCH_QUERIES = [
    "{name} official website",
    "{name} company about us",
    "{name} Wikipedia",
    "site:reddit.com {name} company",
    "{name} careers jobs",
    "{name} company size employees headquarters",
    "{name} funding series stock",
    "{name} H1B visa sponsorship",
]

FALLBACK_PATHS = ["/", "/about", "/about-us", "/who-we-are", "/our-company", "/careers", "/jobs", "/company"]

# Search phrases for targeted follow-up queries on missing fields
MISSING_FIELD_QUERIES = {
    "description_text": "about company",
    "industries": "industry sector",
    "hq_location": "headquarters location",
    "size_range": "company size employees",
    "founded_year": "founded year history",
    "funding_stage": "funding round investors",
    "public_company": "stock exchange public company",
    "ticker": "stock ticker symbol",
    "remote_policy": "remote work policy",
    "sponsorship_signals": "visa sponsorship H1B",
    "hiring_locations": "office locations hiring",
    "tech_stack_hints": "engineering tech stack",
    "job_count_open": "open positions careers",
}

NEWS_DOMAINS = ["techcrunch.com", "bloomberg.com", "reuters.com", "forbes.com", "businessinsider.com"]


# ===== URL DISCOVERY =====

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def company_base_url(name: str, domain: Optional[str]) -> Optional[str]:
    """
    The company's own site origin.

    ATS and job-board domains never count; ``https://{slug}.com`` is guessed
    from the name instead.
    """
    if domain and not is_ats_host(domain) and not is_job_board_host(domain):
        return f"https://{domain}"
    slug = _slug(name)
    return f"https://{slug}.com" if slug else None


def url_source_score(url: str, name: str) -> int:
    """Rank discovered URLs; higher is visited first."""
    host = get_hostname(url)
    slug = _slug(name)
    if host_matches(host, "wikipedia.org"):
        return 100
    if slug and slug in host.replace("-", "").replace(".", ""):
        return 95
    if host_matches(host, "reddit.com"):
        return 85
    if host_matches(host, "crunchbase.com") or host_matches(host, "linkedin.com"):
        return 80
    if any(host_matches(host, d) for d in NEWS_DOMAINS):
        return 75
    if host_matches(host, "glassdoor.com") or host_matches(host, "indeed.com"):
        return 70
    return 50


async def discover_company_urls(
    name: str,
    domain: Optional[str] = None,
    search: Optional[WebSearchClient] = None,
    max_urls: int = 20,
) -> List[str]:
    """
    Candidate pages for a company, best sources first.

    Args:
        name: Canonical company name
        domain: Company domain hint (ATS hosts are ignored)
        search: Optional web search client
        max_urls: Cap on returned URLs

    Returns:
        De-duplicated URLs ordered by source score (stable within a score)
    """
    found: List[str] = []

    if search is not None:
        for template in SEARCH_QUERIES:
            hits = await search.search(template.format(name=name), limit=SEARCH_RESULTS_PER_QUERY)
            found.extend(hit.url for hit in hits)

    base = company_base_url(name, domain)
    if base:
        found.extend(base + path for path in FALLBACK_PATHS)

    seen = set()
    unique = []
    for url in found:
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(url)

    unique.sort(key=lambda u: url_source_score(u, name), reverse=True)
    return unique[:max_urls]


def targeted_queries(name: str, missing: List[str]) -> List[str]:
    return [f"{name} {MISSING_FIELD_QUERIES[f]}" for f in missing if f in MISSING_FIELD_QUERIES]


# ===== FACT EXTRACTION =====

def _normalize_facts(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    facts = {}
    for name in CORE_FIELDS:
        entry = data.get(name)
        if entry is None:
            continue
        if isinstance(entry, dict):
            if entry.get("value") is None:
                continue
            facts[name] = {"value": entry["value"], "confidence": entry.get("confidence")}
        else:
            facts[name] = {"value": entry, "confidence": None}
    return facts


async def extract_company_facts(
    text: str,
    company: str,
    url: str,
    llm: LLMClient,
) -> Optional[Dict[str, Dict[str, Any]]]:
    """
    Extract core dossier fields from one page's text.

    Returns:
        Field name -> {"value", "confidence"}; None when the text is too short
        or the model reply cannot be used
    """
    if not text or len(text.strip()) < MIN_FACT_TEXT_CHARS:
        return None

    prompt = COMPANY_FACTS_PROMPT.format(company=company, url=url, text=text[:MAX_FACT_TEXT_CHARS])
    try:
        response = await llm.complete(
            prompt,
            ModelTier.GENERAL,
            CompletionOptions(format="json", temperature=Config.ANALYTICAL_TEMPERATURE, max_tokens=FACTS_MAX_TOKENS),
        )
        return _normalize_facts(parse_llm_json(response))
    except (LLMError, ValueError) as e:
        logger.warning(f"Fact extraction failed for {url}: {e}")
        return None


# ===== RESEARCHER =====

@dataclass
class ResearchResult:
    memory: DossierMemory
    pages_loaded: int = 0


class DeepCompanyResearcher:
    """
    Bounded company research loop.

    Args:
        fetch: Async callable navigating to a URL (raises NavigationError)
        llm: LLM client for fact extraction
        search: Optional web search client
        max_pages: Maximum pages visited per research call
        coverage_target: Stop once coverage ratio reaches this value
    """

    def __init__(
        self,
        fetch: FetchFn,
        llm: LLMClient,
        search: Optional[WebSearchClient] = None,
        max_pages: int = Config.DOSSIER_MAX_PAGES,
        coverage_target: float = Config.DOSSIER_COVERAGE_TARGET,
    ):
        self.fetch = fetch
        self.llm = llm
        self.search = search
        self.max_pages = max_pages
        self.coverage_target = coverage_target

    async def _visit(self, url: str, memory: DossierMemory, company: str) -> Optional[DossierMemory]:
        """Fetch one page and merge its facts; None if the page did not load."""
        try:
            capture = await self.fetch(url)
        except NavigationError as e:
            logger.info(f"Skipping {url}: {e}")
            return None

        facts = await extract_company_facts(html_to_text(capture.html), company, capture.url, self.llm)
        memory = merge_extraction(memory, facts or {}, capture.url)
        logger.info(
            f"Research page {capture.url}: {len(facts or {})} fact(s), "
            f"coverage={memory.coverage.ratio:.2f}"
        )
        return memory

    async def research(
        self,
        resolution: CompanyResolution,
        seed: Optional[DossierMemory] = None,
        cancel=None,
        deadline=None,
    ) -> ResearchResult:
        """
        Research a company.

        Every call is a fresh pass: the seed's coverage and visited URLs do not
        shorten it. Seed fields fill only what the fresh pass did not find.

        Args:
            resolution: Resolved company identity
            seed: Previously stored dossier, carried forward under the new findings
            cancel: Cancellation token (``raise_if_cancelled()``)
            deadline: Run deadline (``in_wrap_up()``); research stops in the wrap-up window

        Returns:
            ResearchResult with the merged memory and the number of pages loaded

        Raises:
            PipelineStopped: If the run was cancelled
        """
        memory = create_empty_dossier()
        name = resolution.canonical_name
        visited = set()
        pages = 0
        loaded = 0

        queue = await discover_company_urls(name, resolution.domain, self.search)
        targeted_done = False
        logger.info(f"Researching {name}: {len(queue)} candidate URL(s)")

        while pages < self.max_pages:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if deadline is not None and deadline.in_wrap_up():
                logger.info(f"Research for {name} stopped: run is in its wrap-up window")
                break
            if memory.coverage.ratio >= self.coverage_target:
                break

            if not queue:
                if targeted_done or self.search is None:
                    break
                targeted_done = True
                for query in targeted_queries(name, memory.coverage.missing):
                    hits = await self.search.search(query, limit=SEARCH_RESULTS_PER_QUERY)
                    queue.extend(hit.url for hit in hits)
                continue

            url = queue.pop(0)
            key = normalize_url(url)
            if key in visited:
                continue
            visited.add(key)
            pages += 1
            merged = await self._visit(url, memory, name)
            if merged is not None:
                memory = merged
                loaded += 1

        logger.info(
            f"Research for {name} finished: {loaded}/{pages} page(s) loaded, "
            f"coverage={memory.coverage.ratio:.2f}, missing={memory.coverage.missing}"
        )
        return ResearchResult(memory=carry_forward(memory, seed), pages_loaded=loaded)
