"""
Listing Extractor: job cards from listing and careers pages.

Strategies, first non-empty wins:
- ``site_specific``: Wellfound job rows and company "N open positions" cards
- ``json_ld``: JobPosting / ItemList blocks
- ``llm``: FAST-tier extraction over the page body
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin

from assistant.common.errors import LLMError
from assistant.common.json_utils import parse_llm_json_array
from assistant.common.llm_client import CompletionOptions, LLMClient
from assistant.common.model_tiers import ModelTier
from assistant.common.types import JobListing
from assistant.common.utils import collapse_whitespace, get_hostname, host_matches, title_case_slug
from assistant.extraction.job_detail_extractor import iter_json_ld, format_salary
from assistant.extraction.prompts import LISTING_PROMPT

logger = logging.getLogger(__name__)

WELLFOUND_BASE = "https://wellfound.com"
CONTEXT_CHARS = 2000
LLM_BODY_CHARS = 50000
MAX_TITLE_CHARS = 512

_WELLFOUND_JOB_LINK = re.compile(r'href="(/jobs/(\d+)-([^"]*))"')
_WELLFOUND_COMPANY_JOBS = re.compile(
    r'href="(/company/([^"]+?)/jobs)"[^>]*>[\s\S]*?(\d+)\s*(?:<!--.*?-->)?\s*open positions',
    re.I,
)
_COMPANY_SPAN = re.compile(r"<span>([A-Za-z0-9][^<]{1,80}?)(?:<!--[^>]*-->)?\s*•\s*</span>")
_COMPANY_LOGO = re.compile(r'alt="([^"]+?)\s+company logo"', re.I)
_DETAILS_SPAN = re.compile(r'class="text-gray-700"[^>]*>([\s\S]{5,500}?)</span>')
_DETAILS_FALLBACK = re.compile(
    r"<span>([^<]*(?:\$[\d,]+k?\s*[–\-]\s*\$[\d,]+k?|today|yesterday|\d+\s+(?:day|hour|week|month)s?\s+ago)[^<]*)</span>",
    re.I,
)
_SALARY = re.compile(r"\$[\d,]+k?\s*[–\-]\s*\$[\d,]+k?")
_POSTED = re.compile(r"yesterday|today|\d+\s+(?:day|hour|week|month)s?\s+ago", re.I)


@dataclass
class ListingResult:
    listings: List[JobListing] = field(default_factory=list)
    strategy: str = "none"


# ===== WELLFOUND =====

def _split_details(raw: str):
    """'Remote • $120k – $180k • 2 days ago' -> (location, salary, posted)."""
    text = collapse_whitespace(re.sub(r"<[^>]+>", "", re.sub(r"<!--.*?-->", "", raw)))
    location_parts, salary, posted = [], None, None
    for part in re.split(r"\s*•\s*", text):
        part = part.strip()
        if not part:
            continue
        if _SALARY.search(part):
            salary = part
        elif _POSTED.search(part):
            posted = part
        elif "equity" in part.lower():
            continue
        else:
            location_parts.append(part)
    return (" • ".join(location_parts) or None), salary, posted


def extract_from_wellfound(html: str, source_url: str) -> List[JobListing]:
    """
    Wellfound job rows:

        <a href="/company/slug"><img alt="Company company logo"></a>
        <a href="/jobs/ID-title-slug">Job Title</a>
        <span>Company<!-- --> • </span>
        <span class="text-gray-700">Location • Salary • Date</span>

    and company cards linking to ``/company/<slug>/jobs`` with "N open positions".
    """
    listings: List[JobListing] = []
    seen = set()

    for match in _WELLFOUND_JOB_LINK.finditer(html):
        href, slug_part = match.group(1), match.group(3)
        url = f"{WELLFOUND_BASE}{href}"
        if url in seen:
            continue
        seen.add(url)

        pos = match.start()
        after = html[pos:pos + CONTEXT_CHARS]
        before = html[max(0, pos - CONTEXT_CHARS):pos]

        title_match = re.search(rf'href="{re.escape(href)}"[^>]*>([^<]+)<', after)
        title = collapse_whitespace(title_match.group(1)) if title_match else ""
        if len(title) < 2:
            title = slug_part.replace("-", " ").strip() or "Unknown Position"

        # The row's own company span follows the link; the logo precedes it
        company = None
        span = _COMPANY_SPAN.search(after)
        if span:
            company = span.group(1).strip()
        else:
            logos = _COMPANY_LOGO.findall(before)
            if logos:
                company = logos[-1].strip()

        location = salary = posted = None
        details = _DETAILS_SPAN.search(after) or _DETAILS_FALLBACK.search(after)
        if details:
            location, salary, posted = _split_details(details.group(1))

        listings.append(JobListing(
            title=title[:MAX_TITLE_CHARS],
            url=url,
            company=company,
            location=location,
            salary=salary,
            posted_at=posted,
            extracted_from=source_url,
        ))

    for match in _WELLFOUND_COMPANY_JOBS.finditer(html):
        href, company_slug, count = match.group(1), match.group(2), match.group(3)
        url = f"{WELLFOUND_BASE}{href}"
        if url in seen:
            continue
        seen.add(url)
        company = title_case_slug(re.sub(r"-\d+$", "", company_slug))
        listings.append(JobListing(
            title=f"{int(count)} open positions at {company}",
            url=url,
            company=company,
            extracted_from=source_url,
        ))

    return listings


# ===== JSON-LD =====

def _listing_from_posting(obj: dict, source_url: str) -> Optional[JobListing]:
    title = collapse_whitespace(str(obj.get("title") or obj.get("name") or ""))
    if not title:
        return None
    org = obj.get("hiringOrganization")
    company = org.get("name") if isinstance(org, dict) else org
    location = None
    job_location = obj.get("jobLocation")
    if isinstance(job_location, list):
        job_location = job_location[0] if job_location else None
    if isinstance(job_location, dict):
        address = job_location.get("address")
        location = address.get("addressLocality") if isinstance(address, dict) else job_location.get("name")
    return JobListing(
        title=title[:MAX_TITLE_CHARS],
        url=urljoin(source_url, obj.get("url") or source_url),
        company=company or None,
        location=location or None,
        salary=format_salary(obj.get("baseSalary")),
        posted_at=obj.get("datePosted"),
        extracted_from=source_url,
    )


def extract_from_json_ld(html: str, source_url: str) -> List[JobListing]:
    """JobPosting objects, directly or as ItemList elements."""
    listings: List[JobListing] = []
    for obj in iter_json_ld(html):
        types = obj.get("@type")
        types = types if isinstance(types, list) else [types]
        if "JobPosting" in types:
            listing = _listing_from_posting(obj, source_url)
            if listing:
                listings.append(listing)
        elif "ItemList" in types:
            for element in obj.get("itemListElement") or []:
                item = element.get("item", element) if isinstance(element, dict) else None
                if isinstance(item, dict) and item.get("@type") == "JobPosting":
                    listing = _listing_from_posting(item, source_url)
                    if listing:
                        listings.append(listing)
                elif isinstance(element, dict) and element.get("url"):
                    listings.append(JobListing(
                        title=collapse_whitespace(str(element.get("name") or element["url"])),
                        url=urljoin(source_url, element["url"]),
                        extracted_from=source_url,
                    ))
    return listings


# ===== LLM =====

async def extract_with_llm(html: str, source_url: str, llm: Optional[LLMClient]) -> List[JobListing]:
    """FAST-tier listing extraction; any failure yields []."""
    if llm is None:
        return []
    body_start = html.find("<body")
    body = html[body_start:] if body_start > 0 else html
    if not re.sub(r"<[^>]+>", "", body).strip():
        return []

    prompt = LISTING_PROMPT.format(url=source_url, html=body[:LLM_BODY_CHARS])
    try:
        response = await llm.complete(
            prompt,
            ModelTier.FAST,
            CompletionOptions(format="json", temperature=0.1, max_tokens=4096),
        )
        items = parse_llm_json_array(response)
    except (LLMError, ValueError) as e:
        logger.warning(f"LLM listing extraction failed for {source_url}: {e}")
        return []

    listings = []
    for item in items:
        if not isinstance(item, dict) or not item.get("title"):
            continue
        listings.append(JobListing(
            title=collapse_whitespace(str(item["title"]))[:MAX_TITLE_CHARS],
            url=urljoin(source_url, str(item.get("url") or source_url)),
            company=item.get("company") or None,
            location=item.get("location") or None,
            salary=item.get("salary") or None,
            posted_at=item.get("posted_at") or item.get("postedDate") or None,
            extracted_from=source_url,
        ))
    return listings


# ===== ORCHESTRATOR =====

async def extract_jobs_from_html(
    html: str,
    url: str,
    slug: Optional[str] = None,
    llm: Optional[LLMClient] = None,
) -> ListingResult:
    """
    Extract job listings from a listing page.

    Args:
        html: Page HTML (raw HTML keeps JSON-LD)
        url: Page URL
        slug: Optional source hint (e.g. "wellfound")
        llm: Optional LLM client for the last strategy

    Returns:
        ListingResult; empty listings when nothing was found. Never raises
        for extraction failures.
    """
    html = html or ""
    is_wellfound = (slug or "").lower() == "wellfound" or host_matches(get_hostname(url), "wellfound.com")

    if is_wellfound:
        jobs = extract_from_wellfound(html, url)
        if jobs:
            return ListingResult(listings=jobs, strategy="site_specific")

    jobs = extract_from_json_ld(html, url)
    if jobs:
        return ListingResult(listings=jobs, strategy="json_ld")

    jobs = await extract_with_llm(html, url, llm)
    logger.info(f"Listing extraction for {url}: {len(jobs)} job(s) via llm")
    return ListingResult(listings=jobs, strategy="llm")
