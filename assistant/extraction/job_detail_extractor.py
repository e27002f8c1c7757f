"""
Job Detail Extractor: one structured JobDetail from one job page.

Fallback chain, first success wins:
1. JSON-LD JobPosting
2. schema.org microdata
3. Site DOM heuristics (Greenhouse, Lever, Workable, Apple, Wellfound, generic)
4. LLM extraction over a body-centred slice

Each strategy returns a StrategyResult; a strategy counts as a success only
when it produced a non-sentinel title and a company, read from the page or
filled from the URL slug or hostname. Structured strategies read the page
source (``raw_html`` when given) because cleaning drops scripts and most
<meta> tags; the LLM reads the (cleaned or focused) input HTML.
"""

import html as html_lib
import json
import logging
import re
from typing import Any, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from assistant.browser.link_filter import url_looks_like_job_page
from assistant.common.config import Config
from assistant.common.errors import LLMError, LLMTimeoutError
from assistant.common.json_utils import parse_llm_json
from assistant.common.llm_client import CompletionOptions, LLMClient
from assistant.common.model_tiers import ModelTier
from assistant.common.types import JobDetail, StrategyResult, StrategyStatus
from assistant.common.utils import collapse_whitespace, get_hostname, html_to_text, title_case_slug
from assistant.company.identity_resolver import company_from_host
from assistant.extraction.prompts import JOB_DETAIL_PROMPT

logger = logging.getLogger(__name__)

LLM_SLICE_CHARS = 12000
LLM_RETRY_SLICE_CHARS = 6000
LLM_MAX_TOKENS = 4096
RAW_RETRY_MIN_CHARS = 5000
ONE_LINER_CHARS = 200
MAX_REQUIREMENTS = 40

SALARY_RANGE = re.compile(r"\$[\d,.]+k?\s*[–\-]\s*\$[\d,.]+k?", re.I)
RELATIVE_DATE = re.compile(r"yesterday|today|\d+\s+(?:day|hour|week|month)s?\s+ago", re.I)
ERROR_TITLE = re.compile(r"not found|404|error", re.I)


# ===== HELPERS =====

def _text(value: Any) -> str:
    """Entity-decoded, tag-free, whitespace-collapsed text."""
    if value is None:
        return ""
    value = str(value)
    if "<" in value:
        value = html_to_text(value)
    return collapse_whitespace(html_lib.unescape(value))


def _plausible_title(title: str) -> bool:
    return len(title) >= 2 and not ERROR_TITLE.search(title)


def _path_segments(url: str) -> List[str]:
    try:
        return [s for s in urlparse(url).path.split("/") if s]
    except ValueError:
        return []


def company_from_url_slug(url: str) -> Optional[str]:
    """
    Company name from ATS URL conventions.

    Example:
        >>> company_from_url_slug("https://jobs.lever.co/nuwaves/4f1c9e2a")
        'Nuwaves'
        >>> company_from_url_slug("https://job-boards.greenhouse.io/code-road/jobs/123")
        'Code Road'
        >>> company_from_url_slug("https://wellfound.com/company/backpack-8/jobs")
        'Backpack'
    """
    host = get_hostname(url)
    segments = _path_segments(url)
    if not host or not segments:
        return None

    slug: Optional[str] = None
    if host.endswith("lever.co") and len(segments) >= 2:
        slug = segments[0]
    elif host.endswith("greenhouse.io") and "jobs" in segments[1:]:
        slug = segments[0]
    elif host.endswith("workable.com") and segments[0] != "j":
        slug = segments[0]
    elif host.endswith("ashbyhq.com"):
        slug = segments[0]
    elif host.endswith("wellfound.com") and segments[0] == "company" and len(segments) >= 2:
        slug = re.sub(r"-\d+$", "", segments[1])

    if not slug or slug in ("jobs", "embed"):
        return None
    return title_case_slug(slug) or None


def _finish(job: JobDetail, url: str) -> Optional[JobDetail]:
    """
    Fill an Unknown company from the URL slug, then the hostname, and default
    apply_url. Returns None when the company is still Unknown so the chain
    moves on.
    """
    updates = {}
    if not job.has_company:
        company = company_from_url_slug(url) or company_from_host(url)
        if not company:
            return None
        updates["company"] = company
    if job.has_title and not job.apply_url:
        updates["apply_url"] = url
    return job.model_copy(update=updates) if updates else job


# ===== JSON-LD =====

def iter_json_ld(html: str) -> Iterator[dict]:
    soup = BeautifulSoup(html or "", "html.parser")
    for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw, strict=False)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping invalid JSON-LD block: {e}")
            continue
        stack = data if isinstance(data, list) else [data]
        for item in stack:
            if not isinstance(item, dict):
                continue
            yield item
            graph = item.get("@graph")
            if isinstance(graph, list):
                for node in graph:
                    if isinstance(node, dict):
                        yield node


def _is_job_posting(obj: dict) -> bool:
    t = obj.get("@type")
    if isinstance(t, list):
        return "JobPosting" in t
    return t == "JobPosting"


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _json_ld_location(job_location: Any) -> Optional[str]:
    locations = job_location if isinstance(job_location, list) else [job_location]
    rendered = []
    for loc in locations:
        if isinstance(loc, str):
            rendered.append(loc)
            continue
        if not isinstance(loc, dict):
            continue
        address = loc.get("address")
        if isinstance(address, dict):
            country = address.get("addressCountry")
            if isinstance(country, dict):
                country = country.get("name")
            parts = [address.get("addressLocality"), address.get("addressRegion"), country]
            text = ", ".join(_text(p) for p in parts if p)
            if text:
                rendered.append(text)
                continue
        elif isinstance(address, str) and address.strip():
            rendered.append(address)
            continue
        if loc.get("name"):
            rendered.append(_text(loc["name"]))
    return "; ".join(dict.fromkeys(r for r in rendered if r)) or None


def format_salary(base_salary: Any) -> Optional[str]:
    """
    Render a schema.org MonetaryAmount.

    Example:
        >>> format_salary({"currency": "USD", "value": {"minValue": 100000, "maxValue": 150000}})
        'USD 100000–150000'
    """
    if not isinstance(base_salary, dict):
        return None
    currency = base_salary.get("currency") or "USD"
    value = base_salary.get("value")
    if isinstance(value, (int, float)):
        return f"{currency} {value}"
    if not isinstance(value, dict):
        return None
    low = value.get("minValue")
    high = value.get("maxValue")
    unit = value.get("unitText")
    suffix = f" per {str(unit).lower()}" if unit else ""
    if low and high:
        return f"{currency} {low}–{high}{suffix}"
    if low:
        return f"{currency} {low}+{suffix}"
    if value.get("value"):
        return f"{currency} {value['value']}{suffix}"
    return None


def _as_requirement_lines(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        lines = []
        for item in value:
            lines.extend(_as_requirement_lines(item))
        return lines
    if isinstance(value, dict):
        return _as_requirement_lines(value.get("description") or value.get("name"))
    text = str(value)
    if "<" in text:
        soup = BeautifulSoup(text, "html.parser")
        items = soup.find_all("li")
        if items:
            return [_text(li.get_text(" ")) for li in items if li.get_text(strip=True)]
        text = soup.get_text("\n")
    lines = (line.strip(" -•*\t") for line in text.splitlines())
    return [line for line in lines if line]


def _job_from_json_ld(obj: dict, url: str) -> JobDetail:
    org = obj.get("hiringOrganization")
    company = org.get("name") if isinstance(org, dict) else org
    one_liner = _text(org.get("description"))[:ONE_LINER_CHARS] if isinstance(org, dict) else ""

    requirements: List[str] = []
    for key in ("qualifications", "skills", "experienceRequirements"):
        requirements.extend(_as_requirement_lines(obj.get(key)))

    experience = obj.get("experienceRequirements")
    seniority = None
    if isinstance(experience, dict) and experience.get("monthsOfExperience"):
        try:
            seniority = f"{round(float(experience['monthsOfExperience']) / 12)}+ years"
        except (TypeError, ValueError):
            seniority = None

    location_type = _first(obj.get("jobLocationType"))
    remote_type = "Remote" if str(location_type or "").upper() == "TELECOMMUTE" else None

    return JobDetail(
        title=_text(obj.get("title") or obj.get("name")),
        company=_text(company),
        company_one_liner=one_liner or None,
        location=_json_ld_location(obj.get("jobLocation")) or ("Remote" if remote_type else None),
        salary=format_salary(obj.get("baseSalary")),
        description=_text(obj.get("description")),
        requirements=requirements[:MAX_REQUIREMENTS],
        posted_date=obj.get("datePosted"),
        deadline=obj.get("validThrough"),
        employment_type=obj.get("employmentType"),
        remote_type=remote_type,
        seniority=seniority,
        apply_url=obj.get("url") or url,
        department=obj.get("occupationalCategory"),
    )


def try_json_ld(html: str, url: str) -> StrategyResult:
    """First JSON-LD JobPosting in the page."""
    for obj in iter_json_ld(html):
        if not _is_job_posting(obj):
            continue
        try:
            return StrategyResult.ok("json_ld", _job_from_json_ld(obj, url))
        except ValidationError as e:
            return StrategyResult.error("json_ld", f"invalid JobPosting: {e}")
    return StrategyResult.not_found("json_ld", "no JobPosting block")


# ===== MICRODATA =====

def _itemprop(scope: Tag, name: str) -> Optional[str]:
    el = scope.find(attrs={"itemprop": name})
    if el is None:
        return None
    value = el.get("content") if el.get("content") is not None else el.get_text(" ")
    return _text(value) or None


def try_microdata(html: str, url: str) -> StrategyResult:
    """schema.org JobPosting microdata (itemscope/itemtype/itemprop)."""
    soup = BeautifulSoup(html or "", "html.parser")
    root = soup.find(attrs={"itemtype": re.compile(r"schema\.org/JobPosting", re.I)})
    if root is None:
        return StrategyResult.not_found("microdata", "no JobPosting itemtype")

    org = root.find(attrs={"itemprop": "hiringOrganization"})
    company = _itemprop(org, "name") if isinstance(org, Tag) else None
    if not company:
        logo = root.find("img", alt=re.compile(r"\slogo$", re.I))
        company = logo["alt"][:-len(" logo")].strip() if logo is not None else None

    location_parts = [_itemprop(root, p) for p in ("addressLocality", "addressRegion", "addressCountry")]
    location = ", ".join(p for p in location_parts if p) or None

    requirements: List[str] = []
    quals = root.find(attrs={"itemprop": "qualifications"})
    if isinstance(quals, Tag):
        items = quals.find_all("li")
        if items:
            requirements = [_text(li.get_text(" ")) for li in items if li.get_text(strip=True)]
        else:
            requirements = _as_requirement_lines(quals.get("content") or quals.get_text("\n"))

    description = root.find(attrs={"itemprop": "description"})
    job = JobDetail(
        title=_itemprop(root, "title"),
        company=company,
        location=location,
        description=_text(description.get_text(" ")) if isinstance(description, Tag) else "",
        requirements=requirements[:MAX_REQUIREMENTS],
        posted_date=_itemprop(root, "datePosted"),
        employment_type=_itemprop(root, "employmentType"),
        apply_url=url,
    )
    return StrategyResult.ok("microdata", job)


# ===== SITE DOM HEURISTICS =====

class _Dom:
    """Title-ish facts of a page, parsed once."""

    def __init__(self, html: str):
        soup = BeautifulSoup(html or "", "html.parser")
        self.soup = soup
        title = soup.find("title")
        self.title = _text(title.get_text()) if title else ""
        og = soup.find("meta", attrs={"property": "og:title"})
        self.og_title = _text(og.get("content")) if og else ""
        h1 = soup.find("h1")
        self.h1 = _text(h1.get_text(" ")) if h1 else ""

    @property
    def headline(self) -> str:
        return self.og_title or self.title


def _split_at(raw: str) -> Optional[Tuple[str, str]]:
    """'{title} at {company}' -> (title, company); trailing '| Site' parts are dropped."""
    match = re.match(r"^(.+?)\s+at\s+(.+)$", raw, re.I)
    if not match:
        return None
    company = re.split(r"\s+[|\-–]\s+", match.group(2))[0].strip()
    return match.group(1).strip(), company


def _dom_greenhouse(dom: _Dom, url: str) -> Optional[JobDetail]:
    if "/jobs/" not in url.lower():
        return None
    match = re.match(r"^Job Application for\s+(.+?)\s+at\s+(.+)$", dom.title, re.I)
    if match:
        return JobDetail(title=match.group(1), company=match.group(2))
    if dom.h1 and _plausible_title(dom.h1):
        split = _split_at(dom.title)
        return JobDetail(title=dom.h1, company=split[1] if split else company_from_url_slug(url))
    return None


def _dom_lever(dom: _Dom, url: str) -> Optional[JobDetail]:
    raw = dom.headline
    if raw:
        split = _split_at(raw)
        if split:
            title, company = split
        elif " - " in raw:
            company, title = (part.strip() for part in raw.split(" - ", 1))
        else:
            title, company = raw, None
        if _plausible_title(title):
            return JobDetail(title=title, company=company or company_from_url_slug(url))
    if dom.h1 and _plausible_title(dom.h1):
        company = company_from_url_slug(url)
        if company:
            return JobDetail(title=dom.h1, company=company)
    return None


def _dom_workable(dom: _Dom, url: str) -> Optional[JobDetail]:
    raw = dom.headline
    if not raw:
        return None
    split = _split_at(raw)
    if split:
        title, company = split
    elif " - " in raw:
        title, company = (part.strip() for part in raw.split(" - ", 1))
    else:
        title, company = re.split(r"\s*\|\s*", raw)[0], None
    if not _plausible_title(title):
        return None
    return JobDetail(title=title, company=company)


def _dom_apple(dom: _Dom, url: str) -> Optional[JobDetail]:
    raw = dom.headline
    if raw:
        title = re.split(r"\s*\|\s*|\s+-\s+", raw)[0].strip()
        if _plausible_title(title) and "careers" not in title.lower():
            return JobDetail(title=title, company="Apple")
    segments = _path_segments(url)
    slug = segments[-1] if segments else ""
    if len(slug) >= 5 and not re.fullmatch(r"[\d-]+", slug):
        return JobDetail(title=title_case_slug(slug), company="Apple")
    return None


def _wellfound_meta(dom: _Dom) -> Tuple[Optional[str], Optional[str]]:
    """(location, salary) from the 'Location • $120k – $180k • 2 days ago' line."""
    text = dom.soup.get_text("\n")
    salary_match = SALARY_RANGE.search(text)
    salary = collapse_whitespace(salary_match.group(0)) if salary_match else None

    location = None
    for line in text.split("\n"):
        if "•" not in line:
            continue
        parts = [p.strip() for p in line.split("•") if p.strip()]
        places = [
            p for p in parts
            if not SALARY_RANGE.search(p) and not RELATIVE_DATE.search(p) and "equity" not in p.lower()
        ]
        if places and len(parts) > 1:
            location = " • ".join(places)
            break
    return location, salary


def _dom_wellfound(dom: _Dom, url: str) -> Optional[JobDetail]:
    if not dom.h1 or not _plausible_title(dom.h1):
        return None
    company = None
    for anchor in dom.soup.find_all("a", href=re.compile(r"^(https://wellfound\.com)?/company/[^/]+/?$")):
        name = _text(anchor.get_text(" "))
        if name:
            company = name
            break
        slug = anchor["href"].rstrip("/").rsplit("/", 1)[-1]
        company = company or title_case_slug(re.sub(r"-\d+$", "", slug))
    location, salary = _wellfound_meta(dom)
    return JobDetail(title=dom.h1, company=company, location=location, salary=salary)


def _dom_generic(dom: _Dom, url: str) -> Optional[JobDetail]:
    for raw in (dom.og_title, dom.title):
        split = _split_at(raw) if raw else None
        if split and _plausible_title(split[0]):
            return JobDetail(title=split[0], company=split[1])
    company = company_from_url_slug(url)
    if company and dom.h1 and _plausible_title(dom.h1):
        return JobDetail(title=dom.h1, company=company)
    return None


def _dom_url_slug(url: str) -> Optional[JobDetail]:
    """Last resort: title from the last path segment of a job-like URL."""
    if not url_looks_like_job_page(url):
        return None
    segments = _path_segments(url)
    slug = re.sub(r"^\d+-", "", segments[-1]) if segments else ""
    if len(slug) < 5 or "-" not in slug or re.fullmatch(r"[\d-]+", slug):
        return None
    return JobDetail(title=title_case_slug(slug), company=company_from_url_slug(url))


SITE_ROUTINES = [
    ("greenhouse.io", _dom_greenhouse),
    ("lever.co", _dom_lever),
    ("workable.com", _dom_workable),
    ("jobs.apple.com", _dom_apple),
    ("wellfound.com", _dom_wellfound),
]


def try_site_dom(html: str, url: str) -> StrategyResult:
    """Host-specific title/company patterns, then generic ones."""
    dom = _Dom(html)
    host = get_hostname(url)
    job = None
    for domain, routine in SITE_ROUTINES:
        if host == domain or host.endswith("." + domain):
            job = routine(dom, url)
            break
    if job is None or not job.has_title:
        job = _dom_generic(dom, url)
    if job is None or not job.has_title:
        job = _dom_url_slug(url)
    if job is None or not job.has_title:
        return StrategyResult.not_found("site_dom", "no title pattern matched")
    return StrategyResult.ok("site_dom", job.model_copy(update={"apply_url": url}))


# ===== LLM =====

def slice_for_llm(html: str, max_chars: int) -> str:
    """
    Body-centred slice of at most ``max_chars``.

    Prefers <main>, then <article>, then <body>; takes the middle of an
    oversized region so that navigation and footers fall away first.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    region = soup.find("main") or soup.find("article") or soup.body
    content = str(region) if region is not None else (html or "")
    if len(content) <= max_chars:
        return content
    start = max(0, (len(content) - max_chars) // 2)
    return content[start:start + max_chars]


async def _llm_once(html: str, url: str, llm: LLMClient, slice_chars: int) -> JobDetail:
    prompt = JOB_DETAIL_PROMPT.format(url=url, html=slice_for_llm(html, slice_chars))
    response = await llm.complete(
        prompt,
        ModelTier.GENERAL,
        CompletionOptions(format="json", temperature=Config.ANALYTICAL_TEMPERATURE, max_tokens=LLM_MAX_TOKENS),
    )
    parsed = parse_llm_json(response)
    fields = {k: v for k, v in parsed.items() if k in JobDetail.model_fields}
    fields.setdefault("apply_url", url)
    return JobDetail.model_validate(fields)


async def try_llm(
    html: str,
    url: str,
    llm: Optional[LLMClient],
    slice_chars: int = LLM_SLICE_CHARS,
) -> StrategyResult:
    """LLM extraction; one retry with a smaller slice on timeout."""
    if llm is None:
        return StrategyResult.not_found("llm", "no LLM client")
    try:
        try:
            job = await _llm_once(html, url, llm, slice_chars)
        except LLMTimeoutError:
            logger.warning(f"LLM extraction timed out; retrying with {LLM_RETRY_SLICE_CHARS}-char slice")
            job = await _llm_once(html, url, llm, min(slice_chars, LLM_RETRY_SLICE_CHARS))
    except (LLMError, ValueError, ValidationError) as e:
        logger.warning(f"LLM extraction failed for {url}: {e}")
        return StrategyResult.error("llm", str(e))
    return StrategyResult.ok("llm", job)


# ===== CHAIN =====

async def run_extraction_chain(
    html: str,
    url: str,
    llm: Optional[LLMClient] = None,
    raw_html: Optional[str] = None,
    slice_chars: int = LLM_SLICE_CHARS,
) -> Tuple[JobDetail, Optional[str]]:
    """
    Run the fallback chain.

    Returns:
        (job, strategy name) - strategy is None when every strategy failed
    """
    source = raw_html or html
    attempts = [
        lambda: try_json_ld(source, url),
        lambda: try_microdata(source, url),
        lambda: try_site_dom(source, url),
    ]
    for attempt in attempts:
        result = attempt()
        if result.status == StrategyStatus.OK and result.job is not None and result.job.has_title:
            job = _finish(result.job, url)
            if job is not None:
                logger.info(f"Extracted '{job.title}' via {result.strategy}")
                return job, result.strategy
            logger.debug(f"Strategy {result.strategy}: no company for '{result.job.title}'")
            continue
        logger.debug(f"Strategy {result.strategy}: {result.status.value} ({result.reason})")

    result = await try_llm(html, url, llm, slice_chars)
    if result.status == StrategyStatus.OK and result.job is not None and result.job.has_title:
        job = _finish(result.job, url)
        if job is not None:
            logger.info(f"Extracted '{job.title}' via llm")
            return job, result.strategy

    logger.warning(f"All extraction strategies failed for {url}")
    return JobDetail.sentinel(), None


async def extract_job_detail(
    html: str,
    url: str,
    llm: Optional[LLMClient] = None,
    raw_html: Optional[str] = None,
    slice_chars: int = LLM_SLICE_CHARS,
) -> JobDetail:
    """
    Extract a single job posting.

    Args:
        html: Cleaned or focused HTML (LLM input)
        url: Page URL
        llm: Optional LLM client; without it the LLM strategy is skipped
        raw_html: Optional page source for the structured strategies
        slice_chars: Maximum HTML characters sent to the LLM

    Returns:
        JobDetail; all-sentinel when nothing could be extracted. Never raises
        for extraction failures.
    """
    job, _ = await run_extraction_chain(html, url, llm, raw_html, slice_chars)
    return job


async def extract_job_detail_with_retry(
    cleaned_html: str,
    raw_html: str,
    url: str,
    llm: Optional[LLMClient] = None,
    slice_chars: int = LLM_SLICE_CHARS,
) -> JobDetail:
    """
    Run the chain on cleaned HTML; if title and company both come back as
    sentinels and the raw page is large, re-run the LLM strategy once on the
    raw HTML.
    """
    job = await extract_job_detail(cleaned_html, url, llm, raw_html=raw_html, slice_chars=slice_chars)
    if not job.is_sentinel or llm is None or len(raw_html or "") <= RAW_RETRY_MIN_CHARS:
        return job

    logger.info("Cleaned-HTML extraction empty; retrying LLM on raw HTML")
    result = await try_llm(raw_html, url, llm, slice_chars)
    if result.status == StrategyStatus.OK and result.job is not None and result.job.has_title:
        return _finish(result.job, url) or job
    return job
