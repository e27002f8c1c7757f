"""
Page Classifier: classifies a captured page against the fixed page taxonomy.

Heuristics first: one independent scorer per page type accumulates weighted
boolean signals (URL patterns, phrases, link density, HTTP status). The best
score wins. A language-model call is used only when no heuristic fired or the
best score is under the confidence threshold, and only if permitted.

Heuristic scoring is pure: for fixed (html, url, status_code) and
``use_llm=False`` the result is always the same.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from assistant.browser.link_filter import canonical_url, is_external_apply_url, normalize_url
from assistant.common.config import Config
from assistant.common.errors import LLMError
from assistant.common.json_utils import parse_llm_json
from assistant.common.llm_client import CompletionOptions, LLMClient
from assistant.common.model_tiers import ModelTier
from assistant.common.types import Classification, ClassificationMethod, PageType
from assistant.common.utils import get_hostname, host_matches

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE_THRESHOLD = 0.6
MAX_HEURISTIC_CONFIDENCE = 0.95
LLM_SNIPPET_CHARS = 8000

KNOWN_NON_JOB_DOMAINS = [
    "google.com",
    "youtube.com",
    "wikipedia.org",
    "openai.com",
    "github.com",
]

# Page types that count as "the job page" for the resolver
JOB_PAGE_TYPES = frozenset({PageType.DETAIL, PageType.EXTERNAL_APPLY})

CAPTCHA_PHRASES = [
    "verify you are human",
    "complete the captcha",
    "captcha challenge",
    "solve the captcha",
    "please verify",
]

LOGIN_PHRASES = [
    "sign in to continue",
    "log in to continue",
    "login required",
    "please sign in",
    "please log in",
]

EXPIRED_PHRASES = [
    "no longer available",
    "job has been removed",
    "position has been filled",
    "listing has expired",
    "this job is closed",
]

DETAIL_URL_PATTERNS = [
    re.compile(r"/jobs/\d+-"),
    re.compile(r"/job/\d+"),
    re.compile(r"/jobs/view/\d+"),
    re.compile(r"/careers?/details?/"),
    re.compile(r"/career/[^/]+"),
    re.compile(r"/position/[^/]+"),
    re.compile(r"/opening/[^/]+"),
    re.compile(r"/vacancy/[^/]+"),
    re.compile(r"/job/[^/]+"),
    re.compile(r"/jobs/[^/?#]+"),
]

IRRELEVANT_PATHS = ["/blog", "/about", "/privacy", "/terms", "/contact", "/faq", "/help"]

_JOB_DETAIL_LINK = re.compile(r"/jobs/\d+-")
_SALARY_RANGE = re.compile(r"\$[\d,]+k?(\s*to|\s*-|\s*–)\s*\$[\d,]+")
_TITLE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.I)

CLASSIFY_PROMPT = """Classify this web page into exactly one type for a job application assistant.

URL: {url}
Title: {title}
Link count: {link_count}
HTML size: {html_size} chars

Types (pick one):
- listing: Multiple job cards/links (main jobs page)
- detail: Single job full description
- category_listing: Category/role-specific listing (Engineering, Remote, etc.)
- company_careers: Company hub with links to jobs
- pagination: Next page / continuation
- search_landing: Search form with no/few results
- login_wall: Must sign in to see content
- captcha_challenge: CAPTCHA / verification page
- error: 404, 500, broken page
- expired: Job no longer available
- external_apply: External ATS (Greenhouse, Lever, etc.)
- irrelevant: Non-job content (blog, about, etc.)
- duplicate_canonical: Duplicate of another canonical page

HTML snippet:
{snippet}

Return JSON: {{"type": "<type>", "confidence": 0.0-1.0}}"""


# ===== HEURISTIC SCORING =====

@dataclass
class HeuristicScore:
    type: PageType
    score: float = 0.0
    signals: List[str] = field(default_factory=list)

    def add(self, weight: float, signal: str) -> None:
        self.score = min(1.0, self.score + weight)
        self.signals.append(signal)


@dataclass
class _PageFacts:
    """Lower-cased views and counts computed once per page."""

    html: str
    lower: str
    url: str
    url_lower: str
    status_code: Optional[int]
    job_detail_links: int

    @classmethod
    def of(cls, html: str, url: str, status_code: Optional[int]) -> "_PageFacts":
        lower = html.lower()
        return cls(
            html=html,
            lower=lower,
            url=url,
            url_lower=url.lower(),
            status_code=status_code,
            job_detail_links=len(_JOB_DETAIL_LINK.findall(lower)),
        )


def _score_error(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.ERROR)
    if p.status_code and (p.status_code == 404 or p.status_code >= 500):
        s.add(0.8, f"status_{p.status_code}")
    if "page not found" in p.lower or "404" in p.lower:
        s.add(0.3, "not_found_text")
    if "500" in p.lower and "error" in p.lower:
        s.add(0.3, "server_error_text")
    if len(p.html) < 3000 and ("not found" in p.lower or "does not exist" in p.lower):
        s.add(0.3, "short_error_page")
    return s


def _score_captcha(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.CAPTCHA_CHALLENGE)
    for phrase in CAPTCHA_PHRASES:
        if phrase in p.lower:
            s.add(0.4, f"captcha_phrase:{phrase}")
    if len(p.html) < 5000 and s.score > 0:
        s.add(0.2, "small_html_captcha")
    return s


def _score_login(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.LOGIN_WALL)
    for phrase in LOGIN_PHRASES:
        if phrase in p.lower:
            s.add(0.35, f"login_phrase:{phrase}")
    if "<form" in p.lower and ("password" in p.lower or "email" in p.lower) and "/jobs/" not in p.lower:
        s.add(0.25, "login_form_detected")
    if any(part in p.url_lower for part in ("/login", "/signin", "/auth")):
        s.add(0.3, "login_url")
    return s


def _score_expired(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.EXPIRED)
    for phrase in EXPIRED_PHRASES:
        if phrase in p.lower:
            s.add(0.4, f"expired_phrase:{phrase}")
    return s


def _score_detail(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.DETAIL)
    if any(pattern.search(p.url_lower) for pattern in DETAIL_URL_PATTERNS):
        s.add(0.5, "detail_url_pattern")
    if p.lower.count("<h1") == 1 and len(p.html) > 5000:
        s.add(0.15, "single_h1")
    if any(t in p.lower for t in ("apply now", "apply for this", "start application", "submit application")):
        s.add(0.2, "apply_button")
    if "attach" in p.lower and any(t in p.lower for t in ("resume", "cv", "curriculum")):
        s.add(0.25, "attach_resume")
    if any(t in p.lower for t in ("job description", "responsibilities", "requirements", "your objectives", "skills & talents")):
        s.add(0.15, "jd_keywords")
    if any(t in p.lower for t in ("salary", "compensation", "per week", "base salary range")) or _SALARY_RANGE.search(p.lower):
        s.add(0.2, "salary_mentioned")
    # Only corroborates other detail evidence; on its own it matches any page
    if p.job_detail_links <= 3 and s.score > 0:
        s.add(0.1, "few_job_links")
    return s


def _score_listing(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.LISTING)
    if p.job_detail_links >= 5:
        s.add(0.5, f"many_job_links:{p.job_detail_links}")
    elif p.job_detail_links >= 2:
        s.add(0.25, f"some_job_links:{p.job_detail_links}")
    path = p.url_lower.split("?", 1)[0].rstrip("/")
    if path.endswith("/jobs") or "/jobs?" in p.url_lower or "/jobs/search" in p.url_lower:
        s.add(0.3, "listing_url_pattern")
    if any(t in p.lower for t in ("job-card", "job-listing", "jobposting")):
        s.add(0.15, "job_card_class")
    return s


def _score_company_careers(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.COMPANY_CAREERS)
    if re.search(r"/company/[^/]+/?$", p.url_lower) or re.search(r"/company/[^/]+/jobs", p.url_lower):
        s.add(0.4, "company_url_pattern")
    if any(t in p.lower for t in ("open positions", "view jobs", "see all jobs", "view openings")):
        s.add(0.25, "company_jobs_cta")
    return s


def _score_category(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.CATEGORY_LISTING)
    if re.search(r"/role/|/category/|/department/", p.url_lower):
        s.add(0.4, "category_url_pattern")
    if any(t in p.lower for t in ("engineering jobs", "remote jobs", "marketing jobs")):
        s.add(0.2, "category_heading")
    if p.job_detail_links >= 3 and s.score > 0:
        s.add(0.2, "has_job_links_in_category")
    return s


def _score_pagination(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.PAGINATION)
    if re.search(r"[?&]page=\d+", p.url_lower) and not re.search(r"page=1\b", p.url_lower):
        s.add(0.5, "pagination_url")
    if any(t in p.lower for t in ("next page", "load more", "show more")):
        s.add(0.15, "pagination_text")
    return s


def _score_search_landing(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.SEARCH_LANDING)
    if "search" in p.lower and ("<form" in p.lower or "search-input" in p.lower):
        s.add(0.2, "search_form")
    if p.job_detail_links == 0 and s.score > 0:
        s.add(0.2, "no_results")
    return s


def _score_external_apply(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.EXTERNAL_APPLY)
    if is_external_apply_url(p.url):
        s.add(0.7, f"external_ats:{get_hostname(p.url)}")
    return s


def _score_irrelevant(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.IRRELEVANT)
    for path in IRRELEVANT_PATHS:
        if path in p.url_lower:
            s.add(0.4, f"irrelevant_path:{path}")
    if p.job_detail_links == 0 and not any(t in p.lower for t in ("career", "position", "hiring")):
        s.add(0.15, "no_job_signals")
    return s


def _score_duplicate_canonical(p: _PageFacts) -> HeuristicScore:
    s = HeuristicScore(PageType.DUPLICATE_CANONICAL)
    canonical = canonical_url(p.html)
    if canonical and canonical.startswith(("http://", "https://")):
        # Only a different page counts; tracking params on the same path do not
        if normalize_url(canonical).split("?", 1)[0] != normalize_url(p.url).split("?", 1)[0]:
            s.add(0.5, "canonical_mismatch")
    return s


# Declaration order is the tie-break order
SCORERS: List[Callable[[_PageFacts], HeuristicScore]] = [
    _score_error,
    _score_captcha,
    _score_login,
    _score_expired,
    _score_detail,
    _score_listing,
    _score_company_careers,
    _score_category,
    _score_pagination,
    _score_search_landing,
    _score_external_apply,
    _score_irrelevant,
    _score_duplicate_canonical,
]


def run_heuristics(html: str, url: str, status_code: Optional[int] = None) -> List[HeuristicScore]:
    """
    Score the page against every type, best first.

    A known non-job domain short-circuits: only the irrelevant score is
    returned, whatever the page content looks like.
    """
    host = get_hostname(url or "")
    if host and any(host_matches(host, d) for d in KNOWN_NON_JOB_DOMAINS):
        return [HeuristicScore(PageType.IRRELEVANT, 0.95, ["known_non_job_domain"])]

    facts = _PageFacts.of(html or "", url or "", status_code)
    scores = [scorer(facts) for scorer in SCORERS]
    # sorted() is stable, so equal scores keep declaration order
    return sorted(scores, key=lambda s: s.score, reverse=True)


def is_job_page_type(page_type: PageType) -> bool:
    """True for page types the resolver accepts as the job page."""
    return page_type in JOB_PAGE_TYPES


# ===== CLASSIFIER =====

async def classify_page(
    html: str,
    url: str,
    status_code: Optional[int] = None,
    use_llm: bool = True,
    llm: Optional[LLMClient] = None,
) -> Classification:
    """
    Classify a page.

    Args:
        html: Cleaned (or raw) page HTML
        url: URL the HTML was captured from
        status_code: Optional HTTP status of the navigation
        use_llm: Permit the language-model fallback
        llm: LLM client for the fallback (required when use_llm is True)

    Returns:
        Classification with contributing signal names
    """
    scores = run_heuristics(html, url, status_code)
    best = scores[0]
    can_use_llm = use_llm and llm is not None

    if best.score == 0:
        if can_use_llm:
            return await classify_with_llm(html, url, llm)
        return Classification(
            type=PageType.IRRELEVANT,
            confidence=0.3,
            method=ClassificationMethod.HEURISTIC,
            signals=["no_signals"],
            capture_url=url,
        )

    if best.score >= HEURISTIC_CONFIDENCE_THRESHOLD or not can_use_llm:
        return Classification(
            type=best.type,
            confidence=min(MAX_HEURISTIC_CONFIDENCE, best.score),
            method=ClassificationMethod.HEURISTIC,
            signals=list(best.signals),
            capture_url=url,
        )

    logger.debug(f"Low heuristic confidence ({best.type.value}={best.score:.2f}), asking LLM")
    return await classify_with_llm(html, url, llm)


async def classify_with_llm(html: str, url: str, llm: LLMClient) -> Classification:
    """
    Language-model classification constrained to the PageType enum.

    An out-of-enum type maps to irrelevant. Any failure yields irrelevant at
    0.3 with signal ``llm_failed``.
    """
    title_match = _TITLE.search(html or "")
    prompt = CLASSIFY_PROMPT.format(
        url=url,
        title=title_match.group(1).strip() if title_match else "",
        link_count=len(re.findall(r"<a\s", html or "", re.I)),
        html_size=len(html or ""),
        snippet=(html or "")[:LLM_SNIPPET_CHARS],
    )

    try:
        response = await llm.complete(
            prompt,
            ModelTier.FAST,
            CompletionOptions(format="json", temperature=Config.CLASSIFIER_TEMPERATURE, max_tokens=128),
        )
        parsed = parse_llm_json(response)
    except (LLMError, ValueError) as e:
        logger.warning(f"LLM page classification failed for {url}: {e}")
        return Classification(
            type=PageType.IRRELEVANT,
            confidence=0.3,
            method=ClassificationMethod.HEURISTIC,
            signals=["llm_failed"],
            capture_url=url,
        )

    try:
        page_type = PageType(str(parsed.get("type", "")).strip().lower())
    except ValueError:
        page_type = PageType.IRRELEVANT

    confidence = parsed.get("confidence")
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
        confidence = 0.5

    return Classification(
        type=page_type,
        confidence=max(0.0, min(1.0, float(confidence))),
        method=ClassificationMethod.LLM,
        signals=["llm_classification"],
        capture_url=url,
    )
