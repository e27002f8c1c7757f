"""
Link filtering and URL normalization.

Shared by the page classifier (job-link density, canonical checks) and the
URL resolver (candidate discovery).
"""

import re
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from assistant.common.utils import get_hostname, host_matches


# Third-party applicant-tracking hosts. Their origin is never the hiring company's site.
ATS_DOMAINS = [
    "greenhouse.io",
    "lever.co",
    "workday.com",
    "myworkdayjobs.com",
    "icims.com",
    "smartrecruiters.com",
    "ashbyhq.com",
    "bamboohr.com",
    "breezy.hr",
    "recruitee.com",
    "workable.com",
    "jazz.co",
    "jobvite.com",
    "taleo.net",
    "successfactors.com",
]

# Path patterns that mark a link as a job/career candidate
JOB_LINK_PATTERNS = [
    re.compile(r"/jobs?(/|$|\?)", re.I),
    re.compile(r"/careers?(/|$|\?)", re.I),
    re.compile(r"/openings?(/|$|\?)", re.I),
    re.compile(r"/position", re.I),
    re.compile(r"/apply", re.I),
    re.compile(r"/vacanc", re.I),
]

# Path patterns that mean "this URL is already a job/application page"
JOB_PAGE_URL_PATTERNS = [
    re.compile(r"/careers?/details?/"),
    re.compile(r"/jobs?/[^/]+"),
    re.compile(r"/position/[^/]+"),
    re.compile(r"/opening/[^/]+"),
    re.compile(r"/vacancy/[^/]+"),
    re.compile(r"/career/[^/]+"),
]

_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "#")


def normalize_url(raw_url: str) -> str:
    """
    Normalize a URL for de-duplication.

    Strips the fragment, sorts query parameters, removes a trailing slash
    (except for the root path) and lower-cases scheme and host.

    Example:
        >>> normalize_url("https://Acme.com/jobs/?b=2&a=1#top")
        'https://acme.com/jobs?a=1&b=2'
    """
    try:
        parsed = urlparse(raw_url.strip())
    except ValueError:
        return raw_url
    if not parsed.scheme or not parsed.netloc:
        return raw_url

    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", query, ""))


def is_ats_host(url_or_host: str) -> bool:
    """True if the URL (or bare hostname) belongs to a known applicant-tracking system."""
    host = get_hostname(url_or_host) if "://" in url_or_host else url_or_host.lower()
    return any(host_matches(host, domain) for domain in ATS_DOMAINS)


def is_external_apply_url(url: str) -> bool:
    """True if the URL points at an external ATS apply page."""
    return is_ats_host(url)


def url_looks_like_job_page(url: str) -> bool:
    """
    True if the URL path clearly indicates a job or application page.

    Such URLs are trusted and the resolver is skipped.
    """
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    if any(p.search(path) for p in JOB_PAGE_URL_PATTERNS):
        return True
    return bool(re.search(r"/apply/?", path)) and len(path) > 8


def is_job_link(path: str) -> bool:
    return any(p.search(path) for p in JOB_LINK_PATTERNS)


def same_origin(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return (pa.scheme, (pa.netloc or "").lower()) == (pb.scheme, (pb.netloc or "").lower())


def extract_links(html: str, base_url: str) -> List[str]:
    """All absolute http(s) anchor targets in document order (not de-duplicated)."""
    soup = BeautifulSoup(html or "", "html.parser")
    links = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_SKIP_SCHEMES):
            continue
        absolute = urljoin(base_url, href)
        if absolute.startswith(("http://", "https://")):
            links.append(absolute)
    return links


def extract_job_links(html: str, base_url: str, limit: Optional[int] = None) -> List[str]:
    """
    Same-origin job/career links in link order, de-duplicated by normalized URL.

    The page itself is never returned as its own candidate.

    Args:
        html: Page HTML
        base_url: URL the HTML was captured from
        limit: Optional maximum number of links

    Returns:
        Normalized absolute URLs
    """
    seen = {normalize_url(base_url)}
    results: List[str] = []
    for link in extract_links(html, base_url):
        if not same_origin(link, base_url):
            continue
        if not is_job_link(urlparse(link).path):
            continue
        key = normalize_url(link)
        if key in seen:
            continue
        seen.add(key)
        results.append(key)
        if limit is not None and len(results) >= limit:
            break
    return results


def canonical_url(html: str) -> Optional[str]:
    """``<link rel="canonical">`` href, if present."""
    soup = BeautifulSoup(html or "", "html.parser")
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        rel = rel if isinstance(rel, list) else [rel]
        if "canonical" in [r.lower() for r in rel]:
            return link["href"].strip()
    return None
