"""
Common utility functions for the application assistant pipeline.

Shared helpers for text normalization, URL handling and filesystem-safe
naming used across stages.
"""

import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup


def sanitize_path_component(value: str, max_length: int = 80) -> str:
    """
    Sanitize a string for use as a filesystem path component.

    Example:
        >>> sanitize_path_component("Jane Doe/Acme")
        'Jane_Doe_Acme'
    """
    safe = re.sub(r'[^\w\s-]', '_', value)
    safe = safe.replace(" ", "_")
    safe = safe[:max_length]
    if not safe or safe.replace("_", "").replace(" ", "") == "":
        return "unknown"
    return safe


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and strip."""
    return re.sub(r"\s+", " ", text or "").strip()


def html_to_text(html: str) -> str:
    """Visible text of an HTML fragment, whitespace-collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return collapse_whitespace(soup.get_text(" "))


def get_hostname(url: str) -> str:
    """Lower-cased hostname without a leading ``www.``; empty string if unparseable."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def host_matches(host: str, domain: str) -> bool:
    """True if host equals domain or is a subdomain of it."""
    return host == domain or host.endswith("." + domain)


def title_case_slug(slug: str) -> str:
    """
    Convert a URL slug to a title.

    Example:
        >>> title_case_slug("senior-backend-engineer")
        'Senior Backend Engineer'
    """
    words = [w for w in re.split(r"[-_+\s]+", slug) if w]
    return " ".join(w if w.isupper() else w.capitalize() for w in words)
