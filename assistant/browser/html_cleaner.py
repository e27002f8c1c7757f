"""
HTML Cleaner: deterministic, minimal markup for classification and extraction.

Removes scripts, styles, media, interactive elements, most <meta>/<link> tags,
comments and styling/tracking attributes, keeping anchors, headings, canonical
links, key meta tags and all visible text.
"""

import html as html_lib
import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Comment

logger = logging.getLogger(__name__)

# Tags removed entirely, including their content
REMOVE_TAGS = [
    "script",
    "noscript",
    "iframe",
    "object",
    "embed",
    "applet",
    "svg",
    "style",
    "img",
    "button",
    "input",
    "textarea",
    "select",
    "form",
    "picture",
    "source",
    "video",
    "audio",
    "canvas",
]

KEEP_LINK_REL = {"canonical", "alternate"}
KEEP_META_NAMES = {"description"}
KEEP_META_PROPERTIES = {"og:url", "og:title", "og:description"}

NOISE_ATTRIBUTES = {
    "class",
    "style",
    "role",
    "tabindex",
    "jsaction",
    "jsname",
    "jscontroller",
    "nonce",
    "srcset",
    "sizes",
    "loading",
    "decoding",
    "width",
    "height",
    "align",
    "bgcolor",
    "border",
}
NOISE_PREFIXES = ("data-", "aria-", "on", "ng-", "v-", "x-")

# Tags that should never appear in cleaned output
FORBIDDEN_MARKERS = ("<script", "<style", "<button", "<img", "<input")


@dataclass
class CleanResult:
    html: str
    original_size: int
    cleaned_size: int
    elements_removed: int

    def to_dict(self) -> dict:
        return {
            "originalSize": self.original_size,
            "cleanedSize": self.cleaned_size,
            "elementsRemoved": self.elements_removed,
        }


def _keep_meta(tag) -> bool:
    if tag.get("charset"):
        return True
    name = (tag.get("name") or "").lower()
    prop = (tag.get("property") or "").lower()
    return name in KEEP_META_NAMES or prop in KEEP_META_PROPERTIES


def _keep_link(tag) -> bool:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return any(r.lower() in KEEP_LINK_REL for r in rel)


def _strip_noise_attributes(tag) -> None:
    for attr in list(tag.attrs):
        key = attr.lower()
        if key in NOISE_ATTRIBUTES or key.startswith(NOISE_PREFIXES):
            del tag.attrs[attr]


def _collapse(markup: str) -> str:
    markup = re.sub(r"\n\s*\n+", "\n", markup)
    markup = re.sub(r"[^\S\n]{2,}", " ", markup)
    markup = re.sub(r"[ \t]+$", "", markup, flags=re.M)
    return markup.strip()


def clean_html(raw_html: str) -> CleanResult:
    """
    Clean raw HTML to a minimal document.

    Args:
        raw_html: Page HTML as captured

    Returns:
        CleanResult with cleaned HTML and size statistics. ``cleaned_size`` is
        never larger than ``original_size``.
    """
    raw_html = raw_html or ""
    original_size = len(raw_html)
    soup = BeautifulSoup(raw_html, "html.parser")
    removed = 0

    for tag in soup.find_all(REMOVE_TAGS):
        if tag.decomposed:
            continue
        tag.decompose()
        removed += 1

    for tag in soup.find_all("meta"):
        if not _keep_meta(tag):
            tag.decompose()
            removed += 1

    for tag in soup.find_all("link"):
        if not _keep_link(tag):
            tag.decompose()
            removed += 1

    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        _strip_noise_attributes(tag)

    cleaned = _collapse(str(soup))

    if len(cleaned) > original_size:
        cleaned = _shrink_to_fit(raw_html, soup)

    return CleanResult(
        html=cleaned,
        original_size=original_size,
        cleaned_size=len(cleaned),
        elements_removed=removed,
    )


def _shrink_to_fit(raw_html: str, soup: BeautifulSoup) -> str:
    """
    Fallback when serialization grew the document (tag closing, entity escaping).

    An original without any forbidden markup is returned as-is; otherwise a
    text-only document, truncated to the original size.
    """
    lower = raw_html.lower()
    if not any(marker in lower for marker in FORBIDDEN_MARKERS):
        return raw_html
    text = html_lib.escape(re.sub(r"\s+", " ", soup.get_text(" ")).strip(), quote=False)
    doc = f"<html><body>{text}</body></html>"
    if len(doc) > len(raw_html):
        logger.debug("Cleaned output still larger than input; truncating text")
        budget = max(0, len(raw_html) - len("<html><body></body></html>"))
        doc = f"<html><body>{text[:budget]}</body></html>"
    return doc[:len(raw_html)] if len(doc) > len(raw_html) else doc
