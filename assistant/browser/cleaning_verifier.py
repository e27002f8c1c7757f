"""
Cleaning Verifier: compares raw and cleaned HTML and flags lossy cleaning.

Rule-based. Confirms that headings and common job-section markers in the raw
page survive in the cleaned output, and computes a token coverage ratio.
"""

from dataclasses import dataclass, field
from typing import List

from bs4 import BeautifulSoup

from assistant.common.utils import collapse_whitespace, html_to_text

DEFAULT_COVERAGE_THRESHOLD = 0.8
MIN_TOKEN_LENGTH = 4
MIN_HEADING_LENGTH = 4
LOST_SIGNAL_PENALTY = 0.1

SIGNAL_PHRASES = [
    "responsibilities",
    "requirements",
    "qualifications",
    "about the role",
    "about the job",
    "about the team",
    "what you will do",
    "what you'll do",
    "what you will be doing",
    "compensation",
    "salary",
    "benefits",
    "location",
    "apply now",
]


@dataclass
class VerificationResult:
    coverage: float
    lost_signals: List[str] = field(default_factory=list)
    manual_review_required: bool = False
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "coverageRatio": round(self.coverage, 4),
            "lostSignals": list(self.lost_signals),
            "manualReviewRequired": self.manual_review_required,
            "confidence": round(self.confidence, 4),
        }


def _headings(html: str) -> List[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    headings = []
    for tag in soup.find_all(["h1", "h2", "h3"]):
        text = collapse_whitespace(tag.get_text(" "))
        if text:
            headings.append(text)
    return headings


def _tokens(text: str) -> List[str]:
    return [t for t in text.lower().split() if len(t) >= MIN_TOKEN_LENGTH]


def verify_cleaning(
    raw_html: str,
    cleaned_html: str,
    threshold: float = DEFAULT_COVERAGE_THRESHOLD,
) -> VerificationResult:
    """
    Verify that cleaned HTML preserves key content from the raw HTML.

    Args:
        raw_html: HTML as captured
        cleaned_html: Output of clean_html()
        threshold: Minimum coverage before manual review is required

    Returns:
        VerificationResult. Any lost heading or section marker forces
        ``manual_review_required``.
    """
    raw_text = html_to_text(raw_html)
    cleaned_text = html_to_text(cleaned_html)

    if not raw_text or not cleaned_text:
        return VerificationResult(coverage=0.0, manual_review_required=True, confidence=0.0)

    raw_tokens = _tokens(raw_text)
    cleaned_tokens = set(_tokens(cleaned_text))
    shared = sum(1 for t in raw_tokens if t in cleaned_tokens)
    coverage = shared / len(raw_tokens) if raw_tokens else 0.0

    raw_lower = raw_text.lower()
    cleaned_lower = cleaned_text.lower()
    lost: List[str] = []

    for heading in _headings(raw_html):
        if len(heading) < MIN_HEADING_LENGTH:
            continue
        if heading.lower() not in cleaned_lower:
            lost.append(f'Heading lost: "{heading[:80]}"')

    for phrase in SIGNAL_PHRASES:
        if phrase in raw_lower and phrase not in cleaned_lower:
            lost.append(f'Section marker lost: "{phrase}"')

    return VerificationResult(
        coverage=coverage,
        lost_signals=lost,
        manual_review_required=coverage < threshold or bool(lost),
        confidence=max(0.0, coverage - LOST_SIGNAL_PENALTY * len(lost)),
    )
