"""
Company Identity Resolver

Picks the canonical hiring-company name for a job from two candidate sources:

1. The company field produced by job detail extraction
2. The job URL's hostname (skipped for ATS and job-board hosts)

Each candidate is scored by how often it is mentioned in the job title and
description. Near-identical candidates (3-gram similarity >= 0.9) are merged.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from assistant.browser.link_filter import is_ats_host
from assistant.common.types import UNKNOWN_COMPANY
from assistant.common.utils import collapse_whitespace, get_hostname, host_matches

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY_NAME = "Unknown Company"
UNKNOWN_CONFIDENCE = 0.1
MERGE_SIMILARITY = 0.9

# Job boards host many companies; their hostname never names the employer
JOB_BOARD_DOMAINS = [
    "wellfound.com",
    "angel.co",
    "linkedin.com",
    "indeed.com",
    "glassdoor.com",
    "ziprecruiter.com",
    "monster.com",
]

_LEGAL_SUFFIX = re.compile(
    r"[\s,]+(inc|incorporated|corp|corporation|co|ltd|limited|llc|gmbh|plc|s\.a|s\.p\.a)\.?$",
    re.I,
)
_SKIP_SUBDOMAINS = {"www", "jobs", "careers", "career", "apply"}
_SECOND_LEVEL = {"co", "com", "org", "net", "ac", "gov"}


@dataclass
class CompanyResolution:
    """Canonical company identity for one run."""

    canonical_name: str
    confidence: float
    domain: Optional[str] = None
    signals: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)

    @property
    def is_unknown(self) -> bool:
        return self.canonical_name == UNKNOWN_COMPANY_NAME

    @property
    def company_key(self) -> str:
        return company_key(self.canonical_name)


@dataclass
class _Candidate:
    name: str
    score: float
    source: str
    aliases: List[str] = field(default_factory=list)


# ===== NAME HELPERS =====

def normalize_company_name(name: str) -> str:
    """
    Strip legal suffixes and collapse whitespace.

    Example:
        >>> normalize_company_name("Acme Robotics, Inc.")
        'Acme Robotics'
    """
    name = collapse_whitespace(name)
    previous = None
    while name and name != previous:
        previous = name
        name = _LEGAL_SUFFIX.sub("", name).strip(" ,")
    return name


def company_key(name: str) -> str:
    """Lower-cased normalized name used as the dossier store key."""
    return normalize_company_name(name).lower()


def _registrable_label(host: str) -> Optional[str]:
    labels = [label for label in host.split(".") if label]
    if len(labels) < 2:
        return None
    labels = labels[:-1]
    if len(labels) >= 2 and labels[-1] in _SECOND_LEVEL:
        labels = labels[:-1]
    while len(labels) > 1 and labels[0] in _SKIP_SUBDOMAINS:
        labels = labels[1:]
    return labels[-1] if labels else None


def is_job_board_host(host: str) -> bool:
    return any(host_matches(host, domain) for domain in JOB_BOARD_DOMAINS)


def company_from_host(url: str) -> Optional[str]:
    """
    Derive a company name from a URL's hostname.

    Returns None for ATS and job-board hosts.

    Example:
        >>> company_from_host("https://careers.acme-robotics.com/jobs/1")
        'Acme Robotics'
    """
    host = get_hostname(url)
    if not host or is_ats_host(host) or is_job_board_host(host):
        return None
    label = _registrable_label(host)
    if not label:
        return None
    words = re.sub(r"[-_]+", " ", label).split()
    return " ".join(w.capitalize() for w in words) or None


def company_domain(url: str) -> Optional[str]:
    """The hiring company's own domain, or None for ATS and job-board hosts."""
    host = get_hostname(url)
    if not host or is_ats_host(host) or is_job_board_host(host):
        return None
    labels = host.split(".")
    while len(labels) > 2 and labels[0] in _SKIP_SUBDOMAINS:
        labels = labels[1:]
    return ".".join(labels)


def _trigrams(text: str) -> set:
    return {text[i:i + 3] for i in range(len(text) - 2)} if len(text) >= 3 else {text}


def name_similarity(a: str, b: str) -> float:
    """
    3-gram Jaccard similarity of two names (lower-cased, alphanumerics only).

    Example:
        >>> name_similarity("Acme Inc", "acme")
        1.0
    """
    a = re.sub(r"[^a-z0-9]", "", normalize_company_name(a or "").lower())
    b = re.sub(r"[^a-z0-9]", "", normalize_company_name(b or "").lower())
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    grams_a, grams_b = _trigrams(a), _trigrams(b)
    union = grams_a | grams_b
    return len(grams_a & grams_b) / len(union) if union else 0.0


def count_mentions(name: str, text: str) -> int:
    """Case-insensitive, non-overlapping occurrences of ``name`` in ``text``."""
    if not name or not text:
        return 0
    return len(re.findall(re.escape(name.lower()), text.lower()))


# ===== RESOLUTION =====

def _merge_candidates(candidates: List[_Candidate]) -> List[_Candidate]:
    merged: List[_Candidate] = []
    for candidate in candidates:
        for existing in merged:
            if name_similarity(existing.name, candidate.name) >= MERGE_SIMILARITY:
                if candidate.score > existing.score:
                    existing.aliases.append(existing.name)
                    existing.name, existing.score, existing.source = (
                        candidate.name, candidate.score, candidate.source,
                    )
                else:
                    existing.aliases.append(candidate.name)
                break
        else:
            merged.append(candidate)
    return merged


def resolve_company_identity(
    extracted: Optional[str],
    job_url: str,
    title: str = "",
    description: str = "",
) -> CompanyResolution:
    """
    Resolve the canonical company for a job.

    Args:
        extracted: Company name from job detail extraction ("Unknown" is ignored)
        job_url: URL of the job page
        title: Job title (mention counting)
        description: Job description (mention counting)

    Returns:
        CompanyResolution. "Unknown Company" at 0.1 when no candidate exists.
    """
    context = f"{title or ''}\n{description or ''}"
    domain = company_domain(job_url)
    signals: List[str] = []
    candidates: List[_Candidate] = []

    extracted_name = normalize_company_name(extracted or "")
    if extracted_name and extracted_name != UNKNOWN_COMPANY:
        freq = count_mentions(extracted_name, context)
        score = 0.6 + min(freq * 0.05, 0.3)
        candidates.append(_Candidate(extracted_name, score, "extracted"))
        signals.append(f"extracted:{extracted_name} mentions={freq}")
    else:
        extracted_name = ""

    host_name = company_from_host(job_url)
    if host_name:
        freq = count_mentions(host_name, context)
        sim = name_similarity(host_name, extracted_name) if extracted_name else 0.0
        score = 0.5 + sim * 0.3 + min(freq * 0.03, 0.2)
        candidates.append(_Candidate(host_name, score, "host"))
        signals.append(f"host:{host_name} similarity={sim:.2f} mentions={freq}")

    if not candidates:
        logger.info(f"No company candidates for {job_url}")
        return CompanyResolution(
            canonical_name=UNKNOWN_COMPANY_NAME,
            confidence=UNKNOWN_CONFIDENCE,
            domain=domain,
            signals=["no_candidates"],
        )

    merged = _merge_candidates(candidates)
    best = max(merged, key=lambda c: c.score)
    aliases = list(dict.fromkeys(
        [alias for c in merged for alias in c.aliases]
        + [c.name for c in merged if c is not best]
    ))
    aliases = [a for a in aliases if a != best.name]
    signals.append(f"chosen:{best.source}")

    resolution = CompanyResolution(
        canonical_name=best.name,
        confidence=round(min(best.score, 1.0), 3),
        domain=domain,
        signals=signals,
        aliases=aliases,
    )
    logger.info(
        f"Resolved company '{resolution.canonical_name}' "
        f"(confidence={resolution.confidence:.2f}, domain={domain})"
    )
    return resolution
