"""
Company dossier model and merge rules.

A dossier is a per-company memory of facts (CORE_FIELDS), each with a
confidence and the URLs it was read from. Merging is pure: every call returns
a new DossierMemory with coverage recomputed.

Merge rules for a field that already has a value:
- new confidence strictly greater: the new value replaces the old one
- same value, or equal confidence: only the source URL is added
- lower confidence with a different value: ignored
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from assistant.common.config import Config

logger = logging.getLogger(__name__)

CORE_FIELDS = [
    "description_text",
    "industries",
    "hq_location",
    "size_range",
    "founded_year",
    "funding_stage",
    "public_company",
    "ticker",
    "remote_policy",
    "sponsorship_signals",
    "hiring_locations",
    "tech_stack_hints",
    "job_count_open",
]

DEFAULT_FIELD_CONFIDENCE = 0.85
FRESHNESS_DAYS = Config.DOSSIER_FRESHNESS_DAYS

# Record statuses
STATUS_PENDING = "pending"
STATUS_DONE = "done"
STATUS_ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DossierField(BaseModel):
    value: Any = None
    confidence: float = 0.0
    source_urls: List[str] = Field(default_factory=list)


class Coverage(BaseModel):
    ratio: float = 0.0
    missing: List[str] = Field(default_factory=lambda: list(CORE_FIELDS))


class DossierMemory(BaseModel):
    """Accumulated company facts."""

    updated_at: datetime = Field(default_factory=_utcnow)
    fields: Dict[str, DossierField] = Field(default_factory=dict)
    visited_urls: List[str] = Field(default_factory=list)
    coverage: Coverage = Field(default_factory=Coverage)

    def value(self, name: str) -> Any:
        f = self.fields.get(name)
        return f.value if f else None


class DossierRecord(BaseModel):
    """Persisted dossier document (one per company_key)."""

    company_key: str
    canonical_name: str
    domain: Optional[str] = None
    status: str = STATUS_PENDING
    memory: DossierMemory = Field(default_factory=DossierMemory)
    error: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="python")

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "DossierRecord":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)


# ===== HELPERS =====

def has_value(value: Any) -> bool:
    """False for None, empty lists/dicts and blank strings."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        return re.sub(r"\s+", " ", value).strip().lower()
    if isinstance(value, (list, tuple, set)):
        return frozenset(_comparable(v) for v in value)
    return value


def _same_value(a: Any, b: Any) -> bool:
    try:
        return _comparable(a) == _comparable(b)
    except TypeError:
        return a == b


def _add_url(urls: List[str], url: Optional[str]) -> List[str]:
    if url and url not in urls:
        return urls + [url]
    return list(urls)


def create_empty_dossier(now: Optional[datetime] = None) -> DossierMemory:
    return DossierMemory(updated_at=now or _utcnow())


def compute_coverage(fields: Mapping[str, DossierField]) -> Coverage:
    """
    Coverage over CORE_FIELDS.

    Example:
        >>> compute_coverage({"ticker": DossierField(value="ACME", confidence=0.9)}).missing[:2]
        ['description_text', 'industries']
    """
    missing = [name for name in CORE_FIELDS if not (name in fields and has_value(fields[name].value))]
    present = len(CORE_FIELDS) - len(missing)
    return Coverage(ratio=round(present / len(CORE_FIELDS), 4), missing=missing)


def _split_extraction(entry: Any, default_confidence: float):
    """Accept either a bare value or ``{"value": ..., "confidence": ...}``."""
    if isinstance(entry, dict) and "value" in entry:
        confidence = entry.get("confidence")
        try:
            confidence = float(confidence) if confidence is not None else default_confidence
        except (TypeError, ValueError):
            confidence = default_confidence
        return entry.get("value"), max(0.0, min(confidence, 1.0))
    return entry, default_confidence


def merge_extraction(
    memory: DossierMemory,
    extraction: Mapping[str, Any],
    source_url: Optional[str],
    confidence: Optional[float] = None,
    now: Optional[datetime] = None,
) -> DossierMemory:
    """
    Merge one page's extracted facts into a dossier.

    Args:
        memory: Current dossier (not modified)
        extraction: Field name -> value, or -> {"value", "confidence"}
        source_url: URL the facts were read from
        confidence: Default confidence for bare values (DEFAULT_FIELD_CONFIDENCE)
        now: Timestamp for updated_at

    Returns:
        New DossierMemory with coverage recomputed
    """
    default_confidence = DEFAULT_FIELD_CONFIDENCE if confidence is None else confidence
    fields = {name: f.model_copy(deep=True) for name, f in memory.fields.items()}

    for name in CORE_FIELDS:
        if name not in extraction:
            continue
        value, new_confidence = _split_extraction(extraction[name], default_confidence)
        if not has_value(value):
            continue

        existing = fields.get(name)
        if existing is None or not has_value(existing.value):
            fields[name] = DossierField(
                value=value,
                confidence=new_confidence,
                source_urls=[source_url] if source_url else [],
            )
        elif new_confidence > existing.confidence:
            if _same_value(existing.value, value):
                fields[name] = DossierField(
                    value=existing.value,
                    confidence=new_confidence,
                    source_urls=_add_url(existing.source_urls, source_url),
                )
            else:
                fields[name] = DossierField(
                    value=value,
                    confidence=new_confidence,
                    source_urls=_add_url(existing.source_urls, source_url),
                )
        elif new_confidence == existing.confidence or _same_value(existing.value, value):
            existing.source_urls = _add_url(existing.source_urls, source_url)

    return DossierMemory(
        updated_at=now or _utcnow(),
        fields=fields,
        visited_urls=_add_url(memory.visited_urls, source_url),
        coverage=compute_coverage(fields),
    )


def carry_forward(memory: DossierMemory, previous: Optional[DossierMemory]) -> DossierMemory:
    """
    Fill fields a fresh research pass did not find from an older dossier.

    Fields found by the fresh pass always win. Visited URLs of both are kept
    and ``updated_at`` stays the fresh pass's.
    """
    if previous is None:
        return memory
    fields = {name: f.model_copy(deep=True) for name, f in memory.fields.items()}
    for name, old in previous.fields.items():
        if has_value(old.value) and not (name in fields and has_value(fields[name].value)):
            fields[name] = old.model_copy(deep=True)

    visited = list(memory.visited_urls)
    for url in previous.visited_urls:
        visited = _add_url(visited, url)

    return DossierMemory(
        updated_at=memory.updated_at,
        fields=fields,
        visited_urls=visited,
        coverage=compute_coverage(fields),
    )


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_stale(
    record: Optional[DossierRecord],
    now: Optional[datetime] = None,
    freshness_days: int = FRESHNESS_DAYS,
) -> bool:
    """
    True when a dossier must be (re)researched.

    Stale means: no record, a status other than ``done`` (including
    ``error``), or last updated more than ``freshness_days`` ago.
    """
    if record is None:
        return True
    if record.status != STATUS_DONE:
        return True
    now = _aware(now or _utcnow())
    return now - _aware(record.updated_at) > timedelta(days=freshness_days)
