"""
Core data types shared across pipeline stages.

Dataclasses for run-local values, pydantic for records that are validated
from model output or persisted (JobDetail).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ===== PAGE CAPTURE & CLASSIFICATION =====

@dataclass(frozen=True)
class PageCapture:
    """Immutable snapshot of one fetch. A new navigation produces a new capture."""

    url: str
    html: str
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    screenshot_ref: Optional[str] = None
    status_code: Optional[int] = None


class PageType(str, Enum):
    """Fixed page taxonomy."""

    LISTING = "listing"
    DETAIL = "detail"
    CATEGORY_LISTING = "category_listing"
    COMPANY_CAREERS = "company_careers"
    PAGINATION = "pagination"
    SEARCH_LANDING = "search_landing"
    LOGIN_WALL = "login_wall"
    CAPTCHA_CHALLENGE = "captcha_challenge"
    ERROR = "error"
    EXPIRED = "expired"
    EXTERNAL_APPLY = "external_apply"
    IRRELEVANT = "irrelevant"
    DUPLICATE_CANONICAL = "duplicate_canonical"


class ClassificationMethod(str, Enum):
    HEURISTIC = "heuristic"
    LLM = "llm"


@dataclass
class Classification:
    """Page type verdict, tied to the capture it was computed from."""

    type: PageType
    confidence: float
    method: ClassificationMethod
    signals: List[str] = field(default_factory=list)
    capture_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "confidence": round(self.confidence, 3),
            "method": self.method.value,
            "signals": list(self.signals),
            "capture_url": self.capture_url,
        }


# ===== CHUNKS =====

@dataclass
class Chunk:
    """Block-level text span of the cleaned document."""

    id: str
    text: str
    document_index: int
    source_tag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "documentIndex": self.document_index,
            "sourceTag": self.source_tag,
        }


@dataclass
class ChunkScore:
    """Run-local relevance verdict for one chunk."""

    chunk_id: str
    score: float
    keep: bool = False
    label: Optional[str] = None
    importance: Optional[float] = None
    continuation: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "score": round(self.score, 4),
            "keep": self.keep,
            "label": self.label,
            "importance": self.importance,
            "continuation": self.continuation,
        }


# ===== JOB DETAIL =====

UNTITLED = "Untitled"
UNKNOWN_COMPANY = "Unknown"


class JobDetail(BaseModel):
    """
    Canonical job record.

    ``title == "Untitled"`` and ``company == "Unknown"`` are sentinels for
    extraction failure and never count as data.
    """

    title: str = UNTITLED
    company: str = UNKNOWN_COMPANY
    company_one_liner: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    posted_date: Optional[str] = None
    deadline: Optional[str] = None
    employment_type: Optional[str] = None
    remote_type: Optional[str] = None
    seniority: Optional[str] = None
    apply_url: Optional[str] = None
    department: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _title_or_sentinel(cls, v: Any) -> str:
        v = str(v).strip() if v is not None else ""
        return v or UNTITLED

    @field_validator("company", mode="before")
    @classmethod
    def _company_or_sentinel(cls, v: Any) -> str:
        v = str(v).strip() if v is not None else ""
        return v or UNKNOWN_COMPANY

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("requirements", mode="before")
    @classmethod
    def _requirements_list(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [line.strip(" -•*\t") for line in v.splitlines()]
        return [str(item).strip() for item in v if item and str(item).strip()]

    @field_validator(
        "company_one_liner", "location", "salary", "posted_date", "deadline",
        "employment_type", "remote_type", "seniority", "apply_url", "department",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, list):
            v = ", ".join(str(item) for item in v if item)
        v = str(v).strip()
        return v or None

    @classmethod
    def sentinel(cls) -> "JobDetail":
        return cls()

    @property
    def has_title(self) -> bool:
        return self.title != UNTITLED

    @property
    def has_company(self) -> bool:
        return self.company != UNKNOWN_COMPANY

    @property
    def is_sentinel(self) -> bool:
        """Both title and company are sentinel values."""
        return not self.has_title and not self.has_company


# ===== STRATEGY RESULTS =====

class StrategyStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class StrategyResult:
    """Outcome of one extraction strategy; the fallback chain branches on ``status``."""

    strategy: str
    status: StrategyStatus
    job: Optional[JobDetail] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, strategy: str, job: JobDetail) -> "StrategyResult":
        return cls(strategy=strategy, status=StrategyStatus.OK, job=job)

    @classmethod
    def not_found(cls, strategy: str, reason: str = "no match") -> "StrategyResult":
        return cls(strategy=strategy, status=StrategyStatus.NOT_FOUND, reason=reason)

    @classmethod
    def error(cls, strategy: str, reason: str) -> "StrategyResult":
        return cls(strategy=strategy, status=StrategyStatus.ERROR, reason=reason)


# ===== LISTINGS =====

@dataclass
class JobListing:
    """One job card found on a listing page."""

    title: str
    url: str
    company: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    posted_at: Optional[str] = None
    extracted_from: Optional[str] = None  # source page URL
