"""
Global fixtures for all unit tests.

This conftest provides autouse fixtures that prevent real external service calls:
- MongoDB connection attempts (would cause 5-30s timeout per test)
- Environment variable isolation (prevents credential leakage)

and shared fakes for the LLM client and the browser fetch function.
"""

import os
from typing import Callable, Dict, List, Optional, Union
from unittest.mock import MagicMock, patch

import pytest

# Set test environment BEFORE any imports to prevent Config from loading real values
os.environ["MONGODB_URI"] = ""
os.environ["OPENAI_API_KEY"] = "sk-test-mock-key"
os.environ["FIRECRAWL_API_KEY"] = ""

from assistant.common.errors import EmbeddingError, NavigationError  # noqa: E402
from assistant.common.types import PageCapture  # noqa: E402


@pytest.fixture(autouse=True)
def mock_mongodb():
    """
    Prevent MongoDB connection attempts in all unit tests.

    MongoClient("") defaults to localhost:27017, causing 5-30s timeout per test.
    """
    with patch("pymongo.MongoClient") as mock_client:
        mock_instance = MagicMock()
        mock_db = MagicMock()
        mock_collection = MagicMock()

        # Setup chain: client["db"]["collection"]
        mock_instance.__getitem__ = MagicMock(return_value=mock_db)
        mock_db.__getitem__ = MagicMock(return_value=mock_collection)
        mock_collection.find_one = MagicMock(return_value=None)
        mock_collection.find = MagicMock(return_value=[])

        mock_client.return_value = mock_instance
        yield mock_client


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """
    Isolate test environment from real credentials and configurations.

    Config reads the environment at import time, so the class attributes are
    patched as well.
    """
    from assistant.common.config import Config

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setenv("FIRECRAWL_API_KEY", "")
    monkeypatch.delenv("MONGODB_URI", raising=False)

    monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setattr(Config, "FIRECRAWL_API_KEY", "")
    monkeypatch.setattr(Config, "MONGODB_URI", "")
    yield


@pytest.fixture(autouse=True)
def reset_dossier_repository():
    """Each test starts with a fresh repository singleton."""
    from assistant.company.repository import reset_company_dossier_repository

    reset_company_dossier_repository()
    yield
    reset_company_dossier_repository()


# ===== FAKES =====

Reply = Union[str, Exception, Callable[[str], str]]


class FakeLLM:
    """
    Stand-in for LLMClient.

    ``replies`` are consumed in order by ``complete()``; a callable reply is
    called with the prompt, an exception reply is raised. Once the queue is
    empty ``default`` is used. Every prompt is recorded in ``prompts``,
    with its tier and options.
    """

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        default: Reply = "{}",
        vectors: Optional[Callable[[str], List[float]]] = None,
        embed_error: Optional[Exception] = None,
    ):
        self.replies = list(replies or [])
        self.default = default
        self.vectors = vectors or (lambda text: [1.0, 0.0, 0.0])
        self.embed_error = embed_error
        self.prompts: List[str] = []
        self.tiers: List[object] = []
        self.options: List[object] = []
        self.embedded: List[List[str]] = []
        self.budget = None

    async def complete(self, prompt, tier=None, options=None) -> str:
        self.prompts.append(prompt)
        self.tiers.append(tier)
        self.options.append(options)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    async def embed(self, texts, options=None):
        self.embedded.append(list(texts))
        if self.embed_error is not None:
            raise self.embed_error
        return [self.vectors(text) for text in texts]


class FakeFetch:
    """
    Async fetch over a URL -> HTML map. Unknown URLs raise NavigationError.

    ``calls`` records every requested URL in order.
    """

    def __init__(self, pages: Dict[str, str]):
        self.pages = pages
        self.calls: List[str] = []

    async def __call__(self, url: str) -> PageCapture:
        self.calls.append(url)
        if url not in self.pages:
            raise NavigationError(f"Navigation to {url} failed: net::ERR_NAME_NOT_RESOLVED")
        return PageCapture(url=url, html=self.pages[url], status_code=200)


@pytest.fixture
def make_llm():
    """Factory for FakeLLM instances."""
    return FakeLLM


@pytest.fixture
def make_fetch():
    """Factory for FakeFetch instances."""
    return FakeFetch


@pytest.fixture
def embedding_failure():
    return EmbeddingError("Embedding failed (text-embedding-3-small): model not found")


# ===== HTML FIXTURES =====

@pytest.fixture
def wellfound_job_html():
    """Wellfound job page: h1 title, company link and a meta line with salary."""
    return """
<html>
<head><title>Senior Backend Software Engineer at Backpack | Wellfound</title></head>
<body>
  <main>
    <a href="/company/backpack-8">Backpack</a>
    <h1>Senior Backend Software Engineer</h1>
    <div><span>Remote • United States</span> • <span>$120k – $180k</span> • <span>2 days ago</span></div>
    <h2>About the role</h2>
    <p>We are looking for a backend engineer to build payment infrastructure.</p>
    <h2>Requirements</h2>
    <ul><li>5+ years of Python</li><li>Experience with PostgreSQL</li></ul>
  </main>
</body>
</html>
"""


@pytest.fixture
def json_ld_job_html():
    """Company careers page with a JSON-LD JobPosting block."""
    return """
<html>
<head>
<title>Careers | Acme Robotics</title>
<script type="application/ld+json">
{
  "@context": "https://schema.org",
  "@type": "JobPosting",
  "title": "Robotics Software Engineer",
  "description": "<p>Build motion planning software for warehouse robots.</p>",
  "datePosted": "2026-09-01",
  "employmentType": "FULL_TIME",
  "hiringOrganization": {"@type": "Organization", "name": "Acme Robotics", "description": "Warehouse automation."},
  "jobLocation": {"@type": "Place", "address": {"addressLocality": "Boston", "addressRegion": "MA", "addressCountry": "US"}},
  "baseSalary": {"@type": "MonetaryAmount", "currency": "USD", "value": {"minValue": 140000, "maxValue": 190000, "unitText": "YEAR"}},
  "qualifications": "<ul><li>C++ or Rust</li><li>ROS experience</li></ul>"
}
</script>
</head>
<body><h1>Robotics Software Engineer</h1><p>Apply now</p></body>
</html>
"""


@pytest.fixture
def login_wall_html():
    return """
<html><head><title>Sign in</title></head>
<body>
  <h1>Please sign in</h1>
  <p>Sign in to continue to the job posting.</p>
  <form><input type="email" name="email"><input type="password" name="password"></form>
</body></html>
"""
