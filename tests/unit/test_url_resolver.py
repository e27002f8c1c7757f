"""
Unit tests for assistant/browser/url_resolver.py

Tests the bounded depth-first job page search:
- Skipping pages that already are job pages
- First job page in link order wins
- Depth and candidate limits, shared visited set
- Navigation failures and cancellation
"""

import pytest

from assistant.browser.url_resolver import UrlResolver
from assistant.common.errors import PipelineStopped
from assistant.common.types import Classification, ClassificationMethod, PageCapture, PageType
from assistant.pipeline.run_context import CancellationToken


LANDING_URL = "https://acme.com/"

LANDING_HTML = """
<a href="/about">About</a>
<a href="/careers">Careers</a>
<a href="/jobs/1-platform">Platform Engineer</a>
<a href="/jobs/2-backend">Backend Engineer</a>
"""


def make_classifier(types):
    """Async classifier returning the mapped type for each URL (irrelevant otherwise)."""
    async def classify(capture):
        page_type = types.get(capture.url, PageType.IRRELEVANT)
        return Classification(page_type, 0.9, ClassificationMethod.HEURISTIC, capture_url=capture.url)
    return classify


def landing(html=LANDING_HTML, url=LANDING_URL):
    return PageCapture(url=url, html=html, status_code=200)


def irrelevant(url=LANDING_URL):
    return Classification(PageType.IRRELEVANT, 0.6, ClassificationMethod.HEURISTIC, capture_url=url)


# ===== TESTS: Skip =====

class TestResolverSkip:
    """Tests for pages that need no search."""

    @pytest.mark.asyncio
    async def test_job_url_skipped(self, make_fetch):
        """A URL that names a single job is trusted without navigation."""
        fetch = make_fetch({})
        resolver = UrlResolver(fetch, make_classifier({}))
        capture = landing(url="https://acme.com/jobs/123-backend")

        result = await resolver.resolve(capture, irrelevant(capture.url))

        assert result.found is True
        assert result.skipped is True
        assert result.reason == "url_looks_like_job_page"
        assert result.capture is capture
        assert fetch.calls == []

    @pytest.mark.asyncio
    async def test_job_type_skipped(self, make_fetch):
        """A page already classified as a detail page is trusted."""
        fetch = make_fetch({})
        resolver = UrlResolver(fetch, make_classifier({}))
        classification = Classification(PageType.DETAIL, 0.8, ClassificationMethod.LLM)

        result = await resolver.resolve(landing(url="https://acme.com/role"), classification)

        assert result.skipped is True
        assert result.reason == "classified_detail"
        assert result.hops == 0


# ===== TESTS: Search =====

class TestResolverSearch:
    """Tests for the depth-first search."""

    @pytest.mark.asyncio
    async def test_first_job_page_in_link_order(self, make_fetch):
        """Candidates are classified in link order; the first job page wins."""
        fetch = make_fetch({
            "https://acme.com/careers": "<h1>Careers</h1>",
            "https://acme.com/jobs/1-platform": "<h1>Platform Engineer</h1>",
            "https://acme.com/jobs/2-backend": "<h1>Backend Engineer</h1>",
        })
        classify = make_classifier({
            "https://acme.com/careers": PageType.LISTING,
            "https://acme.com/jobs/1-platform": PageType.DETAIL,
            "https://acme.com/jobs/2-backend": PageType.DETAIL,
        })
        result = await UrlResolver(fetch, classify).resolve(landing(), irrelevant())

        assert result.found is True
        assert result.skipped is False
        assert result.capture.url == "https://acme.com/jobs/1-platform"
        assert result.classification.type == PageType.DETAIL
        assert result.visited == ["https://acme.com/careers", "https://acme.com/jobs/1-platform"]
        assert result.hops == 2

    @pytest.mark.asyncio
    async def test_descends_into_candidates(self, make_fetch):
        """A job page one level below a careers page is found."""
        fetch = make_fetch({
            "https://acme.com/careers": '<a href="/jobs/7-staff">Staff Engineer</a>',
            "https://acme.com/jobs/7-staff": "<h1>Staff Engineer</h1>",
        })
        classify = make_classifier({
            "https://acme.com/careers": PageType.LISTING,
            "https://acme.com/jobs/7-staff": PageType.DETAIL,
        })
        start = landing(html='<a href="/careers">Careers</a>')

        result = await UrlResolver(fetch, classify).resolve(start, irrelevant())

        assert result.found is True
        assert result.capture.url == "https://acme.com/jobs/7-staff"
        assert result.hops == 2

    @pytest.mark.asyncio
    async def test_depth_limit_exhausts(self, make_fetch):
        """With max_depth=1 the nested job page is out of reach."""
        fetch = make_fetch({
            "https://acme.com/careers": '<a href="/jobs/7-staff">Staff Engineer</a>',
            "https://acme.com/jobs/7-staff": "<h1>Staff Engineer</h1>",
        })
        classify = make_classifier({"https://acme.com/jobs/7-staff": PageType.DETAIL})
        start = landing(html='<a href="/careers">Careers</a>')

        result = await UrlResolver(fetch, classify, max_depth=1).resolve(start, irrelevant())

        assert result.found is False
        assert result.reason == "exhausted"
        assert result.capture is None
        assert result.visited == ["https://acme.com/careers"]

    @pytest.mark.asyncio
    async def test_candidate_limit(self, make_fetch):
        """At most max_candidates links are visited per page."""
        html = "".join(f'<a href="/careers/team-{i}">Team {i}</a>' for i in range(8))
        pages = {f"https://acme.com/careers/team-{i}": "<p>Team</p>" for i in range(8)}
        fetch = make_fetch(pages)

        result = await UrlResolver(fetch, make_classifier({}), max_depth=1, max_candidates=3).resolve(
            landing(html=html), irrelevant()
        )

        assert result.found is False
        assert len(fetch.calls) == 3

    @pytest.mark.asyncio
    async def test_visited_shared_across_levels(self, make_fetch):
        """A page linked from several levels is fetched once."""
        fetch = make_fetch({
            "https://acme.com/careers": '<a href="/jobs">All jobs</a><a href="/">Home</a>',
            "https://acme.com/jobs": '<a href="/careers">Careers</a>',
        })
        start = landing(html='<a href="/careers">Careers</a><a href="/jobs">Jobs</a>')

        result = await UrlResolver(fetch, make_classifier({})).resolve(start, irrelevant())

        assert result.found is False
        assert sorted(fetch.calls) == ["https://acme.com/careers", "https://acme.com/jobs"]

    @pytest.mark.asyncio
    async def test_navigation_failure_skips_candidate(self, make_fetch):
        """A candidate that fails to load is skipped, not fatal."""
        fetch = make_fetch({"https://acme.com/jobs/1-platform": "<h1>Platform Engineer</h1>"})
        classify = make_classifier({"https://acme.com/jobs/1-platform": PageType.DETAIL})

        result = await UrlResolver(fetch, classify).resolve(landing(), irrelevant())

        assert result.found is True
        assert result.capture.url == "https://acme.com/jobs/1-platform"
        assert result.visited[0] == "https://acme.com/careers"


# ===== TESTS: Cancellation =====

class TestResolverCancellation:
    """Tests for cancellation during the search."""

    @pytest.mark.asyncio
    async def test_cancelled_before_first_hop(self, make_fetch):
        """A fired token stops the search before any navigation."""
        token = CancellationToken()
        token.cancel()
        fetch = make_fetch({"https://acme.com/careers": "<h1>Careers</h1>"})

        with pytest.raises(PipelineStopped):
            await UrlResolver(fetch, make_classifier({})).resolve(landing(), irrelevant(), cancel=token)
        assert fetch.calls == []
