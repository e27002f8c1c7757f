"""
Unit tests for assistant/company/dossier_builder.py

Tests the reuse-or-research decision:
- Fresh dossiers are reused without research
- The wrap-up window reuses whatever is stored
- Research results are stored; research failures degrade
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from assistant.common.errors import PipelineStopped
from assistant.company.dossier import (
    STATUS_DONE,
    STATUS_ERROR,
    DossierRecord,
    create_empty_dossier,
    merge_extraction,
)
from assistant.company.deep_research import ResearchResult
from assistant.company.dossier_builder import DossierBuilder
from assistant.company.identity_resolver import UNKNOWN_COMPANY_NAME, CompanyResolution
from assistant.company.repository import InMemoryCompanyDossierRepository

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeDeadline:
    def __init__(self, wrap_up=False):
        self.wrap_up = wrap_up
        self.extensions = 0

    def in_wrap_up(self):
        return self.wrap_up

    def extend_once(self):
        self.extensions += 1
        return True


class FakeResearcher:
    """Returns a fixed memory (or raises) and records the seed it was given."""

    def __init__(self, memory=None, error=None, pages_loaded=1):
        self.memory = memory
        self.error = error
        self.pages_loaded = pages_loaded
        self.calls = []

    async def research(self, resolution, seed=None, cancel=None, deadline=None):
        self.calls.append(seed)
        if self.error is not None:
            raise self.error
        return ResearchResult(memory=self.memory, pages_loaded=self.pages_loaded)


def researched_memory():
    return merge_extraction(create_empty_dossier(NOW), {"hq_location": "Boston, MA"}, "https://acme.com/about", now=NOW)


def stored_record(age_days, status=STATUS_DONE):
    return DossierRecord(
        company_key="acme robotics",
        canonical_name="Acme Robotics",
        domain="acme-robotics.com",
        status=status,
        memory=merge_extraction(create_empty_dossier(NOW), {"ticker": "ACME"}, "https://acme.com", now=NOW),
        updated_at=NOW - timedelta(days=age_days),
    )


@pytest.fixture
def resolution():
    return CompanyResolution(canonical_name="Acme Robotics", confidence=0.8, domain="acme-robotics.com")


@pytest.fixture
def repository():
    return InMemoryCompanyDossierRepository()


def make_run(wrap_up=False):
    return SimpleNamespace(cancel=None, deadline=FakeDeadline(wrap_up))


# ===== TESTS: Reuse =====

class TestDossierReuse:
    """Tests for paths that do not research."""

    @pytest.mark.asyncio
    async def test_unknown_company(self, repository):
        """No dossier is built for an unknown company."""
        researcher = FakeResearcher(researched_memory())
        builder = DossierBuilder(repository, researcher, clock=lambda: NOW)
        unknown = CompanyResolution(canonical_name=UNKNOWN_COMPANY_NAME, confidence=0.1)

        assert await builder.build(unknown, make_run()) is None
        assert researcher.calls == []

    @pytest.mark.asyncio
    async def test_fresh_dossier_reused(self, repository, resolution):
        """A fresh stored dossier is returned without research or deadline extension."""
        repository.upsert(stored_record(age_days=2))
        researcher = FakeResearcher(researched_memory())
        run = make_run()

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, run)

        assert record.memory.value("ticker") == "ACME"
        assert researcher.calls == []
        assert run.deadline.extensions == 0

    @pytest.mark.asyncio
    async def test_wrap_up_reuses_stale_dossier(self, repository, resolution):
        """In the wrap-up window a stale dossier is reused as-is."""
        repository.upsert(stored_record(age_days=90))
        researcher = FakeResearcher(researched_memory())
        run = make_run(wrap_up=True)

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, run)

        assert record.updated_at == NOW - timedelta(days=90)
        assert researcher.calls == []
        assert run.deadline.extensions == 0

    @pytest.mark.asyncio
    async def test_found_by_domain(self, repository):
        """A record stored under another name is found through the domain."""
        repository.upsert(stored_record(age_days=1))
        other_name = CompanyResolution(canonical_name="Acme", confidence=0.6, domain="acme-robotics.com")

        record = await DossierBuilder(repository, None, clock=lambda: NOW).build(other_name, make_run())

        assert record is not None
        assert record.company_key == "acme robotics"

    @pytest.mark.asyncio
    async def test_research_disabled(self, repository, resolution):
        """Without a researcher the stored record (here none) is returned."""
        assert await DossierBuilder(repository, None, clock=lambda: NOW).build(resolution, make_run()) is None


# ===== TESTS: Research =====

class TestDossierResearch:
    """Tests for research, storage and failure handling."""

    @pytest.mark.asyncio
    async def test_research_and_store(self, repository, resolution):
        """A missing dossier is researched once, stored as done, and the deadline extended."""
        researcher = FakeResearcher(researched_memory())
        run = make_run()

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, run)

        assert record.status == STATUS_DONE
        assert record.memory.value("hq_location") == "Boston, MA"
        assert researcher.calls == [None]
        assert run.deadline.extensions == 1

        stored = repository.find("acme robotics")
        assert stored.status == STATUS_DONE
        assert stored.updated_at == NOW

    @pytest.mark.asyncio
    async def test_stale_dossier_seeds_research(self, repository, resolution):
        """Research starts from the stored memory of a stale dossier."""
        repository.upsert(stored_record(age_days=90))
        researcher = FakeResearcher(researched_memory())

        await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run())

        seed = researcher.calls[0]
        assert seed.value("ticker") == "ACME"

    @pytest.mark.asyncio
    async def test_failure_degrades(self, repository, resolution):
        """A research failure is recorded on the store and the run continues."""
        researcher = FakeResearcher(error=RuntimeError("browser crashed"))

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run())

        assert record is None
        stored = repository.find("acme robotics")
        assert stored.status == STATUS_ERROR
        assert stored.error == "browser crashed"

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_record(self, repository, resolution):
        """A failed refresh returns the previous record and keeps its timestamp."""
        repository.upsert(stored_record(age_days=90))
        researcher = FakeResearcher(error=RuntimeError("timeout"))

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run())

        assert record.status == STATUS_DONE
        stored = repository.find("acme robotics")
        assert stored.status == STATUS_ERROR
        assert stored.memory.value("ticker") == "ACME"
        assert stored.updated_at == NOW - timedelta(days=90)

    @pytest.mark.asyncio
    async def test_stop_propagates(self, repository, resolution):
        """A user stop during research is not swallowed."""
        researcher = FakeResearcher(error=PipelineStopped("Stopped by user"))

        with pytest.raises(PipelineStopped):
            await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run())
        assert repository.find("acme robotics") is None

    @pytest.mark.asyncio
    async def test_refresh_without_pages_keeps_age(self, repository, resolution):
        """A stale dossier is not re-stamped as fresh when research read nothing."""
        repository.upsert(stored_record(age_days=90))
        researcher = FakeResearcher(stored_record(age_days=90).memory, pages_loaded=0)

        record = await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run())

        assert record.updated_at == NOW - timedelta(days=90)
        assert repository.find("acme robotics").updated_at == NOW - timedelta(days=90)

    @pytest.mark.asyncio
    async def test_nothing_stored_and_no_pages(self, repository, resolution):
        researcher = FakeResearcher(create_empty_dossier(NOW), pages_loaded=0)

        assert await DossierBuilder(repository, researcher, clock=lambda: NOW).build(resolution, make_run()) is None
        assert repository.find("acme robotics") is None
