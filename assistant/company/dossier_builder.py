"""
Dossier Builder: reuse-or-research for the resolved company.

Decision order:
1. Fresh stored dossier: reuse it, no network activity
2. Run is in its wrap-up window: reuse whatever is stored (stale or partial)
3. Otherwise: extend the run deadline once, research (the stored dossier
   fills what the fresh pass misses) and upsert the result. A pass that
   loads no page leaves the stored record untouched

A research failure never fails the run: the error is recorded on the stored
document and the previous record (or None) is returned.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from assistant.common.errors import PipelineStopped
from assistant.company.deep_research import DeepCompanyResearcher
from assistant.company.dossier import (
    STATUS_DONE,
    STATUS_ERROR,
    DossierRecord,
    create_empty_dossier,
    is_stale,
)
from assistant.company.identity_resolver import CompanyResolution
from assistant.company.repository import CompanyDossierRepositoryInterface

logger = logging.getLogger(__name__)


class DossierBuilder:
    """
    Args:
        repository: Dossier store
        researcher: Deep researcher; None disables research (reuse only)
        clock: Returns the current UTC datetime (tests)
    """

    def __init__(
        self,
        repository: CompanyDossierRepositoryInterface,
        researcher: Optional[DeepCompanyResearcher] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = repository
        self.researcher = researcher
        self.clock = clock

    async def build(self, resolution: CompanyResolution, run) -> Optional[DossierRecord]:
        """
        Get or build the dossier for a company.

        Args:
            resolution: Resolved company identity
            run: PipelineRun (``cancel`` and ``deadline`` are used)

        Returns:
            DossierRecord, or None when nothing is stored and research was
            skipped or failed

        Raises:
            PipelineStopped: If the run was cancelled during research
        """
        if resolution.is_unknown:
            logger.info("Company unknown; skipping dossier")
            return None

        key = resolution.company_key
        record = self.repository.find(key, resolution.domain)
        now = self.clock()

        if record is not None and not is_stale(record, now):
            logger.info(f"Reusing fresh dossier for {key} (coverage={record.memory.coverage.ratio:.2f})")
            return record

        deadline = getattr(run, "deadline", None)
        if deadline is not None and deadline.in_wrap_up():
            logger.info(f"Run near deadline; reusing stored dossier for {key} without research")
            return record

        if self.researcher is None:
            logger.info(f"Research disabled; returning stored dossier for {key}")
            return record

        if deadline is not None:
            deadline.extend_once()

        seed = record.memory if record is not None else None
        try:
            result = await self.researcher.research(
                resolution,
                seed=seed,
                cancel=getattr(run, "cancel", None),
                deadline=deadline,
            )
        except PipelineStopped:
            raise
        except Exception as e:
            logger.warning(f"Dossier research failed for {key}: {e}")
            self.repository.upsert(DossierRecord(
                company_key=key,
                canonical_name=resolution.canonical_name,
                domain=resolution.domain,
                status=STATUS_ERROR,
                memory=seed or create_empty_dossier(now),
                error=str(e),
                updated_at=record.updated_at if record is not None else now,
            ))
            return record

        if result.pages_loaded == 0:
            # Nothing was read, so the stored record keeps its age
            logger.info(f"Research for {key} loaded no pages; keeping stored dossier unchanged")
            return record

        memory = result.memory
        updated = DossierRecord(
            company_key=key,
            canonical_name=resolution.canonical_name,
            domain=resolution.domain or (record.domain if record else None),
            status=STATUS_DONE,
            memory=memory,
            updated_at=self.clock(),
        )
        if not self.repository.upsert(updated):
            logger.warning(f"Dossier for {key} could not be stored")
        logger.info(
            f"Dossier for {key} built: coverage={memory.coverage.ratio:.2f}, "
            f"{result.pages_loaded} page(s) read"
        )
        return updated
