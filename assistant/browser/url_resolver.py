"""
URL Resolver: bounded search from a non-job landing page to the job page.

Starting from the captured page, same-origin job/career links are visited in
link order and classified. The first page classified as a job page wins.
Otherwise the search descends into each candidate, depth first, with a single
``visited`` set shared across the whole search.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set

from assistant.browser.link_filter import extract_job_links, normalize_url, url_looks_like_job_page
from assistant.browser.page_classifier import is_job_page_type
from assistant.common.errors import NavigationError
from assistant.common.types import Classification, PageCapture

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 2
DEFAULT_MAX_CANDIDATES = 5

FetchFn = Callable[[str], Awaitable[PageCapture]]
ClassifyFn = Callable[[PageCapture], Awaitable[Classification]]


@dataclass
class ResolveResult:
    """
    Outcome of a resolve attempt.

    ``skipped`` means the starting page was trusted as-is. ``found`` is False
    only when the bounded search was exhausted.
    """

    found: bool
    capture: Optional[PageCapture] = None
    classification: Optional[Classification] = None
    skipped: bool = False
    reason: str = ""
    visited: List[str] = field(default_factory=list)

    @property
    def hops(self) -> int:
        return len(self.visited)


class UrlResolver:
    """
    Depth-first job page search.

    Args:
        fetch: Async callable navigating to a URL and returning its capture
        classify: Async callable classifying a capture
        max_depth: Maximum link depth below the starting page
        max_candidates: Maximum candidate links visited per page
    """

    def __init__(
        self,
        fetch: FetchFn,
        classify: ClassifyFn,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ):
        self.fetch = fetch
        self.classify = classify
        self.max_depth = max_depth
        self.max_candidates = max_candidates

    async def resolve(
        self,
        capture: PageCapture,
        classification: Classification,
        cancel=None,
    ) -> ResolveResult:
        """
        Resolve the job page for a capture.

        Args:
            capture: Current page capture
            classification: Classification of ``capture``
            cancel: Optional cancellation token, checked before every hop

        Returns:
            ResolveResult

        Raises:
            PipelineStopped: If the token fires during the search
        """
        if url_looks_like_job_page(capture.url):
            return ResolveResult(
                found=True,
                capture=capture,
                classification=classification,
                skipped=True,
                reason="url_looks_like_job_page",
            )
        if is_job_page_type(classification.type):
            return ResolveResult(
                found=True,
                capture=capture,
                classification=classification,
                skipped=True,
                reason=f"classified_{classification.type.value}",
            )

        visited: Set[str] = {normalize_url(capture.url)}
        order: List[str] = []
        hit = await self._search(capture, 1, visited, order, cancel)
        if hit is not None:
            found_capture, found_classification = hit
            logger.info(f"Resolved job page {found_capture.url} after {len(order)} hop(s)")
            return ResolveResult(
                found=True,
                capture=found_capture,
                classification=found_classification,
                reason="job_page_found",
                visited=order,
            )

        logger.warning(f"No job page reachable from {capture.url} ({len(order)} page(s) visited)")
        return ResolveResult(found=False, reason="exhausted", visited=order)

    async def _search(
        self,
        page: PageCapture,
        depth: int,
        visited: Set[str],
        order: List[str],
        cancel,
    ):
        if depth > self.max_depth:
            return None

        candidates = [
            link for link in extract_job_links(page.html, page.url)
            if link not in visited
        ][:self.max_candidates]

        fetched: List[PageCapture] = []
        for link in candidates:
            if link in visited:
                continue
            if cancel is not None:
                cancel.raise_if_cancelled()
            visited.add(link)
            order.append(link)

            try:
                child = await self.fetch(link)
            except NavigationError as e:
                logger.debug(f"Skipping candidate {link}: {e}")
                continue
            # Redirects can land on an already-visited page
            visited.add(normalize_url(child.url))

            child_classification = await self.classify(child)
            logger.debug(
                f"Candidate {link} -> {child_classification.type.value} "
                f"({child_classification.confidence:.2f})"
            )
            if is_job_page_type(child_classification.type):
                return child, child_classification
            fetched.append(child)

        for child in fetched:
            hit = await self._search(child, depth + 1, visited, order, cancel)
            if hit is not None:
                return hit
        return None
