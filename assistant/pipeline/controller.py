"""
Application Assistant Controller

Runs the single-URL pipeline:

    open browser -> acquire -> clean/verify/classify -> [login wait] ->
    [captcha wait] -> resolve job page -> focus -> extract job ->
    resolve company -> build dossier -> done

Hard stops (run ends in error, screenshot saved):
- the first navigation fails
- the resolver exhausts its search without finding a job page
- job extraction returns sentinel title AND company
- an operator does not finish a login/captcha step in time

Degrade-and-continue: cleaning verification, focus and the dossier.

A user stop and the run deadline fire the same cancellation token; either
way the run ends in error with the "Stopped by user" marker.
"""

import asyncio
import contextlib
import logging
from dataclasses import asdict
from typing import Callable, Optional, Tuple

from assistant.browser.cleaning_verifier import verify_cleaning
from assistant.browser.html_cleaner import CleanResult, clean_html
from assistant.browser.link_filter import canonical_url
from assistant.browser.page_classifier import classify_page
from assistant.browser.url_resolver import UrlResolver
from assistant.common.config import Config
from assistant.common.errors import (
    STOPPED_MARKER,
    HumanWaitTimeout,
    NavigationError,
    PipelineHardStop,
    PipelineStopped,
)
from assistant.common.llm_client import LLMClient
from assistant.common.logger import PipelineLogger, get_logger
from assistant.common.structured_logger import EventType, LogEvent, StageContext, StructuredLogger
from assistant.common.types import Classification, PageCapture, PageType
from assistant.company.deep_research import DeepCompanyResearcher
from assistant.company.dossier_builder import DossierBuilder
from assistant.company.identity_resolver import resolve_company_identity
from assistant.company.repository import get_company_dossier_repository
from assistant.company.web_search import create_search_client
from assistant.extraction.job_detail_extractor import extract_job_detail_with_retry
from assistant.extraction.listing_extractor import extract_jobs_from_html
from assistant.extraction.rag_focuser import focus_content
from assistant.pipeline.artifacts import ArtifactStore, run_folder_name
from assistant.pipeline.browser_session import BrowserSession
from assistant.pipeline.human_loop import HumanSignal
from assistant.pipeline.run_context import (
    DEADLINE_REASON,
    PipelineRun,
    PipelineStep,
    RunDeadline,
    RunStatus,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Callable[[], float]], BrowserSession]

# Pages whose job cards are saved before the resolver descends
LISTING_PAGE_TYPES = frozenset({
    PageType.LISTING,
    PageType.COMPANY_CAREERS,
    PageType.CATEGORY_LISTING,
    PageType.PAGINATION,
    PageType.SEARCH_LANDING,
})


class ApplicationAssistantController:
    """
    Orchestrates one run per ``run()`` call.

    Args:
        llm: LLM client; None runs heuristics-only (no LLM classification,
            focus, LLM extraction or research)
        human: Operator signal for login/captcha waits
        session_factory: Builds the browser session from a budget callable
        dossier_builder: Overrides the default builder
        research: Build the company dossier (defaults to ENABLE_COMPANY_RESEARCH)
        user_name: Used in the artifacts folder name
        artifacts_root: Defaults to Config.ARTIFACTS_DIR
        headless: Browser headless flag for the default session factory
        heartbeat_seconds: Interval of "still working" events
        structured_logging: Emit JSON stage events to stdout
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        human: Optional[HumanSignal] = None,
        session_factory: Optional[SessionFactory] = None,
        dossier_builder: Optional[DossierBuilder] = None,
        research: Optional[bool] = None,
        user_name: Optional[str] = None,
        artifacts_root: Optional[str] = None,
        headless: Optional[bool] = None,
        heartbeat_seconds: float = Config.HEARTBEAT_SECONDS,
        structured_logging: bool = False,
    ):
        self.llm = llm
        self.human = human or HumanSignal()
        self.headless = headless
        self.session_factory = session_factory or (
            lambda budget: BrowserSession(headless=self.headless, budget=budget)
        )
        self.dossier_builder = dossier_builder
        self.research = Config.ENABLE_COMPANY_RESEARCH if research is None else research
        self.user_name = user_name
        self.artifacts_root = artifacts_root
        self.heartbeat_seconds = heartbeat_seconds
        self.structured_logging = structured_logging
        self.current_run: Optional[PipelineRun] = None

    # ===== CONTROL =====

    def stop(self, reason: str = STOPPED_MARKER) -> bool:
        """Stop the current run. Returns False if no run is active."""
        run = self.current_run
        if run is None or run.is_terminal:
            return False
        run.cancel.cancel(reason)
        return True

    def remaining_budget(self) -> float:
        """Seconds left in the current run (LLM and navigation timeouts are clipped to it)."""
        run = self.current_run
        if run is None or run.deadline is None:
            return Config.RUN_DEADLINE_MINUTES * 60
        return run.deadline.remaining()

    async def run(self, url: str) -> PipelineRun:
        """
        Run the pipeline for one URL.

        Returns:
            The terminal PipelineRun (status ``done`` or ``error``). Run-level
            failures are reported on the run, not raised.
        """
        run = PipelineRun(url=url, user_name=self.user_name)
        self.current_run = run
        run.deadline = RunDeadline(on_expire=lambda: run.cancel.cancel(DEADLINE_REASON))

        log = get_logger(__name__, run.run_id, "Controller", sink=run.add_event)
        slog = StructuredLogger(
            run.run_id,
            enabled=self.structured_logging,
            listener=lambda event: self._record_timing(run, event),
        )
        artifacts = ArtifactStore(run_folder_name(self.user_name, run.run_id), root=self.artifacts_root)
        run.artifacts_path = str(artifacts.path)

        run.status = RunStatus.RUNNING
        run.deadline.start()
        slog.pipeline_start({"url": url})
        log.info(f"Starting run for {url}")
        heartbeat = asyncio.create_task(self._heartbeat(run, log))
        session: Optional[BrowserSession] = None

        try:
            session = self.session_factory(run.deadline.remaining)
            await self._execute(run, session, artifacts, log, slog)
            run.set_step(PipelineStep.DONE)
            run.finish(RunStatus.DONE)
            log.success("Run complete")
        except PipelineStopped as e:
            log.warning(f"Stopped by user ({e.reason})")
            run.finish(RunStatus.ERROR, STOPPED_MARKER)
        except PipelineHardStop as e:
            log.error(f"Hard stop at {e.stage}: {e.message}")
            run.errors.add_error(e.stage, "hard_stop", e.message, severity="critical", recoverable=False, exception=e)
            await self._screenshot(session, artifacts)
            run.finish(RunStatus.ERROR, e.message)
        except HumanWaitTimeout as e:
            log.error(str(e))
            run.errors.add_error("human_wait", e.kind, str(e), severity="critical", recoverable=False, exception=e)
            await self._screenshot(session, artifacts)
            run.finish(RunStatus.ERROR, str(e))
        except Exception as e:
            log.exception(f"Unexpected failure at {run.step.value}: {e}")
            run.errors.add_error(run.step.value, "unexpected", str(e), severity="critical", recoverable=False, exception=e)
            await self._screenshot(session, artifacts)
            run.finish(RunStatus.ERROR, str(e))
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            run.deadline.cancel_timer()
            if session is not None:
                await self._close(session)
            slog.pipeline_complete(
                status=run.status.value,
                duration_ms=int(run.deadline.elapsed() * 1000),
                error=run.last_error,
            )
            artifacts.write_json("events.json", {"run": run.to_dict(), "stages": slog.as_dicts()})
            if self.current_run is run:
                self.current_run = None

        return run

    # ===== STEPS =====

    async def _execute(
        self,
        run: PipelineRun,
        session: BrowserSession,
        artifacts: ArtifactStore,
        log: PipelineLogger,
        slog: StructuredLogger,
    ) -> None:
        run.set_step(PipelineStep.OPEN_BROWSER)
        with StageContext(slog, "browser"):
            await session.open()

        run.set_step(PipelineStep.ACQUIRE)
        with StageContext(slog, "acquire"):
            run.cancel.raise_if_cancelled()
            try:
                capture = await session.navigate(run.url)
            except NavigationError as e:
                raise PipelineHardStop("acquire", str(e))
        log.bind("Acquire").success(f"Loaded {capture.url} ({len(capture.html)} chars)")

        run.set_step(PipelineStep.CLASSIFY)
        with StageContext(slog, "classify") as ctx:
            cleaned, classification = await self._clean_and_classify(capture, log, slog)
            if classification.type == PageType.DUPLICATE_CANONICAL:
                capture, cleaned, classification = await self._follow_canonical(
                    session, capture, cleaned, classification, log, slog,
                )
            ctx.add_metadata("page_type", classification.type.value)

        if classification.type == PageType.LOGIN_WALL:
            run.set_step(PipelineStep.LOGIN)
            capture, cleaned, classification = await self._human_wait(
                run, session, "login", log, slog,
            )
        if classification.type == PageType.CAPTCHA_CHALLENGE:
            run.set_step(PipelineStep.CAPTCHA)
            capture, cleaned, classification = await self._human_wait(
                run, session, "captcha", log, slog,
            )
        if classification.type in (PageType.LOGIN_WALL, PageType.CAPTCHA_CHALLENGE):
            raise PipelineHardStop("human_wait", f"Page still blocked ({classification.type.value}) after operator action")

        run.cancel.raise_if_cancelled()
        if classification.type in LISTING_PAGE_TYPES:
            await self._record_listings(capture, artifacts, log)

        run.set_step(PipelineStep.RESOLVE)
        with StageContext(slog, "resolve") as ctx:
            resolver = UrlResolver(fetch=session.navigate, classify=self._classifier())
            result = await resolver.resolve(capture, classification, cancel=run.cancel)
            ctx.add_metadata("hops", result.hops)
            if not result.found:
                raise PipelineHardStop("resolve", f"No job page found from {capture.url} ({result.hops} page(s) checked)")
            if not result.skipped:
                capture, classification = result.capture, result.classification
                cleaned = clean_html(capture.html)
                log.bind("Resolver").success(f"Job page found after {result.hops} hop(s): {capture.url}")
        run.final_url = capture.url
        run.page_type = classification.type.value

        artifacts.save_capture(capture.html, cleaned.html, {
            "url": run.url,
            "finalUrl": capture.url,
            "capturedAt": capture.captured_at.isoformat(),
            "statusCode": capture.status_code,
            "classification": classification.to_dict(),
            "cleaning": cleaned.to_dict(),
        })

        run.cancel.raise_if_cancelled()
        run.set_step(PipelineStep.FOCUS)
        extraction_html = await self._focus(run, cleaned.html, artifacts, log, slog)

        run.cancel.raise_if_cancelled()
        run.set_step(PipelineStep.EXTRACT)
        with StageContext(slog, "extract"):
            job = await extract_job_detail_with_retry(extraction_html, capture.html, capture.url, self.llm)
            if job.is_sentinel:
                raise PipelineHardStop("extract", "Could not extract job title or company")
        run.job = job
        artifacts.write_json("job.json", job.model_dump())
        log.bind("Extract").success(f"Extracted '{job.title}' at {job.company}")

        run.cancel.raise_if_cancelled()
        run.set_step(PipelineStep.COMPANY)
        with StageContext(slog, "company_identity") as ctx:
            resolution = resolve_company_identity(job.company, capture.url, job.title, job.description)
            ctx.add_metadata("company", resolution.canonical_name)
            ctx.add_metadata("confidence", resolution.confidence)
        run.company = resolution
        log.bind("Company").info(
            f"Company: {resolution.canonical_name} (confidence {resolution.confidence:.2f})"
        )

        run.set_step(PipelineStep.DOSSIER)
        await self._dossier(run, session, resolution, artifacts, log, slog)

    async def _classify(self, capture: PageCapture, cleaned: CleanResult) -> Classification:
        return await classify_page(
            cleaned.html,
            capture.url,
            capture.status_code,
            use_llm=self.llm is not None,
            llm=self.llm,
        )

    def _classifier(self):
        async def classify(capture: PageCapture) -> Classification:
            return await self._classify(capture, clean_html(capture.html))
        return classify

    async def _clean_and_classify(
        self,
        capture: PageCapture,
        log: PipelineLogger,
        slog: StructuredLogger,
    ) -> Tuple[CleanResult, Classification]:
        cleaned = clean_html(capture.html)
        verification = verify_cleaning(capture.html, cleaned.html)
        if verification.manual_review_required:
            message = (
                f"Cleaning may have dropped content (coverage {verification.coverage:.2f}, "
                f"lost: {', '.join(verification.lost_signals) or 'none'})"
            )
            log.bind("Clean").warning(message)
            slog.stage_warning("classify", message, verification.to_dict())

        classification = await self._classify(capture, cleaned)
        log.bind("Classify").info(
            f"Page type {classification.type.value} "
            f"({classification.method.value}, {classification.confidence:.2f})"
        )
        return cleaned, classification

    async def _follow_canonical(self, session, capture, cleaned, classification, log, slog):
        target = canonical_url(capture.html)
        if not target:
            return capture, cleaned, classification
        log.bind("Classify").info(f"Following canonical URL {target}")
        try:
            followed = await session.navigate(target)
        except NavigationError as e:
            log.bind("Classify").warning(f"Canonical URL failed; keeping original page: {e}")
            return capture, cleaned, classification
        cleaned, classification = await self._clean_and_classify(followed, log, slog)
        return followed, cleaned, classification

    async def _human_wait(self, run, session, kind: str, log, slog):
        run.status = RunStatus.WAITING_LOGIN if kind == "login" else RunStatus.WAITING_CAPTCHA
        run.waiting_for = kind
        log.bind("HumanLoop").warning(f"Waiting for operator to complete {kind} in the browser")
        run.deadline.pause()
        try:
            with StageContext(slog, "human_wait") as ctx:
                ctx.add_metadata("kind", kind)
                if kind == "login":
                    html = await self.human.wait_for_login(run.cancel)
                else:
                    html = await self.human.wait_for_captcha(run.cancel)
        finally:
            run.deadline.resume()
            run.waiting_for = None
            run.status = RunStatus.RUNNING

        log.bind("HumanLoop").success(f"Operator completed {kind}")
        if html:
            capture = PageCapture(url=session.page.url, html=html)
        else:
            capture = await session.capture()
        cleaned, classification = await self._clean_and_classify(capture, log, slog)
        return capture, cleaned, classification

    async def _focus(self, run, html: str, artifacts, log, slog) -> str:
        if self.llm is None or not Config.ENABLE_RAG_FOCUS:
            slog.stage_skip("focus", "disabled" if self.llm is not None else "no_llm")
            return html
        with StageContext(slog, "focus") as ctx:
            result = await focus_content(html, self.llm, artifacts=artifacts, cancel=run.cancel)
            if result.focused_html is None:
                ctx.mark_degraded(result.error or "nothing_to_focus")
                run.errors.add_error("focus", "focus_content", result.error or "nothing_to_focus", severity="low")
                log.bind("Focus").warning("Focus unavailable; extracting from the full cleaned page")
                return html
            ctx.add_metadata("kept", result.kept_count)
            ctx.add_metadata("chunks", len(result.chunks))
        log.bind("Focus").success(f"Focused to {result.kept_count}/{len(result.chunks)} chunks")
        return result.focused_html

    async def _record_listings(self, capture: PageCapture, artifacts: ArtifactStore, log: PipelineLogger) -> None:
        result = await extract_jobs_from_html(capture.html, capture.url, llm=self.llm)
        if not result.listings:
            return
        artifacts.write_json("listings.json", {
            "strategy": result.strategy,
            "listings": [asdict(listing) for listing in result.listings],
        })
        log.bind("Listing").info(f"{len(result.listings)} listing(s) on {capture.url} via {result.strategy}")

    def _default_builder(self, session) -> DossierBuilder:
        researcher = None
        if self.llm is not None:
            researcher = DeepCompanyResearcher(
                fetch=session.navigate,
                llm=self.llm,
                search=create_search_client(),
            )
        return DossierBuilder(get_company_dossier_repository(), researcher)

    async def _dossier(self, run, session, resolution, artifacts, log, slog) -> None:
        if not self.research:
            slog.stage_skip("dossier", "research_disabled")
            return
        builder = self.dossier_builder or self._default_builder(session)
        with StageContext(slog, "dossier") as ctx:
            try:
                record = await builder.build(resolution, run)
            except PipelineStopped:
                raise
            except Exception as e:
                ctx.mark_degraded(str(e))
                run.errors.add_error("dossier", "build", str(e), severity="medium", exception=e)
                log.bind("Dossier").warning(f"Dossier unavailable: {e}")
                return
            if record is None:
                ctx.mark_degraded("no_dossier")
                return
            ctx.add_metadata("coverage", record.memory.coverage.ratio)
        run.dossier = record
        artifacts.write_json("dossier.json", record.to_document())
        log.bind("Dossier").success(
            f"Dossier for {record.canonical_name}: coverage {record.memory.coverage.ratio:.0%}"
        )

    # ===== HOUSEKEEPING =====

    @staticmethod
    def _record_timing(run: PipelineRun, event: LogEvent) -> None:
        if event.event == EventType.STAGE_COMPLETE.value and event.stage and event.duration_ms is not None:
            run.timings[event.stage] = event.duration_ms

    async def _heartbeat(self, run: PipelineRun, log: PipelineLogger) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            if run.waiting_for:
                log.info(f"Still waiting for operator ({run.waiting_for})")
            else:
                log.info(f"Still working: {run.step.value}, {run.deadline.remaining():.0f}s left")

    async def _screenshot(self, session: Optional[BrowserSession], artifacts: ArtifactStore) -> None:
        if session is None or not session.is_open:
            return
        path = await session.screenshot(str(artifacts.file_path("screenshot.png")))
        if path:
            logger.info(f"Saved hard-stop screenshot to {path}")

    async def _close(self, session: BrowserSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"Browser close failed: {e}")
