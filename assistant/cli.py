"""
CLI Entry Point: Run the application assistant on one URL

Usage:
    python -m assistant.cli https://jobs.example.com/positions/123
    python -m assistant.cli https://wellfound.com/jobs/123-backend --no-research
    python -m assistant.cli https://example.com/careers --headless --user "Jane Doe"

Login walls and captchas pause the run: complete the step in the browser
window, then press Enter in the terminal.
"""

import argparse
import asyncio
import json
import signal
import sys

from assistant.common.config import Config
from assistant.common.llm_client import LLMClient
from assistant.common.logger import set_global_debug_mode, setup_logging
from assistant.pipeline.controller import ApplicationAssistantController
from assistant.pipeline.human_loop import HumanSignal
from assistant.pipeline.run_context import PipelineRun, RunStatus


class ConsoleHumanSignal(HumanSignal):
    """Prompts on the terminal and resolves when the operator presses Enter."""

    def __init__(self, **kwargs):
        super().__init__(on_wait=self._prompt, **kwargs)

    def _prompt(self, kind: str) -> None:
        print(f"\n⏸  {kind.upper()} required: complete it in the browser window, then press Enter.")
        pending = asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)
        pending.add_done_callback(lambda _: self.resolve())


def print_summary(run: PipelineRun) -> None:
    print("\n" + "=" * 70)
    print("📊 RUN SUMMARY")
    print("=" * 70)
    print(f"Status:     {run.status.value}")
    print(f"URL:        {run.url}")
    if run.final_url and run.final_url != run.url:
        print(f"Job page:   {run.final_url}")
    if run.last_error:
        print(f"Error:      {run.last_error}")
    if run.job is not None:
        print(f"\nJob:        {run.job.title}")
        print(f"Company:    {run.job.company}")
        if run.job.location:
            print(f"Location:   {run.job.location}")
        if run.job.salary:
            print(f"Salary:     {run.job.salary}")
    if run.company is not None:
        print(f"Resolved:   {run.company.canonical_name} ({run.company.confidence:.2f})")
    if run.dossier is not None:
        coverage = run.dossier.memory.coverage
        print(f"Dossier:    coverage {coverage.ratio:.0%}, missing {', '.join(coverage.missing) or 'none'}")
    if run.timings:
        print("\nTimings (ms): " + json.dumps(run.timings))
    print(f"Artifacts:  {run.artifacts_path}")


async def run_once(args: argparse.Namespace) -> PipelineRun:
    llm = None if args.no_llm else LLMClient()
    controller = ApplicationAssistantController(
        llm=llm,
        human=ConsoleHumanSignal(),
        research=False if args.no_research else None,
        user_name=args.user,
        headless=True if args.headless else None,
        structured_logging=args.json_events,
    )
    if llm is not None:
        llm.budget = controller.remaining_budget

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    except NotImplementedError:
        pass
    return await controller.run(args.url)


def main() -> int:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Run the application assistant on a single job URL"
    )
    parser.add_argument("url", help="Job posting, listing or careers page URL")
    parser.add_argument("--no-research", action="store_true", help="Skip the company dossier")
    parser.add_argument("--headless", action="store_true", help="Run the browser without a window")
    parser.add_argument("--user", default=None, help="User name for the artifacts folder")
    parser.add_argument("--no-llm", action="store_true", help="Heuristics and structured data only")
    parser.add_argument("--json-events", action="store_true", help="Print JSON stage events to stdout")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG for pipeline loggers")

    args = parser.parse_args()
    setup_logging(args.log_level)
    if args.debug:
        set_global_debug_mode(True)

    if not args.no_llm:
        try:
            Config.validate()
        except ValueError as e:
            print(f"❌ {e}")
            return 2

    run = asyncio.run(run_once(args))
    print_summary(run)
    return 0 if run.status == RunStatus.DONE else 1


if __name__ == "__main__":
    sys.exit(main())
