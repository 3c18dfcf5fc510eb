"""Run controller: the state machine that drives a test run."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Literal

from host_test_runner.hosts.base import HostExitedError, HostSupervisor
from host_test_runner.models.catalog import Catalog, RunBatch
from host_test_runner.models.result import (
    RunCounts,
    RunEvent,
    RunSummary,
    TestRunsComplete,
)
from host_test_runner.models.session import SessionConfig
from host_test_runner.planner import plan_batches, validate_run_settings
from host_test_runner.results import ResultCollector, ResultsFile

log = logging.getLogger(__name__)

type RunState = Literal["idle", "preparing", "executing", "cancelling"]

CONFIGURATION_PROBLEMS = "No tests were run due to configuration problems"


@dataclass(kw_only=True)
class RunSession:
    """Mutable state of one run."""

    batches: Sequence[RunBatch] = ()
    current_batch: int = -1
    cancel_requested: threading.Event = field(default_factory=threading.Event)
    counts: RunCounts = field(default_factory=RunCounts)


@dataclass(kw_only=True, eq=False)
class RunHandle:
    """A started run: its event stream and its final summary."""

    task: asyncio.Task[RunSummary]
    queue: asyncio.Queue[RunEvent] = field(repr=False)

    async def events(self) -> AsyncIterator[RunEvent]:
        """Yield run events, ending with ``TestRunsComplete``."""
        while True:
            event = await self.queue.get()
            yield event
            if isinstance(event, TestRunsComplete):
                return

    async def wait(self) -> RunSummary:
        """Wait for the run to finish and return its summary."""
        return await self.task


def log_run_completion(counts: RunCounts) -> None:
    """Log the outcome of a run at a level matching its severity."""
    if counts.failed > 0:
        log.error(
            "Test run completed with errors: %d passed, %d skipped, %d failed",
            counts.passed,
            counts.skipped,
            counts.failed,
        )
    elif counts.skipped > 0:
        log.warning(
            "Test run completed with warnings: %d passed, %d skipped, %d failed",
            counts.passed,
            counts.skipped,
            counts.failed,
        )
    else:
        log.info(
            "Test run completed successfully: %d passed, %d skipped, %d failed",
            counts.passed,
            counts.skipped,
            counts.failed,
        )


@dataclass(kw_only=True)
class RunController:
    """Runs the selected tests of a catalog through a host supervisor.

    Only one run can be active at a time; starting another one while a run is
    in progress is rejected. The run executes in its own task and reports
    through the event stream of the returned ``RunHandle``.
    """

    catalog: Catalog
    session: SessionConfig
    supervisor: HostSupervisor[Any]
    _state: RunState = field(default="idle", init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _run: RunSession | None = field(default=None, init=False, repr=False)

    @property
    def state(self) -> RunState:
        """Current state of the controller."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Whether a run is in progress."""
        return self.state != "idle"

    @property
    def run_session(self) -> RunSession | None:
        """State of the current run, or of the last one when idle."""
        return self._run

    def start(self) -> RunHandle | None:
        """Start running all selected tests.

        Returns:
            Handle of the started run, or None if a run is already in progress

        """
        with self._lock:
            if self._state != "idle":
                log.warning("A test run is already in progress")
                return None
            self._state = "preparing"

        run = RunSession()
        self._run = run
        queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        try:
            task = asyncio.create_task(self._run_all_tests(run, queue.put_nowait))
        except BaseException:
            self._set_state("idle")
            raise
        return RunHandle(task=task, queue=queue)

    async def run_all_tests(self) -> RunSummary | None:
        """Run all selected tests and wait for the summary.

        Returns:
            Summary of the run, or None if a run is already in progress

        """
        handle = self.start()
        if handle is None:
            return None
        return await handle.wait()

    def cancel(self) -> None:
        """Request cooperative cancellation of the active run."""
        with self._lock:
            if self._state not in ("preparing", "executing"):
                return
            self._state = "cancelling"
            run = self._run
        if run is not None:
            run.cancel_requested.set()
        log.info("Cancellation requested")

    def _set_state(self, state: RunState, *, unless: RunState | None = None) -> None:
        with self._lock:
            if self._state != unless:
                self._state = state

    async def _run_all_tests(
        self, run: RunSession, publish: Callable[[RunEvent], None]
    ) -> RunSummary:
        try:
            summary = await self._execute(run, publish)
        except asyncio.CancelledError:
            log.warning("Test run task was cancelled")
            publish(
                TestRunsComplete(
                    summary=RunSummary(
                        counts=RunCounts.from_tests(self.catalog.runnable_tests()),
                        cancelled=True,
                        results_path=self.session.results_path,
                    )
                )
            )
            raise
        except Exception as e:
            log.error("Test run failed: %s", e, exc_info=e)
            summary = RunSummary(
                counts=RunCounts.from_tests(self.catalog.runnable_tests()),
                run_error=str(e),
                cancelled=run.cancel_requested.is_set(),
                results_path=self.session.results_path,
            )
        finally:
            self._set_state("idle")

        publish(TestRunsComplete(summary=summary))
        return summary

    async def _execute(
        self, run: RunSession, publish: Callable[[RunEvent], None]
    ) -> RunSummary:
        problems = validate_run_settings(self.session)
        if problems or self.session.results_path is None:
            return self._not_run(problems)

        results_file = ResultsFile(path=self.session.results_path)
        try:
            results_file.prepare(concat=self.session.concat)
            results_file.open()
        except (OSError, ValueError) as e:
            return self._not_run([str(e)])

        collector = ResultCollector(results_file=results_file, publish=publish)
        errors: Sequence[str] = ()
        try:
            collector.reset(self.catalog.runnable_tests())
            plan = plan_batches(
                self.catalog,
                grouping=self.session.grouping,
                group_by_model=self.session.group_by_model,
                host_path=self.session.host_path,
                working_directory=self.session.working_directory,
            )
            run.batches = plan.batches
            for test in plan.unrunnable:
                collector.mark_not_runnable(
                    [test], f"Model {test.model_path} does not exist"
                )

            if plan.batches:
                self._set_state("executing", unless="cancelling")
                errors = await self._execute_batches(run, collector)
            else:
                errors = ["There are no runnable tests selected"]
        finally:
            run.counts = RunCounts.from_tests(self.catalog.runnable_tests())
            results_file.close(run.counts)

        if errors:
            for error in errors:
                log.error("%s", error)
            log.error(CONFIGURATION_PROBLEMS)
        else:
            log_run_completion(run.counts)

        return RunSummary(
            counts=run.counts,
            outcomes=collector.outcomes,
            configuration_errors=errors,
            cancelled=run.cancel_requested.is_set(),
            results_path=results_file.path,
        )

    def _not_run(self, problems: Sequence[str]) -> RunSummary:
        for problem in problems:
            log.error("%s", problem)
        log.error(CONFIGURATION_PROBLEMS)
        return RunSummary(
            configuration_errors=problems,
            results_path=self.session.results_path,
        )

    async def _execute_batches(
        self, run: RunSession, collector: ResultCollector
    ) -> Sequence[str]:
        await self.supervisor.start_server()
        try:
            if not self.supervisor.setup_tests(run.batches):
                return ["The host application could not be set up"]

            for index, batch in enumerate(run.batches):
                if run.cancel_requested.is_set():
                    log.info(
                        "Run cancelled, skipping %d remaining batch(es)",
                        len(run.batches) - index,
                    )
                    collector.cancel(
                        test
                        for pending in run.batches[index:]
                        for test in pending.tests
                    )
                    break
                run.current_batch = index
                try:
                    await self._run_batch(run, batch, collector)
                except asyncio.CancelledError:
                    run.cancel_requested.set()
                    collector.cancel(
                        test
                        for pending in run.batches[index:]
                        for test in pending.tests
                    )
                    raise
                run.counts = RunCounts.from_tests(self.catalog.runnable_tests())
            return ()
        finally:
            await self.supervisor.end_server()

    async def _run_batch(
        self, run: RunSession, batch: RunBatch, collector: ResultCollector
    ) -> None:
        collector.begin_batch(batch)
        try:
            state = await self.supervisor.dispatch_batch(batch)
        except Exception as e:
            log.error("Could not start batch %d: %s", batch.index, e, exc_info=e)
            collector.abandon_batch(batch, f"The host could not be started: {e}")
            return

        try:
            async with aclosing(
                self.supervisor.stream_results(state, timeout=self.session.timeout)
            ) as reports:
                async for report in reports:
                    collector.record(batch, report)
                    if (
                        report.kind == "finished"
                        and run.cancel_requested.is_set()
                        and collector.has_unstarted(batch)
                    ):
                        log.info("Run cancelled during batch %d", batch.index)
                        await self.supervisor.abort_batch(state)
                        collector.cancel_batch(batch)
                        return
        except TimeoutError:
            collector.time_out_batch(batch, self.session.timeout)
            await self.supervisor.abort_batch(state)
        except HostExitedError as e:
            log.warning("Batch %d did not complete: %s", batch.index, e)
            collector.abandon_batch(batch, str(e))
            await self.supervisor.abort_batch(state)
        except Exception as e:
            log.error("Batch %d failed: %s", batch.index, e, exc_info=e)
            collector.abandon_batch(batch, f"No result was received from the host: {e}")
            await self.supervisor.abort_batch(state)
        else:
            collector.complete_batch(batch)
            await self.supervisor.finish_batch(state)
