"""Collect per-test outcomes into the catalog and the XML results file."""

import logging
import os
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from host_test_runner.models.catalog import RunBatch, TestNode, TestStatus
from host_test_runner.models.result import (
    RunCounts,
    RunEvent,
    TestComplete,
    TestFailed,
    TestOutcome,
    TestReport,
    TestTimedOut,
)

log = logging.getLogger(__name__)

ROOT_TAG = "test-results"
RUN_TAG = "test-run"
CASE_TAG = "test-case"

NO_RESULT_MESSAGE = "No result was received from the host"


@dataclass(kw_only=True)
class ResultsFile:
    """XML results file holding one ``test-run`` element per run."""

    path: Path
    _tree: ET.ElementTree | None = field(default=None, init=False, repr=False)
    _run: ET.Element | None = field(default=None, init=False, repr=False)

    def prepare(self, *, concat: bool) -> None:
        """Delete results of earlier runs unless they should be kept."""
        if self.path.exists() and not concat:
            log.info("Deleting previous results file %s", self.path)
            self.path.unlink()

    def open(self) -> None:
        """Start a new run element, keeping earlier runs already in the file.

        Raises:
            ValueError: If the existing file is not a results file

        """
        if self.path.exists():
            try:
                tree = ET.parse(self.path)
            except ET.ParseError as e:
                raise ValueError(f"Invalid results file {self.path}: {e}") from e
            if tree.getroot().tag != ROOT_TAG:
                raise ValueError(
                    f"Invalid results file {self.path}: unexpected root "
                    f"element <{tree.getroot().tag}>"
                )
        else:
            tree = ET.ElementTree(ET.Element(ROOT_TAG))

        self._tree = tree
        self._run = ET.SubElement(
            tree.getroot(),
            RUN_TAG,
            started=datetime.now(timezone.utc).isoformat(),
        )
        self._write()

    def append(self, outcomes: Iterable[TestOutcome]) -> None:
        """Append outcomes to the current run and persist them."""
        if self._run is None:
            raise RuntimeError("Results file is not open")
        for outcome in outcomes:
            case = ET.SubElement(
                self._run,
                CASE_TAG,
                name=outcome.name,
                fixture=outcome.fixture,
                category=outcome.category,
                assembly=outcome.assembly,
                status=outcome.status,
                duration=f"{outcome.duration:.3f}",
            )
            if outcome.model:
                case.set("model", outcome.model)
            if outcome.message:
                ET.SubElement(case, "message").text = outcome.message
            if outcome.stack_trace:
                ET.SubElement(case, "stack-trace").text = outcome.stack_trace
        self._write()

    def close(self, counts: RunCounts) -> None:
        """Stamp the run totals and release the file; safe to call twice."""
        if self._run is None:
            return
        self._run.set("finished", datetime.now(timezone.utc).isoformat())
        self._run.set("passed", str(counts.passed))
        self._run.set("skipped", str(counts.skipped))
        self._run.set("failed", str(counts.failed))
        self._write()
        self._tree = None
        self._run = None

    def _write(self) -> None:
        if self._tree is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        ET.indent(self._tree)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        self._tree.write(tmp_path, encoding="utf-8", xml_declaration=True)
        os.replace(tmp_path, self.path)


def read_results(path: Path) -> Sequence[TestOutcome]:
    """Read every test outcome recorded in a results file, across runs.

    Raises:
        FileNotFoundError: If the results file doesn't exist
        ValueError: If the file is not valid XML

    """
    if not path.is_file():
        raise FileNotFoundError(f"Results file not found: {path}")
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ValueError(f"Invalid results file {path}: {e}") from e

    outcomes: list[TestOutcome] = []
    for case in root.iter(CASE_TAG):
        outcomes.append(
            TestOutcome(
                name=case.get("name", ""),
                fixture=case.get("fixture", ""),
                category=case.get("category", ""),
                assembly=case.get("assembly", ""),
                model=case.get("model"),
                status=case.get("status", "none"),  # type: ignore[arg-type]
                duration=float(case.get("duration", "0")),
                message=case.findtext("message"),
                stack_trace=case.findtext("stack-trace"),
            )
        )
    return outcomes


@dataclass(kw_only=True)
class ResultCollector:
    """Translates host reports into catalog status updates and run events.

    This is the only writer of ``TestNode.status`` during a run. The first
    terminal status a test receives is final.
    """

    results_file: ResultsFile
    publish: Callable[[RunEvent], None]
    _started: set[str] = field(default_factory=set, init=False)
    _in_flight: str | None = field(default=None, init=False)
    _unwritten: list[TestNode] = field(default_factory=list, init=False)
    _outcomes: list[TestOutcome] = field(default_factory=list, init=False)

    @property
    def outcomes(self) -> Sequence[TestOutcome]:
        """Outcomes recorded so far in this run."""
        return list(self._outcomes)

    def reset(self, tests: Iterable[TestNode]) -> None:
        """Clear results of a previous run before a new one starts."""
        for test in tests:
            test.reset()

    def mark_not_runnable(self, tests: Iterable[TestNode], message: str) -> None:
        """Mark tests that can never reach a host."""
        for test in tests:
            self._set_status(test, "not_runnable", message=message)
        self.flush()

    def cancel(self, tests: Iterable[TestNode]) -> None:
        """Mark tests that were not run because the run was cancelled."""
        for test in tests:
            self._set_status(test, "cancelled", message="The run was cancelled")
        self.flush()

    def begin_batch(self, batch: RunBatch) -> None:
        """Forget progress tracked for the previous batch."""
        self._started.clear()
        self._in_flight = None
        log.info(
            "Running batch %d: %s", batch.index, ", ".join(batch.test_names)
        )

    def record(self, batch: RunBatch, report: TestReport) -> None:
        """Apply a single progress report from the host."""
        test = _find(batch, report.test)
        if test is None:
            log.warning(
                "Ignoring report for %s which is not part of batch %d",
                report.test,
                batch.index,
            )
            return

        if report.kind == "started":
            self._started.add(test.qualified_name)
            self._in_flight = test.qualified_name
            return

        if self._in_flight == test.qualified_name:
            self._in_flight = None
        if report.status == "none":
            log.warning("Ignoring finished report without status for %s", report.test)
            return

        if not self._set_status(
            test,
            report.status,
            message=report.message,
            stack_trace=report.stack_trace,
            duration=report.duration,
        ):
            return
        self.flush()
        if report.status in ("failure", "error"):
            self.publish(
                TestFailed(
                    test=test.qualified_name,
                    message=report.message,
                    stack_trace=report.stack_trace,
                )
            )

    def has_unstarted(self, batch: RunBatch) -> bool:
        """Whether the host has yet to start some of the batch's tests."""
        return any(
            test.status == "none" and test.qualified_name not in self._started
            for test in batch.tests
        )

    def complete_batch(self, batch: RunBatch) -> None:
        """Close a batch the host reported as finished."""
        self.mark_not_runnable(_pending(batch), NO_RESULT_MESSAGE)
        self.publish(
            TestComplete(tests=batch.test_names, results_path=self.results_file.path)
        )

    def time_out_batch(self, batch: RunBatch, timeout: float) -> None:
        """Close a batch whose host stopped making progress."""
        pending = _pending(batch)
        timed_out = _find(batch, self._in_flight) if self._in_flight else None
        if timed_out is None or timed_out.status != "none":
            timed_out = pending[0] if pending else None

        if timed_out is not None:
            log.warning("Test %s timed out", timed_out.qualified_name)
            self._set_status(
                timed_out,
                "timed_out",
                message=f"The test did not finish within {timeout} seconds",
                duration=timeout,
            )
            self.publish(TestTimedOut(test=timed_out.qualified_name))

        self.mark_not_runnable(
            _pending(batch), "Not run: the host was stopped after a timeout"
        )

    def abandon_batch(self, batch: RunBatch, reason: str) -> None:
        """Close a batch whose host failed before reporting every result."""
        self.mark_not_runnable(_pending(batch), reason)

    def cancel_batch(self, batch: RunBatch) -> None:
        """Close a batch interrupted by cancellation between two tests."""
        self.cancel(_pending(batch))

    def flush(self) -> None:
        """Write outcomes that are not yet in the results file."""
        if not self._unwritten:
            return
        outcomes = [TestOutcome.from_node(test) for test in self._unwritten]
        self._unwritten.clear()
        self._outcomes.extend(outcomes)
        self.results_file.append(outcomes)

    def _set_status(
        self,
        test: TestNode,
        status: TestStatus,
        *,
        message: str | None = None,
        stack_trace: str | None = None,
        duration: float = 0.0,
    ) -> bool:
        if test.status != "none":
            log.debug(
                "Keeping status %s of %s, ignoring %s",
                test.status,
                test.qualified_name,
                status,
            )
            return False
        test.status = status
        test.message = message
        test.stack_trace = stack_trace
        test.duration = duration
        self._unwritten.append(test)
        return True


def _find(batch: RunBatch, qualified_name: str) -> TestNode | None:
    for test in batch.tests:
        if test.qualified_name == qualified_name:
            return test
    return None


def _pending(batch: RunBatch) -> list[TestNode]:
    return [test for test in batch.tests if test.status == "none"]
