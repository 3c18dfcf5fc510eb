"""Tests for the results file and the result collector."""

import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

from host_test_runner.models.catalog import Catalog, RunBatch
from host_test_runner.models.result import (
    RunCounts,
    RunEvent,
    TestComplete,
    TestFailed,
    TestReport,
    TestTimedOut,
)
from host_test_runner.results import ResultCollector, ResultsFile, read_results
from host_test_runner.testing.factories import TestOutcomeFactory

type MakeCatalog = Callable[..., Catalog]


class TestResultsFile:
    """Tests for ResultsFile."""

    def test_writes_outcomes_and_totals(self, tmp_path: Path) -> None:
        """Outcomes are written to a run element stamped with totals."""
        path = tmp_path / "results.xml"
        results = ResultsFile(path=path)
        outcome = TestOutcomeFactory.build(
            fixture="Walls",
            name="Create",
            status="failure",
            model="walls.rvt",
            message="Expected 1 wall",
            stack_trace="at Walls.Create()",
        )

        results.open()
        results.append([outcome])
        results.close(RunCounts(failed=1))

        run = ET.parse(path).getroot().find("test-run")
        assert run is not None
        assert run.get("failed") == "1"
        assert run.get("finished") is not None
        case = run.find("test-case")
        assert case is not None
        assert case.get("name") == "Create"
        assert case.get("model") == "walls.rvt"
        assert case.findtext("message") == "Expected 1 wall"
        assert case.findtext("stack-trace") == "at Walls.Create()"

    def test_outcomes_are_persisted_before_close(self, tmp_path: Path) -> None:
        """Each append is visible in the file straight away."""
        path = tmp_path / "results.xml"
        results = ResultsFile(path=path)
        results.open()

        results.append([TestOutcomeFactory.build(status="success")])

        assert [o.status for o in read_results(path)] == ["success"]

    def test_replaces_previous_runs_without_concat(self, tmp_path: Path) -> None:
        """Earlier results are deleted when not concatenating."""
        path = tmp_path / "results.xml"
        for _ in range(2):
            results = ResultsFile(path=path)
            results.prepare(concat=False)
            results.open()
            results.append([TestOutcomeFactory.build()])
            results.close(RunCounts(passed=1))

        assert len(ET.parse(path).getroot().findall("test-run")) == 1
        assert len(read_results(path)) == 1

    def test_appends_runs_with_concat(self, tmp_path: Path) -> None:
        """Earlier runs are kept when concatenating."""
        path = tmp_path / "results.xml"
        for _ in range(2):
            results = ResultsFile(path=path)
            results.prepare(concat=True)
            results.open()
            results.append([TestOutcomeFactory.build()])
            results.close(RunCounts(passed=1))

        assert len(ET.parse(path).getroot().findall("test-run")) == 2
        assert len(read_results(path)) == 2

    def test_close_is_idempotent(self, tmp_path: Path) -> None:
        """Closing twice does nothing the second time."""
        results = ResultsFile(path=tmp_path / "results.xml")
        results.open()

        results.close(RunCounts())
        results.close(RunCounts(failed=3))

        run = ET.parse(results.path).getroot().find("test-run")
        assert run is not None
        assert run.get("failed") == "0"

    def test_append_requires_open_file(self, tmp_path: Path) -> None:
        """Appending before opening is an error."""
        results = ResultsFile(path=tmp_path / "results.xml")

        with pytest.raises(RuntimeError, match="not open"):
            results.append([TestOutcomeFactory.build()])

    def test_rejects_invalid_existing_file(self, tmp_path: Path) -> None:
        """An existing file that is not XML cannot be appended to."""
        path = tmp_path / "results.xml"
        path.write_text("not xml")

        with pytest.raises(ValueError, match="Invalid results file"):
            ResultsFile(path=path).open()

    def test_rejects_foreign_xml(self, tmp_path: Path) -> None:
        """An existing XML file with another root cannot be appended to."""
        path = tmp_path / "results.xml"
        path.write_text("<testsuites/>")

        with pytest.raises(ValueError, match="unexpected root element"):
            ResultsFile(path=path).open()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        """The results directory is created when missing."""
        path = tmp_path / "out" / "results.xml"

        ResultsFile(path=path).open()

        assert path.is_file()


def test_read_results_requires_file(tmp_path: Path) -> None:
    """Reading a missing results file fails."""
    with pytest.raises(FileNotFoundError, match="Results file not found"):
        read_results(tmp_path / "missing.xml")


class TestResultCollector:
    """Tests for ResultCollector."""

    @pytest.fixture
    def events(self) -> list[RunEvent]:
        """Events published by the collector."""
        return []

    @pytest.fixture
    def collector(self, tmp_path: Path, events: list[RunEvent]) -> ResultCollector:
        """Collector writing to an open results file."""
        results_file = ResultsFile(path=tmp_path / "results.xml")
        results_file.open()
        return ResultCollector(results_file=results_file, publish=events.append)

    @pytest.fixture
    def batch(self, make_catalog: MakeCatalog, tmp_path: Path) -> RunBatch:
        """Batch of three tests sharing a model."""
        catalog = make_catalog(("F.T1", "a.rvt"), ("F.T2", "a.rvt"), ("F.T3", "a.rvt"))
        tests = catalog.all_tests()
        return RunBatch(
            index=0,
            tests=tests,
            model_path=tests[0].model_path,
            host_path=None,
            working_directory=tmp_path,
        )

    def test_records_finished_reports(
        self,
        collector: ResultCollector,
        batch: RunBatch,
        events: list[RunEvent],
    ) -> None:
        """Finished reports set the test status and publish completion."""
        collector.begin_batch(batch)
        collector.record(batch, TestReport(kind="started", test="F.T1"))
        collector.record(
            batch,
            TestReport(kind="finished", test="F.T1", status="success", duration=1.5),
        )
        collector.record(
            batch,
            TestReport(kind="finished", test="F.T2", status="ignored"),
        )
        collector.record(
            batch,
            TestReport(kind="finished", test="F.T3", status="success"),
        )
        collector.complete_batch(batch)

        assert [t.status for t in batch.tests] == ["success", "ignored", "success"]
        assert batch.tests[0].duration == 1.5
        assert events == [
            TestComplete(
                tests=["F.T1", "F.T2", "F.T3"],
                results_path=collector.results_file.path,
            )
        ]
        assert len(read_results(collector.results_file.path)) == 3

    def test_finished_reports_are_written_immediately(
        self, collector: ResultCollector, batch: RunBatch
    ) -> None:
        """A reported outcome is in the results file before the batch ends."""
        collector.begin_batch(batch)
        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="success")
        )

        outcomes = read_results(collector.results_file.path)

        assert [(o.qualified_name, o.status) for o in outcomes] == [
            ("F.T1", "success")
        ]
        assert [o.qualified_name for o in collector.outcomes] == ["F.T1"]

    def test_publishes_failures(
        self,
        collector: ResultCollector,
        batch: RunBatch,
        events: list[RunEvent],
    ) -> None:
        """Failed and errored tests publish TestFailed."""
        collector.begin_batch(batch)
        collector.record(
            batch,
            TestReport(
                kind="finished",
                test="F.T1",
                status="failure",
                message="Expected 2",
                stack_trace="trace",
            ),
        )
        collector.record(
            batch, TestReport(kind="finished", test="F.T2", status="error")
        )

        assert events == [
            TestFailed(test="F.T1", message="Expected 2", stack_trace="trace"),
            TestFailed(test="F.T2", message=None, stack_trace=None),
        ]

    def test_unreported_tests_are_not_runnable(
        self, collector: ResultCollector, batch: RunBatch
    ) -> None:
        """Tests without a result when the batch completes are not runnable."""
        collector.begin_batch(batch)
        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="success")
        )

        collector.complete_batch(batch)

        assert [t.status for t in batch.tests] == [
            "success",
            "not_runnable",
            "not_runnable",
        ]
        assert batch.tests[1].message == "No result was received from the host"

    def test_first_terminal_status_wins(
        self, collector: ResultCollector, batch: RunBatch, events: list[RunEvent]
    ) -> None:
        """A later report never overwrites an earlier terminal status."""
        collector.cancel([batch.tests[0]])

        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="failure")
        )

        assert batch.tests[0].status == "cancelled"
        assert events == []

    def test_ignores_unknown_tests(
        self, collector: ResultCollector, batch: RunBatch
    ) -> None:
        """Reports for tests outside the batch are ignored."""
        collector.record(
            batch, TestReport(kind="finished", test="Other.Test", status="failure")
        )

        assert all(t.status == "none" for t in batch.tests)

    def test_timeout_marks_in_flight_test(
        self,
        collector: ResultCollector,
        batch: RunBatch,
        events: list[RunEvent],
    ) -> None:
        """The started test times out and the rest of the batch is not run."""
        collector.begin_batch(batch)
        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="success")
        )
        collector.record(batch, TestReport(kind="started", test="F.T2"))

        collector.time_out_batch(batch, 5.0)

        assert [t.status for t in batch.tests] == [
            "success",
            "timed_out",
            "not_runnable",
        ]
        assert batch.tests[1].duration == 5.0
        assert events == [TestTimedOut(test="F.T2")]

    def test_timeout_without_started_test(
        self,
        collector: ResultCollector,
        batch: RunBatch,
        events: list[RunEvent],
    ) -> None:
        """The first pending test times out when the host never started one."""
        collector.begin_batch(batch)

        collector.time_out_batch(batch, 5.0)

        assert [t.status for t in batch.tests] == [
            "timed_out",
            "not_runnable",
            "not_runnable",
        ]
        assert events == [TestTimedOut(test="F.T1")]

    def test_has_unstarted(self, collector: ResultCollector, batch: RunBatch) -> None:
        """Tracks whether the host has yet to start some tests."""
        collector.begin_batch(batch)
        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="success")
        )
        collector.record(batch, TestReport(kind="started", test="F.T2"))

        assert collector.has_unstarted(batch)

        collector.record(batch, TestReport(kind="started", test="F.T3"))

        assert not collector.has_unstarted(batch)

    def test_cancel_batch_cancels_pending_tests(
        self, collector: ResultCollector, batch: RunBatch
    ) -> None:
        """Cancelling a batch keeps finished results."""
        collector.begin_batch(batch)
        collector.record(
            batch, TestReport(kind="finished", test="F.T1", status="failure")
        )

        collector.cancel_batch(batch)

        assert [t.status for t in batch.tests] == [
            "failure",
            "cancelled",
            "cancelled",
        ]

    def test_abandon_batch(self, collector: ResultCollector, batch: RunBatch) -> None:
        """Abandoned tests are not runnable with the given reason."""
        collector.abandon_batch(batch, "Host crashed")

        assert all(t.status == "not_runnable" for t in batch.tests)
        assert all(t.message == "Host crashed" for t in batch.tests)
        assert len(collector.outcomes) == 3

    def test_reset_clears_previous_results(
        self, collector: ResultCollector, batch: RunBatch
    ) -> None:
        """Resetting forgets the outcome of an earlier run."""
        collector.abandon_batch(batch, "Host crashed")

        collector.reset(batch.tests)

        assert all(t.status == "none" for t in batch.tests)
        assert all(t.message is None for t in batch.tests)
