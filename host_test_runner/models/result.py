"""Models for test execution results and run events."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from host_test_runner.models.catalog import (
    FAILED_STATUSES,
    PASSED_STATUSES,
    SKIPPED_STATUSES,
    TestNode,
    TestStatus,
)


@dataclass(frozen=True, kw_only=True)
class TestReport:
    """Progress report for one test, as received from a host."""

    __test__ = False

    kind: Literal["started", "finished"]
    test: str
    status: TestStatus = "none"
    message: str | None = None
    stack_trace: str | None = None
    duration: float = 0.0


@dataclass(frozen=True, kw_only=True)
class TestOutcome:
    """Final outcome of a single test, as written to the results file."""

    __test__ = False

    name: str
    fixture: str
    category: str
    assembly: str
    model: str | None
    status: TestStatus
    duration: float = 0.0
    message: str | None = None
    stack_trace: str | None = None

    @property
    def qualified_name(self) -> str:
        """Name that identifies the test within its assembly."""
        return f"{self.fixture}.{self.name}"

    @classmethod
    def from_node(cls, node: TestNode) -> "TestOutcome":
        """Snapshot the current state of a catalog node."""
        return cls(
            name=node.name,
            fixture=node.fixture,
            category=node.category,
            assembly=str(node.assembly_path),
            model=str(node.model_path) if node.model_path else None,
            status=node.status,
            duration=node.duration,
            message=node.message,
            stack_trace=node.stack_trace,
        )


@dataclass(frozen=True, kw_only=True)
class RunCounts:
    """Aggregate counters of a run."""

    passed: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_tests(cls, tests: Iterable[TestNode]) -> "RunCounts":
        """Count outcomes of the given tests."""
        statuses = [test.status for test in tests]
        return cls(
            passed=sum(1 for s in statuses if s in PASSED_STATUSES),
            skipped=sum(1 for s in statuses if s in SKIPPED_STATUSES),
            failed=sum(1 for s in statuses if s in FAILED_STATUSES),
        )


@dataclass(frozen=True, kw_only=True)
class RunSummary:
    """Result of one run of the controller."""

    counts: RunCounts = field(default_factory=RunCounts)
    outcomes: Sequence[TestOutcome] = ()
    configuration_errors: Sequence[str] = ()
    run_error: str | None = None
    cancelled: bool = False
    results_path: Path | None = None

    @property
    def has_failures(self) -> bool:
        """Whether the run should be reported as unsuccessful."""
        return (
            bool(self.configuration_errors)
            or self.run_error is not None
            or self.counts.failed > 0
        )


@dataclass(frozen=True, kw_only=True)
class TestComplete:
    """A batch finished normally; its outcomes are in the results file."""

    __test__ = False

    tests: Sequence[str]
    results_path: Path


@dataclass(frozen=True, kw_only=True)
class TestFailed:
    """A single test failed."""

    __test__ = False

    test: str
    message: str | None
    stack_trace: str | None


@dataclass(frozen=True, kw_only=True)
class TestTimedOut:
    """A single test exceeded the timeout."""

    __test__ = False

    test: str


@dataclass(frozen=True, kw_only=True)
class TestRunsComplete:
    """The run is finished, successfully or not."""

    __test__ = False

    summary: RunSummary


type RunEvent = TestComplete | TestFailed | TestTimedOut | TestRunsComplete
