"""In-memory test catalog: assemblies, fixture/category views and tests."""

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Literal

type TestStatus = Literal[
    "none",
    "success",
    "failure",
    "error",
    "inconclusive",
    "ignored",
    "skipped",
    "cancelled",
    "timed_out",
    "not_runnable",
]

type Grouping = Literal["fixture", "category"]

PASSED_STATUSES: frozenset[TestStatus] = frozenset({"success"})
SKIPPED_STATUSES: frozenset[TestStatus] = frozenset(
    {"ignored", "skipped", "cancelled"}
)
FAILED_STATUSES: frozenset[TestStatus] = frozenset(
    {"failure", "error", "inconclusive", "timed_out", "not_runnable"}
)


@dataclass(kw_only=True, eq=False)
class TestNode:
    """A single test and its result state for the current/last run."""

    __test__ = False

    name: str
    fixture: str
    category: str
    assembly_path: Path
    model_path: Path | None = None
    should_run: bool | None = None
    status: TestStatus = "none"
    message: str | None = None
    stack_trace: str | None = None
    duration: float = 0.0

    @property
    def qualified_name(self) -> str:
        """Name that identifies the test within its assembly."""
        return f"{self.fixture}.{self.name}"

    @property
    def model_exists(self) -> bool:
        """Whether the data file the test needs is present (or none is needed)."""
        return self.model_path is None or self.model_path.exists()

    def reset(self) -> None:
        """Forget the outcome of a previous run."""
        self.status = "none"
        self.message = None
        self.stack_trace = None
        self.duration = 0.0


def _combined_selection(tests: Sequence[TestNode]) -> bool | None:
    """Collapse child selections into a tri-state: all, none or mixed."""
    if not tests:
        return False
    if all(test.should_run is True for test in tests):
        return True
    if all(not test.should_run for test in tests):
        return False
    return None


@dataclass(kw_only=True, eq=False)
class GroupNode:
    """Fixture or category view over an assembly's tests."""

    kind: Grouping
    name: str
    tests: list[TestNode] = field(default_factory=list)

    @property
    def should_run(self) -> bool | None:
        """Tri-state selection derived from the contained tests."""
        return _combined_selection(self.tests)

    @should_run.setter
    def should_run(self, value: bool) -> None:
        for test in self.tests:
            test.should_run = value


@dataclass(kw_only=True, eq=False)
class AssemblyNode:
    """A discovered assembly with its tests in discovery order."""

    path: Path
    tests: list[TestNode] = field(default_factory=list)

    @property
    def should_run(self) -> bool | None:
        """Tri-state selection derived from the contained tests."""
        return _combined_selection(self.tests)

    @should_run.setter
    def should_run(self, value: bool) -> None:
        for test in self.tests:
            test.should_run = value

    def groups(self, grouping: Grouping) -> Sequence[GroupNode]:
        """Group tests by fixture or category, in first-appearance order."""
        groups: dict[str, GroupNode] = {}
        for test in self.tests:
            key = test.fixture if grouping == "fixture" else test.category
            if key not in groups:
                groups[key] = GroupNode(kind=grouping, name=key)
            groups[key].tests.append(test)
        return list(groups.values())


@dataclass(kw_only=True, eq=False)
class Catalog:
    """Tree of assemblies → fixtures/categories → tests."""

    assemblies: list[AssemblyNode] = field(default_factory=list)

    def walk(self, grouping: Grouping) -> Iterator[TestNode]:
        """Iterate tests in the order the given view displays them."""
        for assembly in self.assemblies:
            for group in assembly.groups(grouping):
                yield from group.tests

    def all_tests(self) -> Sequence[TestNode]:
        """Return every test in discovery order."""
        return [test for assembly in self.assemblies for test in assembly.tests]

    def runnable_tests(self) -> Sequence[TestNode]:
        """Return the tests selected to run."""
        return [test for test in self.all_tests() if test.should_run is True]

    def find(self, qualified_name: str) -> TestNode | None:
        """Find a test by its qualified name."""
        for test in self.all_tests():
            if test.qualified_name == qualified_name:
                return test
        return None

    def select(self, patterns: Iterable[str]) -> int:
        """Set the selection from glob patterns over qualified names.

        Tests matching any pattern are selected, all others deselected.

        Returns:
            Number of selected tests

        """
        patterns = list(patterns)
        selected = 0
        for test in self.all_tests():
            test.should_run = any(
                fnmatchcase(test.qualified_name, pattern) for pattern in patterns
            )
            selected += test.should_run
        return selected


@dataclass(frozen=True, kw_only=True)
class RunBatch:
    """Tests executed against one host instance without restarting it."""

    index: int
    tests: Sequence[TestNode]
    model_path: Path | None
    host_path: Path | None
    working_directory: Path

    @property
    def test_names(self) -> Sequence[str]:
        """Qualified names of the batch's tests, in order."""
        return [test.qualified_name for test in self.tests]
