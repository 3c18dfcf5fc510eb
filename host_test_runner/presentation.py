"""Display-only projections of a catalog, computed on demand."""

from dataclasses import dataclass
from pathlib import Path

from host_test_runner.models.catalog import (
    PASSED_STATUSES,
    Catalog,
    Grouping,
    TestNode,
)


@dataclass(frozen=True, kw_only=True)
class ExpandedNodes:
    """Nodes a tree view should expand to surface problems.

    Groups and tests are keyed by their assembly path plus their name, so the
    projection stays valid when the view is rebuilt.
    """

    assemblies: frozenset[Path]
    groups: frozenset[tuple[Path, str]]
    tests: frozenset[tuple[Path, str]]


def needs_attention(test: TestNode) -> bool:
    """A selected test that did not pass or cannot run."""
    if not test.should_run:
        return False
    failed = test.status != "none" and test.status not in PASSED_STATUSES
    return failed or not test.model_exists


def expanded_nodes(catalog: Catalog, grouping: Grouping) -> ExpandedNodes:
    """Compute which nodes to expand so failing tests are visible."""
    assemblies: set[Path] = set()
    groups: set[tuple[Path, str]] = set()
    tests: set[tuple[Path, str]] = set()
    for assembly in catalog.assemblies:
        for group in assembly.groups(grouping):
            for test in group.tests:
                if needs_attention(test):
                    tests.add((assembly.path, test.qualified_name))
                    groups.add((assembly.path, group.name))
                    assemblies.add(assembly.path)
    return ExpandedNodes(
        assemblies=frozenset(assemblies),
        groups=frozenset(groups),
        tests=frozenset(tests),
    )


def selection_summary(catalog: Catalog) -> str:
    """Describe how many tests are selected, e.g. ``"3 (out of 10)"``."""
    return f"{len(catalog.runnable_tests())} (out of {len(catalog.all_tests())})"
