"""Partition selected tests into batches that share a host instance."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from host_test_runner.models.catalog import Catalog, Grouping, RunBatch, TestNode
from host_test_runner.models.session import SessionConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Plan:
    """Batches to execute plus the selected tests that cannot run."""

    batches: Sequence[RunBatch]
    unrunnable: Sequence[TestNode]


def validate_run_settings(session: SessionConfig) -> Sequence[str]:
    """Return the configuration problems that prevent a run."""
    problems: list[str] = []
    if session.results_path is None or not str(session.results_path).strip():
        problems.append("No output path for the results has been set")
    if session.group_by_model and not session.continuous:
        problems.append("Grouping tests by model requires continuous mode")
    return problems


def plan_batches(
    catalog: Catalog,
    *,
    grouping: Grouping,
    group_by_model: bool,
    host_path: Path | None,
    working_directory: Path,
) -> Plan:
    """Build the ordered batches covering every selected test.

    Without model grouping each test gets its own batch. With it, tests that
    need the same model are merged into one batch placed where the model
    first appears; tests that need no model stay singletons. The ordering is
    stable, so the same catalog and flags always give the same plan.
    """
    runnable: list[TestNode] = []
    unrunnable: list[TestNode] = []
    for test in catalog.walk(grouping):
        if test.should_run is not True:
            continue
        if test.model_exists:
            runnable.append(test)
        else:
            log.warning(
                "Model %s for %s does not exist", test.model_path, test.qualified_name
            )
            unrunnable.append(test)

    groups: dict[object, list[TestNode]] = {}
    for position, test in enumerate(runnable):
        key: object = position
        if group_by_model and test.model_path is not None:
            key = test.model_path.resolve()
        groups.setdefault(key, []).append(test)

    batches = [
        RunBatch(
            index=index,
            tests=tests,
            model_path=tests[0].model_path,
            host_path=host_path,
            working_directory=working_directory,
        )
        for index, tests in enumerate(groups.values())
    ]

    log.info(
        "Planned %d batch(es) for %d test(s), %d not runnable",
        len(batches),
        len(runnable),
        len(unrunnable),
    )
    return Plan(batches=batches, unrunnable=unrunnable)
