"""Export per-test journal files rendered from a sample journal."""

import logging
import re
from collections import Counter
from collections.abc import Mapping, Sequence
from pathlib import Path
from string import Template

from host_test_runner.models.catalog import Catalog, TestNode
from host_test_runner.models.session import SessionConfig

log = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class ExportRejectedError(Exception):
    """Raised when journals cannot be exported with the current settings."""


def journal_values(test: TestNode, session: SessionConfig) -> Mapping[str, str]:
    """Placeholder values available to journal samples."""
    return {
        "test_name": test.name,
        "fixture_name": test.fixture,
        "category": test.category,
        "qualified_name": test.qualified_name,
        "assembly_path": str(test.assembly_path),
        "model_path": str(test.model_path) if test.model_path else "",
        "results_path": str(session.results_path) if session.results_path else "",
        "working_directory": str(session.working_directory),
        "debug": "True" if session.debug else "False",
    }


def journal_file_names(tests: Sequence[TestNode]) -> list[str]:
    """File name of each test's journal.

    Names are qualified test names; the assembly name is prepended when the
    same qualified name is exported from more than one assembly.
    """
    seen = Counter(test.qualified_name for test in tests)
    names: list[str] = []
    for test in tests:
        name = test.qualified_name
        if seen[name] > 1:
            name = f"{test.assembly_path.stem}.{name}"
        names.append(f"{_UNSAFE_CHARS.sub('_', name)}.txt")
    return names


def export_journals(
    catalog: Catalog, session: SessionConfig, export_folder: Path
) -> Sequence[Path]:
    """Write one journal per runnable test, rendered from the sample.

    Placeholders use ``string.Template`` syntax, e.g. ``$model_path``.
    Unknown placeholders are left untouched.

    Returns:
        Paths of the written journals

    Raises:
        ExportRejectedError: If the settings or selection do not allow export;
            raised before any file is written

    """
    if session.continuous or session.group_by_model:
        raise ExportRejectedError(
            "Journals cannot be exported in continuous or group-by-model mode"
        )

    sample = session.journal_sample
    if sample is None or not sample.is_file():
        raise ExportRejectedError("A journal sample file must be set")

    tests = [
        test
        for test in catalog.walk(session.grouping)
        if test.should_run is True and test.model_exists
    ]
    if not tests:
        raise ExportRejectedError("There are no runnable tests to export")

    file_names = journal_file_names(tests)
    duplicates = sorted(
        name for name, count in Counter(file_names).items() if count > 1
    )
    if duplicates:
        raise ExportRejectedError(
            f"Several tests would share a journal: {', '.join(duplicates)}"
        )

    template = Template(sample.read_text(encoding="utf-8"))
    export_folder.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for test, file_name in zip(tests, file_names, strict=True):
        journal_path = export_folder / file_name
        journal_path.write_text(
            template.safe_substitute(journal_values(test, session)),
            encoding="utf-8",
        )
        written.append(journal_path)

    log.info("Exported %d journal(s) to %s", len(written), export_folder)
    return written
