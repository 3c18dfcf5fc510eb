"""Shared fixtures for unit tests."""

from pathlib import Path
from typing import Protocol

import pytest

from host_test_runner.models.catalog import AssemblyNode, Catalog, TestNode


class MakeCatalogFn(Protocol):
    """Protocol for catalog creation function."""

    def __call__(self, *entries: tuple[str, str | None]) -> Catalog:
        """Create a catalog of selected tests from (name, model) pairs."""


@pytest.fixture
def make_catalog(tmp_path: Path) -> MakeCatalogFn:
    """Return a function building a one-assembly catalog of selected tests.

    Each entry is ``("Fixture.Test", model)``; the model file is created in
    ``tmp_path`` unless its name starts with ``missing``.
    """

    def _make(*entries: tuple[str, str | None]) -> Catalog:
        tests: list[TestNode] = []
        assembly_path = tmp_path / "Tests.dll"
        for qualified_name, model in entries:
            fixture, name = qualified_name.split(".")
            model_path = None
            if model:
                model_path = tmp_path / model
                if not model.startswith("missing"):
                    model_path.touch()
            tests.append(
                TestNode(
                    name=name,
                    fixture=fixture,
                    category="Smoke",
                    assembly_path=assembly_path,
                    model_path=model_path,
                    should_run=True,
                )
            )
        return Catalog(assemblies=[AssemblyNode(path=assembly_path, tests=tests)])

    return _make
