"""Fixtures for integration tests."""

import sys
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, Protocol

import pytest

from host_test_runner.controller import RunController
from host_test_runner.hosts.process import ProcessHostConfig, process_manifest
from host_test_runner.models.catalog import Catalog
from host_test_runner.models.result import RunSummary
from host_test_runner.models.session import SessionConfig

FAKE_HOST = Path(__file__).parent / "fake_host.py"


class RunFn(Protocol):
    """Protocol for the function running a catalog in the fake host."""

    def __call__(self, catalog: Catalog, **session: Any) -> Awaitable[RunSummary]:
        """Run every selected test and return the summary."""


@pytest.fixture
def host_config(tmp_path: Path) -> ProcessHostConfig:
    """Config running the fake host with the current interpreter."""
    return ProcessHostConfig(
        host_args=[str(FAKE_HOST)],
        poll_interval=0.05,
        exit_grace_period=5.0,
        channel_dir=tmp_path / "channels",
    )


@pytest.fixture
def run_in_host(tmp_path: Path, host_config: ProcessHostConfig) -> RunFn:
    """Return a function running a catalog through the fake host."""

    async def _run(catalog: Catalog, **settings: Any) -> RunSummary:
        session = SessionConfig(
            catalog_path=tmp_path / "catalog.yaml",
            host_path=Path(sys.executable),
            **{"timeout": 10.0, **settings},
        )
        async with process_manifest.supervisor_factory(
            host_config, session
        ) as supervisor:
            controller = RunController(
                catalog=catalog, session=session, supervisor=supervisor
            )
            summary = await controller.run_all_tests()
        assert summary is not None
        return summary

    return _run
