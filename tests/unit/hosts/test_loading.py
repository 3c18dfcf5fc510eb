"""Tests for host loading module."""

import pytest

from host_test_runner.hosts.loading import HostNotFoundError, load_host_manifest
from host_test_runner.hosts.process import process_manifest


def test_load_host_manifest_returns_manifest() -> None:
    """Loads host manifest by key."""
    manifest = load_host_manifest("process")

    assert manifest is process_manifest


def test_load_host_manifest_raises_for_unknown_host() -> None:
    """Raises HostNotFoundError for unknown host key."""
    with pytest.raises(HostNotFoundError) as exc_info:
        load_host_manifest("unknown-host")

    assert "unknown-host" in str(exc_info.value)
    assert "Available hosts" in str(exc_info.value)
