"""Loading of host supervisors from entry points."""

from importlib.metadata import entry_points
from typing import Any

from host_test_runner.hosts.manifest import HostManifest

ENTRY_POINT_GROUP = "host_test_runner.hosts"


class HostNotFoundError(Exception):
    """Raised when a host supervisor is not found."""


def load_host_manifest(key: str) -> HostManifest[Any]:
    """Load a host manifest by key.

    Args:
        key: The host key as registered in pyproject.toml (e.g., "process")

    Returns:
        The host manifest instance

    Raises:
        HostNotFoundError: If no host with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: HostManifest[Any] = entry.load()
            return manifest

    available = [e.name for e in entries]
    raise HostNotFoundError(f"Host '{key}' not found. Available hosts: {available}")
