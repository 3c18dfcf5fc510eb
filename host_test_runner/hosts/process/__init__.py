"""Subprocess host module."""

from host_test_runner.hosts.process.config import ProcessHostConfig
from host_test_runner.hosts.process.manifest import process_manifest
from host_test_runner.hosts.process.supervisor import (
    ProcessHostSupervisor,
    cleanup_channels,
)

__all__ = [
    "ProcessHostConfig",
    "ProcessHostSupervisor",
    "cleanup_channels",
    "process_manifest",
]
