"""Subprocess host manifest."""

from host_test_runner.hosts.manifest import HostManifest
from host_test_runner.hosts.process.config import ProcessHostConfig
from host_test_runner.hosts.process.supervisor import ProcessHostSupervisor

process_manifest = HostManifest(
    config_cls=ProcessHostConfig,
    supervisor_factory=ProcessHostSupervisor.from_config,
)
