"""Host manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from host_test_runner.hosts.base import HostSupervisor
from host_test_runner.models.session import SessionConfig


@dataclass(frozen=True, kw_only=True)
class HostManifest[ConfigT: BaseModel]:
    """Manifest describing a host supervisor plugin.

    The manifest contains references to the configuration class and the
    supervisor factory function for lazy loading of supervisors by key.
    """

    config_cls: type[ConfigT]
    supervisor_factory: Callable[
        [ConfigT, SessionConfig], AbstractAsyncContextManager[HostSupervisor[Any]]
    ]
