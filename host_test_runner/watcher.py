"""Reload the test catalog when its discovery output changes on disk."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from host_test_runner.catalog_loader import load_selected_catalog
from host_test_runner.controller import RunController
from host_test_runner.models.catalog import Catalog

log = logging.getLogger(__name__)

type FileSignature = tuple[int, int] | None


def file_signature(path: Path) -> FileSignature:
    """Modification time and size of a file, or None if it is missing."""
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return stat.st_mtime_ns, stat.st_size


@dataclass(kw_only=True)
class CatalogWatcher:
    """Rebuilds a controller's catalog whenever the catalog file changes.

    The catalog is only replaced while the controller is idle. A change seen
    during a run is picked up by the first poll after the run ends.
    """

    controller: RunController
    poll_interval: float = 1.0
    on_reload: Callable[[Catalog], None] | None = None
    _signature: FileSignature = field(default=None, init=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_controller(
        cls,
        controller: RunController,
        poll_interval: float = 1.0,
        on_reload: Callable[[Catalog], None] | None = None,
    ) -> AsyncGenerator["CatalogWatcher", None]:
        """Create a watcher that stops watching when the context exits."""
        watcher = cls(
            controller=controller, poll_interval=poll_interval, on_reload=on_reload
        )
        watcher.start()
        try:
            yield watcher
        finally:
            await watcher.stop()

    @property
    def path(self) -> Path:
        """The watched catalog file."""
        return self.controller.session.catalog_path

    @property
    def watching(self) -> bool:
        """Whether the file is being polled."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling; the current file contents count as seen."""
        if self.watching:
            return
        self._signature = file_signature(self.path)
        self._task = asyncio.create_task(self._watch())
        log.info("Watching %s for changes", self.path)

    async def stop(self) -> None:
        """Stop polling. Idempotent."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("Stopped watching %s", self.path)

    async def check(self) -> bool:
        """Reload the catalog if the file changed and no run is active.

        Returns:
            True if the controller got a new catalog

        """
        signature = file_signature(self.path)
        if signature == self._signature or signature is None:
            return False
        if self.controller.is_running:
            log.debug("Catalog changed during a run, reloading after it")
            return False

        try:
            catalog = await load_selected_catalog(self.controller.session)
        except (FileNotFoundError, ValueError) as e:
            log.warning("Keeping the current catalog: %s", e)
            self._signature = signature
            return False

        if self.controller.is_running:
            log.debug("A run started while reloading, reloading after it")
            return False

        self._signature = signature
        self.controller.catalog = catalog
        log.info("Reloaded catalog %s", self.path)
        if self.on_reload is not None:
            self.on_reload(catalog)
        return True

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.check()
