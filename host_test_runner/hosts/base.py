"""Abstract base class for host application supervisors."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from host_test_runner.models.catalog import RunBatch
from host_test_runner.models.result import TestReport

log = logging.getLogger(__name__)


class HostExitedError(Exception):
    """Raised when the host exits before reporting the end of a batch."""


@dataclass(frozen=True, kw_only=True)
class HostPoll:
    """What a single poll of the host's side channel returned."""

    reports: Sequence[TestReport] = ()
    complete: bool = False
    alive: bool = True


class HostSupervisor[T](ABC):
    """Abstract base for supervisors that run batches inside a host.

    Generic type T represents the dispatch state - whatever the supervisor
    needs to pass from dispatching a batch to polling it.
    """

    poll_interval: float = 0.5

    @abstractmethod
    async def start_server(self) -> None:
        """Open the side channel hosts report through. Idempotent."""

    @abstractmethod
    async def end_server(self) -> None:
        """Stop any live host and release the side channel. Idempotent."""

    @abstractmethod
    def setup_tests(self, batches: Sequence[RunBatch]) -> bool:
        """Check that the batches can be run at all.

        Returns:
            False if the run must be aborted before any host is launched

        """

    @abstractmethod
    async def dispatch_batch(self, batch: RunBatch) -> T:
        """Hand a batch to a host, launching one if needed.

        Args:
            batch: Tests to run without restarting the host

        Returns:
            Dispatch state to pass to poll_status

        """

    @abstractmethod
    async def poll_status(self, dispatch_state: T) -> HostPoll:
        """Collect progress the host reported since the previous poll.

        Args:
            dispatch_state: State returned from dispatch_batch

        """

    @abstractmethod
    async def finish_batch(self, dispatch_state: T) -> None:
        """Release per-batch resources after the host completed the batch."""

    @abstractmethod
    async def abort_batch(self, dispatch_state: T) -> None:
        """Forcibly stop the host running the batch; it is never reused."""

    async def stream_results(
        self,
        dispatch_state: T,
        timeout: float,
        poll_interval: float | None = None,
    ) -> AsyncIterator[TestReport]:
        """Yield reports until the host signals that the batch is complete.

        The deadline is per test: it restarts whenever the host reports
        progress.

        Args:
            dispatch_state: State returned from dispatch_batch
            timeout: Seconds without progress before giving up
            poll_interval: Seconds between polls (defaults to the supervisor's)

        Raises:
            TimeoutError: If no progress is reported within timeout
            HostExitedError: If the host exits before completing the batch

        """
        if poll_interval is None:
            poll_interval = self.poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            poll = await self.poll_status(dispatch_state)
            for report in poll.reports:
                yield report
            if poll.reports:
                deadline = loop.time() + timeout

            if poll.complete:
                return

            if not poll.alive:
                raise HostExitedError("Host exited before completing the batch")

            if loop.time() >= deadline:
                raise TimeoutError(f"No progress reported within {timeout} seconds")

            await asyncio.sleep(poll_interval)
