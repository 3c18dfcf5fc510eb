"""Host supervisor that runs the host application as a local subprocess."""

import asyncio
import contextlib
import logging
import shutil
import tempfile
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from host_test_runner.hosts.base import HostPoll, HostSupervisor
from host_test_runner.hosts.process.config import ProcessHostConfig
from host_test_runner.hosts.process.models import (
    BatchCompleteEvent,
    FinishedEvent,
    Journal,
    JournalTest,
    StartedEvent,
    channel_event_adapter,
)
from host_test_runner.models.catalog import RunBatch
from host_test_runner.models.result import TestReport
from host_test_runner.models.session import SessionConfig

log = logging.getLogger(__name__)

CHANNEL_PREFIX = "host-test-runner-"


@dataclass(kw_only=True, eq=False)
class HostProcess:
    """A launched host application."""

    process: asyncio.subprocess.Process = field(repr=False)
    host_path: Path
    working_directory: Path

    @property
    def alive(self) -> bool:
        """Whether the process is still running."""
        return self.process.returncode is None


@dataclass(kw_only=True)
class BatchState:
    """State of a dispatched batch, passed from dispatch to poll."""

    batch: RunBatch
    host: HostProcess
    channel_path: Path
    offset: int = 0


def build_journal(
    batch: RunBatch, channel_path: Path, session: SessionConfig
) -> Journal:
    """Describe a batch for the host."""
    return Journal(
        batch=batch.index,
        channel=str(channel_path),
        results=str(session.results_path) if session.results_path else None,
        model=str(batch.model_path) if batch.model_path else None,
        working_directory=str(batch.working_directory),
        resolution_directories=[
            str(path) for path in session.additional_resolution_directories
        ],
        debug=session.debug,
        tests=[
            JournalTest(
                name=test.name,
                fixture=test.fixture,
                category=test.category,
                assembly=str(test.assembly_path),
            )
            for test in batch.tests
        ],
    )


def read_new_lines(path: Path, offset: int) -> tuple[Sequence[str], int]:
    """Read complete lines appended to a file since ``offset``.

    Returns:
        The new lines and the offset to continue from

    """
    with path.open("rb") as fh:
        fh.seek(offset)
        data = fh.read()
    end = data.rfind(b"\n")
    if end < 0:
        return [], offset
    chunk = data[: end + 1]
    lines: list[str] = []
    for raw in chunk.splitlines():
        if not raw.strip():
            continue
        try:
            lines.append(raw.decode("utf-8"))
        except UnicodeDecodeError as e:
            log.warning("Ignoring undecodable report in %s: %s", path, e)
    return lines, offset + len(chunk)


def cleanup_channels(directory: Path | None = None) -> int:
    """Remove channel directories left behind by runs that did not finish.

    Args:
        directory: Directory channels are created in (defaults to the system
            temporary directory)

    Returns:
        Number of removed channel directories

    """
    root = directory if directory is not None else Path(tempfile.gettempdir())
    if not root.is_dir():
        return 0
    removed = 0
    for path in root.glob(f"{CHANNEL_PREFIX}*"):
        if path.is_dir():
            shutil.rmtree(path)
            removed += 1
    log.info("Removed %d stale channel directory(ies) from %s", removed, root)
    return removed


@dataclass(kw_only=True)
class ProcessHostSupervisor(HostSupervisor[BatchState]):
    """Runs batches by launching the host with a journal per batch.

    The host reports progress by appending JSON lines to a per-batch channel
    file. In continuous mode a live host is fed further journals through its
    standard input instead of being relaunched.
    """

    config: ProcessHostConfig
    session: SessionConfig
    _channel_dir: Path | None = field(default=None, init=False)
    _host: HostProcess | None = field(default=None, init=False, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: ProcessHostConfig, session: SessionConfig
    ) -> AsyncGenerator["ProcessHostSupervisor", None]:
        """Create supervisor that always releases its host and channel."""
        supervisor = cls(config=config, session=session)
        try:
            yield supervisor
        finally:
            await supervisor.end_server()

    @property
    def poll_interval(self) -> float:  # type: ignore[override]
        """Seconds between reads of the channel file."""
        return self.config.poll_interval

    async def start_server(self) -> None:
        """Create the channel directory hosts report into."""
        if self._channel_dir is not None:
            return
        if self.config.channel_dir is not None:
            self.config.channel_dir.mkdir(parents=True, exist_ok=True)
        self._channel_dir = Path(
            tempfile.mkdtemp(prefix=CHANNEL_PREFIX, dir=self.config.channel_dir)
        )
        log.info("Listening for host reports in %s", self._channel_dir)

    async def end_server(self) -> None:
        """Stop the live host and remove the channel directory."""
        await self._stop_host()
        if self._channel_dir is None:
            return
        channel_dir, self._channel_dir = self._channel_dir, None
        await asyncio.to_thread(shutil.rmtree, channel_dir, ignore_errors=True)
        log.info("Closed host report channel %s", channel_dir)

    def setup_tests(self, batches: Sequence[RunBatch]) -> bool:
        """Check there is something to run and a host to run it in."""
        if not batches:
            log.error("There are no batches to run")
            return False

        host_path = self.session.host_path
        if host_path is None:
            log.error("No host application has been selected")
            return False
        if shutil.which(str(host_path)) is None:
            log.error("Host application %s could not be found", host_path)
            return False

        return True

    async def dispatch_batch(self, batch: RunBatch) -> BatchState:
        """Write the batch journal and hand it to a (possibly running) host."""
        if self._channel_dir is None:
            raise RuntimeError("start_server must be called before dispatching")

        stem = f"batch-{batch.index:04d}"
        channel_path = self._channel_dir / f"{stem}.jsonl"
        channel_path.touch()
        journal_path = self._channel_dir / f"{stem}.json"
        journal = build_journal(batch, channel_path, self.session)
        journal_path.write_text(journal.model_dump_json(indent=2), encoding="utf-8")

        host = self._host
        if host is not None and self._can_reuse(host, batch):
            log.info(
                "Sending batch %d to running host (pid=%d)",
                batch.index,
                host.process.pid,
            )
            stdin = host.process.stdin
            if stdin is None:
                raise RuntimeError(f"Host (pid={host.process.pid}) has no input")
            stdin.write(f"{journal_path}\n".encode())
            await stdin.drain()
        else:
            await self._stop_host()
            host = await self._launch(batch, journal_path)
            self._host = host

        return BatchState(batch=batch, host=host, channel_path=channel_path)

    async def poll_status(self, dispatch_state: BatchState) -> HostPoll:
        """Read reports appended to the batch channel since the last poll."""
        # Liveness is sampled first so a host that exited has flushed
        # everything it will ever write before the channel is read.
        alive = dispatch_state.host.alive
        lines, dispatch_state.offset = await asyncio.to_thread(
            read_new_lines, dispatch_state.channel_path, dispatch_state.offset
        )

        reports: list[TestReport] = []
        complete = False
        for line in lines:
            try:
                event = channel_event_adapter.validate_json(line)
            except ValidationError as e:
                log.warning(
                    "Ignoring malformed report in %s: %s",
                    dispatch_state.channel_path,
                    e,
                )
                continue

            if isinstance(event, StartedEvent):
                reports.append(TestReport(kind="started", test=event.test))
            elif isinstance(event, FinishedEvent):
                reports.append(
                    TestReport(
                        kind="finished",
                        test=event.test,
                        status=event.status,
                        message=event.message,
                        stack_trace=event.stack_trace,
                        duration=event.duration,
                    )
                )
            elif isinstance(event, BatchCompleteEvent):
                complete = True

        return HostPoll(reports=reports, complete=complete, alive=alive)

    async def finish_batch(self, dispatch_state: BatchState) -> None:
        """Stop the host after its batch unless it is kept for the next one."""
        if not self.session.continuous:
            await self._stop_host()

    async def abort_batch(self, dispatch_state: BatchState) -> None:
        """Kill the host running the batch so it is never reused."""
        if self._host is dispatch_state.host:
            self._host = None
        log.warning(
            "Terminating host (pid=%d) running batch %d",
            dispatch_state.host.process.pid,
            dispatch_state.batch.index,
        )
        await self._terminate(dispatch_state.host.process)

    def _can_reuse(self, host: HostProcess, batch: RunBatch) -> bool:
        return (
            self.session.continuous
            and host.alive
            and host.process.stdin is not None
            and host.host_path == batch.host_path
            and host.working_directory == batch.working_directory
        )

    async def _launch(self, batch: RunBatch, journal_path: Path) -> HostProcess:
        if batch.host_path is None:
            raise FileNotFoundError("No host application has been selected")

        args = [*self.config.host_args, "--journal", str(journal_path)]
        if self.session.continuous:
            args.append("--continuous")

        process = await asyncio.create_subprocess_exec(
            str(batch.host_path),
            *args,
            cwd=batch.working_directory,
            stdin=(
                asyncio.subprocess.PIPE
                if self.session.continuous
                else asyncio.subprocess.DEVNULL
            ),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        log.info(
            "Launched host %s (pid=%d) for batch %d",
            batch.host_path,
            process.pid,
            batch.index,
        )
        return HostProcess(
            process=process,
            host_path=batch.host_path,
            working_directory=batch.working_directory,
        )

    async def _stop_host(self) -> None:
        host, self._host = self._host, None
        if host is None or not host.alive:
            return

        if host.process.stdin is not None:
            host.process.stdin.close()
        try:
            await asyncio.wait_for(host.process.wait(), self.config.exit_grace_period)
        except TimeoutError:
            log.warning(
                "Host (pid=%d) did not exit within %.1fs",
                host.process.pid,
                self.config.exit_grace_period,
            )
            await self._terminate(host.process)
        else:
            log.info(
                "Host (pid=%d) exited with code %s",
                host.process.pid,
                host.process.returncode,
            )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), self.config.exit_grace_period)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
