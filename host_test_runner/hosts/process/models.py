"""Pydantic models for the journal and side channel exchanged with hosts."""

from collections.abc import Sequence
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from host_test_runner.models.catalog import TestStatus


class JournalTest(BaseModel):
    """A test the host must run."""

    __test__ = False

    name: str
    fixture: str
    category: str
    assembly: str


class Journal(BaseModel):
    """Automation script describing one batch."""

    batch: int
    channel: str
    results: str | None
    model: str | None
    working_directory: str
    resolution_directories: Sequence[str]
    debug: bool
    tests: Sequence[JournalTest]


class StartedEvent(BaseModel):
    """The host started running a test."""

    event: Literal["started"]
    test: str


class FinishedEvent(BaseModel):
    """The host finished running a test."""

    event: Literal["finished"]
    test: str
    status: TestStatus
    message: str | None = None
    stack_trace: str | None = None
    duration: float = 0.0


class BatchCompleteEvent(BaseModel):
    """The host ran every test of the batch."""

    event: Literal["batch_complete"]
    batch: int | None = None


ChannelEvent = Annotated[
    StartedEvent | FinishedEvent | BatchCompleteEvent,
    Field(discriminator="event"),
]

channel_event_adapter: TypeAdapter[ChannelEvent] = TypeAdapter(ChannelEvent)
