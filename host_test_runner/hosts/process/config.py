"""Configuration for the subprocess host supervisor."""

from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field


class ProcessHostConfig(BaseModel):
    """Configuration for running the host as a local subprocess."""

    # Arguments placed before the journal arguments, e.g. a script for an
    # interpreter used as host
    host_args: Sequence[str] = ()
    poll_interval: float = Field(default=0.5, gt=0)
    exit_grace_period: float = Field(default=10.0, ge=0)
    channel_dir: Path | None = None
