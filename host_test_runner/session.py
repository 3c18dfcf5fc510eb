"""Save and load run configurations and the list of recently used files."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from host_test_runner.models.session import SessionConfig

log = logging.getLogger(__name__)

MAX_RECENT_FILES = 3


async def load_session(session_path: Path) -> SessionConfig:
    """Load and validate a saved session.

    Relative paths in the session are resolved against the session file's
    directory.

    Raises:
        FileNotFoundError: If the session file doesn't exist
        ValueError: If the file is empty, not valid YAML or fails validation

    """
    if not session_path.is_file():
        raise FileNotFoundError(f"Session file not found: {session_path}")

    content = await asyncio.to_thread(session_path.read_text, encoding="utf-8")

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {session_path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty session file: {session_path}")
    if not isinstance(data, dict):
        raise ValueError(f"Invalid session schema in {session_path}: not a mapping")

    base = session_path.parent
    for key in (
        "catalog_path",
        "working_directory",
        "results_path",
        "journal_sample",
    ):
        if data.get(key) is not None:
            data[key] = base / data[key]

    try:
        return SessionConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid session schema in {session_path}: {e}") from e


async def save_session(session: SessionConfig, session_path: Path) -> None:
    """Write a session so it can be reopened with load_session."""
    data = session.model_dump(mode="json")
    content = yaml.safe_dump(data, sort_keys=False)
    session_path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(session_path.write_text, content, encoding="utf-8")
    log.info("Saved session to %s", session_path)


@dataclass(kw_only=True)
class SettingsStore:
    """User settings persisted between invocations."""

    path: Path
    recent_files: list[Path] = field(default_factory=list)

    def load(self) -> None:
        """Read settings from disk; missing or unreadable files give defaults."""
        if not self.path.is_file():
            self.recent_files = []
            return
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            log.warning("Ignoring unreadable settings file %s: %s", self.path, e)
            data = {}
        if not isinstance(data, dict):
            data = {}
        recent: Sequence[str] = data.get("recent_files", [])
        self.recent_files = [Path(p) for p in recent][:MAX_RECENT_FILES]

    def save(self) -> None:
        """Write settings to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"recent_files": [str(p) for p in self.recent_files]}
        self.path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")

    def remember(self, session_path: Path) -> None:
        """Put a session file at the top of the recent files and save."""
        recent = [session_path]
        recent.extend(p for p in self.recent_files if p != session_path)
        self.recent_files = recent[:MAX_RECENT_FILES]
        self.save()
