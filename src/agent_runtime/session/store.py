"""
Session stores: append-only persistence for session trees.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog

from ..errors import SessionFormatError
from .tree import (
    CURRENT_VERSION,
    SESSION_HEADER,
    SessionEntry,
    SessionTree,
    check_version,
    entry_from_dict,
    entry_to_dict,
    migrate_entry,
)

logger = structlog.get_logger()


def new_entry_id() -> str:
    return str(uuid4())


def with_id(entry: SessionEntry) -> SessionEntry:
    """Return the entry, assigning a fresh id when it has none."""
    if entry.id:
        return entry
    return replace(entry, id=new_entry_id())


class SessionStore(ABC):
    """Append-only store for one session tree."""

    @abstractmethod
    async def load(self) -> SessionTree:
        """Load the tree. An empty tree is returned when nothing was stored."""
        pass

    @abstractmethod
    async def append(self, entry: SessionEntry) -> SessionEntry:
        """Validate and append one entry, returning it with its id assigned."""
        pass


class InMemorySessionStore(SessionStore):
    """Session store kept in process memory."""

    def __init__(self, initial: SessionTree | None = None):
        self._tree = initial.copy() if initial is not None else SessionTree()

    async def load(self) -> SessionTree:
        return self._tree.copy()

    async def append(self, entry: SessionEntry) -> SessionEntry:
        entry = with_id(entry)
        self._tree.add(entry)
        return entry


class JsonlSessionStore(SessionStore):
    """
    Session store backed by a JSON lines file.

    The first line is a ``{"type": "session", ...}`` header, written on the
    first append. Every following line is one entry.
    """

    def __init__(self, path: str | Path, session_id: str | None = None):
        self.path = Path(path)
        self.session_id = session_id or self.path.stem
        self._tree: SessionTree | None = None
        self._lock = asyncio.Lock()

    def _read(self) -> SessionTree:
        if not self.path.exists():
            return SessionTree()

        version = CURRENT_VERSION
        raw_entries: list[dict[str, Any]] = []
        first = True
        with self.path.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    raise SessionFormatError(
                        f"{self.path}:{line_number}: invalid JSON ({e.msg})"
                    ) from e
                if first and data.get("type") == SESSION_HEADER:
                    version = check_version(data.get("version", 0))
                else:
                    raw_entries.append(data)
                first = False

        if version < CURRENT_VERSION:
            raw_entries = [migrate_entry(e) for e in raw_entries]
        return SessionTree(entry_from_dict(e) for e in raw_entries)

    def _write_lines(self, lines: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    async def _ensure_loaded(self) -> SessionTree:
        if self._tree is None:
            self._tree = await asyncio.to_thread(self._read)
        return self._tree

    async def load(self) -> SessionTree:
        async with self._lock:
            tree = await self._ensure_loaded()
            return tree.copy()

    async def append(self, entry: SessionEntry) -> SessionEntry:
        async with self._lock:
            tree = await self._ensure_loaded()
            entry = with_id(entry)
            tree.add(entry)

            lines = []
            if not self.path.exists():
                header = {
                    "type": SESSION_HEADER,
                    "version": CURRENT_VERSION,
                    "id": self.session_id,
                    "createdAt": entry.created_at.isoformat(),
                }
                lines.append(json.dumps(header))
            lines.append(json.dumps(entry_to_dict(entry), ensure_ascii=False))

            try:
                await asyncio.to_thread(self._write_lines, lines)
            except OSError:
                # keep the cached tree in line with the file
                self._tree = None
                raise

            logger.debug("Session entry appended", path=str(self.path), entry_id=entry.id)
            return entry
