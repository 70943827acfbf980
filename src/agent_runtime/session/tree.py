"""
Session tree: a branchable, append-only log of conversation entries.

Entries form a parent-pointer list. Each entry optionally names a parent;
entries without one are roots, and two entries sharing a parent form a
branch. Walking parent links from any leaf reconstructs one conversation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from ..errors import SessionFormatError, SessionIntegrityError
from ..messages import Message, message_from_dict, message_to_dict, utcnow

CURRENT_VERSION = 1

MESSAGE_ENTRY = "message"

# type of the header line in JSONL session files
SESSION_HEADER = "session"

_MESSAGE_KEYS = ("role", "content", "model", "usage", "stopReason", "errorMessage", "timestamp")


@dataclass(frozen=True)
class SessionEntry:
    """One persisted entry: a materialized message or a lightweight marker."""

    id: str
    parent_id: str | None = None
    type: str = MESSAGE_ENTRY
    message: Message | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow, compare=False)

    @classmethod
    def for_message(cls, message: Message, parent_id: str | None = None, id: str = "") -> "SessionEntry":
        return cls(id=id, parent_id=parent_id, type=MESSAGE_ENTRY, message=message)

    @classmethod
    def marker(
        cls,
        type: str,
        metadata: dict[str, Any] | None = None,
        parent_id: str | None = None,
        id: str = "",
    ) -> "SessionEntry":
        if type in (MESSAGE_ENTRY, SESSION_HEADER):
            raise ValueError(f"Marker entries cannot use the reserved type '{type}'")
        return cls(id=id, parent_id=parent_id, type=type, metadata=dict(metadata or {}))

    @property
    def is_message(self) -> bool:
        return self.type == MESSAGE_ENTRY and self.message is not None


class SessionTree:
    """Ordered entries plus an id index and a children index."""

    def __init__(self, entries: Iterable[SessionEntry] = (), version: int = CURRENT_VERSION):
        self.version = version
        self.entries: list[SessionEntry] = []
        self._index: dict[str, SessionEntry] = {}
        self._children: dict[str | None, list[str]] = {}
        for entry in entries:
            self.add(entry)

    def add(self, entry: SessionEntry) -> None:
        """Append an entry after checking id uniqueness and parent existence."""
        if not entry.id:
            raise SessionIntegrityError("Session entry has no id")
        if entry.id in self._index:
            raise SessionIntegrityError(f"Duplicate session entry id: {entry.id}")
        if entry.parent_id is not None and entry.parent_id not in self._index:
            raise SessionIntegrityError(
                f"Entry {entry.id} references unknown parent {entry.parent_id}"
            )
        self.entries.append(entry)
        self._index[entry.id] = entry
        self._children.setdefault(entry.parent_id, []).append(entry.id)

    def copy(self) -> "SessionTree":
        return SessionTree(self.entries, version=self.version)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._index

    def get(self, entry_id: str) -> SessionEntry | None:
        return self._index.get(entry_id)

    def children(self, entry_id: str | None) -> list[SessionEntry]:
        """Direct children of an entry; ``None`` lists the roots."""
        return [self._index[i] for i in self._children.get(entry_id, [])]

    def roots(self) -> list[SessionEntry]:
        return self.children(None)

    def leaves(self) -> list[SessionEntry]:
        return [e for e in self.entries if not self._children.get(e.id)]

    def branch_points(self) -> list[SessionEntry]:
        """Entries with more than one child."""
        return [e for e in self.entries if len(self._children.get(e.id, [])) > 1]

    def latest_leaf(self) -> SessionEntry | None:
        """The leaf that was appended last, or None for an empty tree."""
        for entry in reversed(self.entries):
            if not self._children.get(entry.id):
                return entry
        return None

    def path_to_root(self, leaf_id: str) -> list[SessionEntry]:
        """Entries from the root down to ``leaf_id`` (root first)."""
        if leaf_id not in self._index:
            raise SessionIntegrityError(f"Unknown session entry: {leaf_id}")
        path = []
        current: str | None = leaf_id
        while current is not None:
            entry = self._index[current]
            path.append(entry)
            current = entry.parent_id
        path.reverse()
        return path

    def messages_for(self, leaf_id: str) -> list[Message]:
        """Reconstruct the linear conversation ending at ``leaf_id``."""
        return [e.message for e in self.path_to_root(leaf_id) if e.is_message]

    def __repr__(self) -> str:
        return f"SessionTree(version={self.version}, entries={len(self.entries)})"


# -- Serialization ---------------------------------------------------------


def _parse_datetime(value: str | None) -> datetime:
    if not value:
        return utcnow()
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def entry_to_dict(entry: SessionEntry) -> dict[str, Any]:
    """Flatten an entry into its JSON form (message fields inline)."""
    data: dict[str, Any] = {"id": entry.id}
    if entry.parent_id is not None:
        data["parentId"] = entry.parent_id
    data["type"] = entry.type
    data["createdAt"] = entry.created_at.isoformat()
    if entry.metadata:
        data["metadata"] = dict(entry.metadata)
    if entry.message is not None:
        data.update(message_to_dict(entry.message))
    return data


def migrate_entry(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a version-0 entry (nested ``message``, no ``type``)."""
    if "type" in data:
        return data
    upgraded = {k: v for k, v in data.items() if k != "message"}
    nested = data.get("message")
    if isinstance(nested, dict):
        upgraded["type"] = MESSAGE_ENTRY
        upgraded.update(nested)
    else:
        upgraded["type"] = "metadata"
    return upgraded


def entry_from_dict(data: dict[str, Any]) -> SessionEntry:
    """Rebuild an entry from its (current-version) JSON form."""
    try:
        entry_id = data["id"]
    except KeyError as e:
        raise SessionFormatError("Session entry is missing 'id'") from e

    entry_type = data.get("type", MESSAGE_ENTRY)
    message = None
    if entry_type == MESSAGE_ENTRY:
        message = message_from_dict({k: data[k] for k in _MESSAGE_KEYS if k in data})

    return SessionEntry(
        id=entry_id,
        parent_id=data.get("parentId"),
        type=entry_type,
        message=message,
        metadata=dict(data.get("metadata") or {}),
        created_at=_parse_datetime(data.get("createdAt")),
    )


def check_version(version: Any) -> int:
    if not isinstance(version, int) or version < 0:
        raise SessionFormatError(f"Invalid session version: {version!r}")
    if version > CURRENT_VERSION:
        raise SessionFormatError(
            f"Session version {version} is newer than supported version {CURRENT_VERSION}"
        )
    return version


def tree_to_dict(tree: SessionTree) -> dict[str, Any]:
    return {
        "version": tree.version,
        "entries": [entry_to_dict(e) for e in tree.entries],
    }


def tree_from_dict(data: dict[str, Any]) -> SessionTree:
    """Load a tree document, migrating older versions to the current one."""
    version = check_version(data.get("version", 0))
    raw_entries = data.get("entries", [])
    if version < CURRENT_VERSION:
        raw_entries = [migrate_entry(e) for e in raw_entries]
    return SessionTree(
        (entry_from_dict(e) for e in raw_entries),
        version=CURRENT_VERSION,
    )
