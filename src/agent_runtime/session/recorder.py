"""
Session recorder: tracks the current leaf of a session tree and appends
new entries beneath it.
"""

from typing import Any

import structlog

from ..messages import Message
from .store import SessionStore
from .tree import SessionEntry

logger = structlog.get_logger()


class SessionRecorder:
    """Appends messages to a store as a chain below the current leaf."""

    def __init__(self, store: SessionStore, leaf_id: str | None = None):
        self.store = store
        self._leaf_id = leaf_id

    @property
    def leaf_id(self) -> str | None:
        return self._leaf_id

    async def record(self, message: Message) -> SessionEntry:
        """Append a message as a child of the current leaf."""
        entry = await self.store.append(SessionEntry.for_message(message, parent_id=self._leaf_id))
        self._leaf_id = entry.id
        return entry

    async def mark(self, type: str, metadata: dict[str, Any] | None = None) -> SessionEntry:
        """Append a marker entry (for example session metadata)."""
        entry = await self.store.append(
            SessionEntry.marker(type, metadata, parent_id=self._leaf_id)
        )
        self._leaf_id = entry.id
        return entry

    def checkout(self, entry_id: str | None) -> None:
        """
        Move the leaf. The next recorded message becomes a child of
        ``entry_id``, creating a branch when that entry already has children.
        ``None`` starts a new root.
        """
        self._leaf_id = entry_id
        logger.debug("Session leaf moved", leaf_id=entry_id)

    async def restore(self, leaf_id: str | None = None) -> list[Message]:
        """Load the tree and return the conversation ending at the chosen leaf."""
        tree = await self.store.load()
        if leaf_id is None:
            latest = tree.latest_leaf()
            if latest is None:
                self._leaf_id = None
                return []
            leaf_id = latest.id

        messages = tree.messages_for(leaf_id)
        self._leaf_id = leaf_id
        logger.info("Session restored", leaf_id=leaf_id, messages=len(messages))
        return messages
