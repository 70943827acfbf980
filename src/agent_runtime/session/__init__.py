"""
Session module: branchable conversation history and its persistence.
"""

from pathlib import Path
from uuid import uuid4

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import Settings, get_settings
from ..errors import ConfigurationError
from .recorder import SessionRecorder
from .sql import SqlSessionStore, init_database
from .store import InMemorySessionStore, JsonlSessionStore, SessionStore
from .tree import (
    CURRENT_VERSION,
    SessionEntry,
    SessionTree,
    tree_from_dict,
    tree_to_dict,
)


async def create_session_store(
    settings: Settings | None = None,
    session_id: str | None = None,
    session_maker: async_sessionmaker | None = None,
) -> SessionStore:
    """Create the session store selected by ``settings.session_backend``."""
    settings = settings or get_settings()
    session_id = session_id or str(uuid4())

    if settings.session_backend == "memory":
        return InMemorySessionStore()
    if settings.session_backend == "jsonl":
        return JsonlSessionStore(Path(settings.session_dir) / f"{session_id}.jsonl", session_id)
    if settings.session_backend == "sql":
        if session_maker is None:
            session_maker = await init_database(settings.database_url)
        return SqlSessionStore(session_maker, session_id)
    raise ConfigurationError(f"Unknown session backend: {settings.session_backend!r}")


__all__ = [
    "CURRENT_VERSION",
    "SessionEntry",
    "SessionTree",
    "tree_from_dict",
    "tree_to_dict",
    "SessionStore",
    "InMemorySessionStore",
    "JsonlSessionStore",
    "SqlSessionStore",
    "init_database",
    "SessionRecorder",
    "create_session_store",
]
