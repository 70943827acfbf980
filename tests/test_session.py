"""
Tests for the session tree, its stores and the recorder.
"""

import json

import pytest
import pytest_asyncio

from agent_runtime.errors import ConfigurationError, SessionFormatError, SessionIntegrityError
from agent_runtime.messages import Message
from agent_runtime.session import (
    CURRENT_VERSION,
    InMemorySessionStore,
    JsonlSessionStore,
    SessionEntry,
    SessionRecorder,
    SessionTree,
    SqlSessionStore,
    create_session_store,
    init_database,
    tree_from_dict,
    tree_to_dict,
)


def build_tree() -> SessionTree:
    """root -> a -> b, with a second branch root -> a -> c."""
    return SessionTree([
        SessionEntry.for_message(Message.user("hi"), id="root"),
        SessionEntry.for_message(Message.assistant("hello"), parent_id="root", id="a"),
        SessionEntry.for_message(Message.user("first branch"), parent_id="a", id="b"),
        SessionEntry.for_message(Message.user("second branch"), parent_id="a", id="c"),
    ])


def test_tree_navigation():
    """Test roots, leaves, branch points and children."""
    tree = build_tree()

    assert [e.id for e in tree.roots()] == ["root"]
    assert [e.id for e in tree.leaves()] == ["b", "c"]
    assert [e.id for e in tree.branch_points()] == ["a"]
    assert [e.id for e in tree.children("a")] == ["b", "c"]
    assert tree.latest_leaf().id == "c"
    assert "b" in tree
    assert len(tree) == 4


def test_tree_messages_for_branch():
    """Test reconstructing each branch's conversation."""
    tree = build_tree()

    assert [m.text for m in tree.messages_for("b")] == ["hi", "hello", "first branch"]
    assert [m.text for m in tree.messages_for("c")] == ["hi", "hello", "second branch"]
    assert [e.id for e in tree.path_to_root("c")] == ["root", "a", "c"]


def test_tree_skips_markers_in_messages():
    """Test that marker entries stay out of the reconstructed conversation."""
    tree = build_tree()
    tree.add(SessionEntry.marker("model_change", {"model": "x"}, parent_id="b", id="m"))
    tree.add(SessionEntry.for_message(Message.assistant("ok"), parent_id="m", id="d"))

    assert [m.text for m in tree.messages_for("d")] == ["hi", "hello", "first branch", "ok"]


def test_tree_integrity_errors():
    """Test rejected appends."""
    tree = build_tree()

    with pytest.raises(SessionIntegrityError):
        tree.add(SessionEntry.for_message(Message.user("x"), id="a"))
    with pytest.raises(SessionIntegrityError):
        tree.add(SessionEntry.for_message(Message.user("x"), parent_id="missing", id="z"))
    with pytest.raises(SessionIntegrityError):
        tree.add(SessionEntry.for_message(Message.user("x")))
    with pytest.raises(SessionIntegrityError):
        tree.path_to_root("missing")
    with pytest.raises(ValueError):
        SessionEntry.marker("message")
    with pytest.raises(ValueError):
        SessionEntry.marker("session")


def test_tree_document_round_trip():
    """Test the JSON document form of a tree."""
    tree = build_tree()
    data = tree_to_dict(tree)

    assert data["version"] == CURRENT_VERSION
    assert data["entries"][1]["parentId"] == "root"
    assert data["entries"][1]["role"] == "assistant"
    assert "message" not in data["entries"][1]

    restored = tree_from_dict(json.loads(json.dumps(data)))
    assert restored.entries == tree.entries


def test_tree_from_legacy_document():
    """Test migrating a version 0 document with nested messages."""
    data = {
        "entries": [
            {"id": "1", "message": {"role": "user", "content": "hi"}},
            {"id": "2", "parentId": "1", "message": {"role": "assistant", "content": [{"type": "text", "text": "yo"}]}},
        ],
    }

    tree = tree_from_dict(data)

    assert tree.version == CURRENT_VERSION
    assert [e.type for e in tree.entries] == ["message", "message"]
    assert [m.text for m in tree.messages_for("2")] == ["hi", "yo"]


def test_tree_from_newer_document_fails():
    """Test that documents from a newer version are rejected."""
    with pytest.raises(SessionFormatError):
        tree_from_dict({"version": CURRENT_VERSION + 1, "entries": []})


@pytest.mark.asyncio
async def test_in_memory_store_assigns_ids():
    """Test appends to the in-memory store."""
    store = InMemorySessionStore()
    first = await store.append(SessionEntry.for_message(Message.user("hi")))
    second = await store.append(SessionEntry.for_message(Message.assistant("yo"), parent_id=first.id))

    assert first.id
    tree = await store.load()
    assert [m.text for m in tree.messages_for(second.id)] == ["hi", "yo"]

    # loaded trees are snapshots
    tree.add(SessionEntry.for_message(Message.user("local"), id="local"))
    assert "local" not in await store.load()

    with pytest.raises(SessionIntegrityError):
        await store.append(SessionEntry.for_message(Message.user("x"), parent_id="missing"))


@pytest.mark.asyncio
async def test_jsonl_store_writes_header_and_reloads(tmp_path):
    """Test the JSON lines layout and reloading from disk."""
    path = tmp_path / "sessions" / "abc.jsonl"
    store = JsonlSessionStore(path)

    assert len(await store.load()) == 0
    assert not path.exists()

    first = await store.append(SessionEntry.for_message(Message.user("hi")))
    await store.append(SessionEntry.for_message(Message.assistant("yo"), parent_id=first.id))

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert lines[0]["type"] == "session"
    assert lines[0]["version"] == CURRENT_VERSION
    assert lines[0]["id"] == "abc"
    assert [line["type"] for line in lines[1:]] == ["message", "message"]
    assert lines[2]["parentId"] == first.id

    reloaded = await JsonlSessionStore(path).load()
    assert [m.text for m in reloaded.messages_for(lines[2]["id"])] == ["hi", "yo"]


@pytest.mark.asyncio
async def test_jsonl_store_reads_only_first_line_as_header(tmp_path):
    """Test that a later entry typed like the header survives a reload with its children."""
    path = tmp_path / "s.jsonl"
    store = JsonlSessionStore(path)
    first = await store.append(SessionEntry.for_message(Message.user("hi")))
    resumed = await store.append(
        SessionEntry(id="resumed", parent_id=first.id, type="session", metadata={"note": "resumed"})
    )
    last = await store.append(SessionEntry.for_message(Message.assistant("yo"), parent_id=resumed.id))

    tree = await JsonlSessionStore(path).load()

    assert [e.id for e in tree.entries] == [first.id, "resumed", last.id]
    assert tree.get("resumed").metadata == {"note": "resumed"}
    assert [m.text for m in tree.messages_for(last.id)] == ["hi", "yo"]

@pytest.mark.asyncio
async def test_jsonl_store_rejects_bad_appends(tmp_path):
    """Test that integrity failures leave the file untouched."""
    path = tmp_path / "s.jsonl"
    store = JsonlSessionStore(path)
    await store.append(SessionEntry.for_message(Message.user("hi"), id="one"))
    before = path.read_text()

    with pytest.raises(SessionIntegrityError):
        await store.append(SessionEntry.for_message(Message.user("again"), id="one"))

    assert path.read_text() == before


@pytest.mark.asyncio
async def test_jsonl_store_migrates_legacy_file(tmp_path):
    """Test loading a version 0 file."""
    path = tmp_path / "old.jsonl"
    path.write_text(
        json.dumps({"type": "session", "version": 0, "id": "old"}) + "\n"
        + json.dumps({"id": "1", "message": {"role": "user", "content": "hi"}}) + "\n"
        + json.dumps({"id": "2", "parentId": "1", "message": {"role": "assistant", "content": "yo"}}) + "\n"
    )

    tree = await JsonlSessionStore(path).load()

    assert [m.text for m in tree.messages_for("2")] == ["hi", "yo"]


@pytest.mark.asyncio
async def test_jsonl_store_format_errors(tmp_path):
    """Test malformed and too-new files."""
    broken = tmp_path / "broken.jsonl"
    broken.write_text("{not json\n")
    with pytest.raises(SessionFormatError):
        await JsonlSessionStore(broken).load()

    newer = tmp_path / "newer.jsonl"
    newer.write_text(json.dumps({"type": "session", "version": CURRENT_VERSION + 1}) + "\n")
    with pytest.raises(SessionFormatError):
        await JsonlSessionStore(newer).load()


@pytest.mark.asyncio
async def test_sql_store(tmp_path):
    """Test the SQL store on SQLite."""
    session_maker = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    store = SqlSessionStore(session_maker, "s1")
    other = SqlSessionStore(session_maker, "s2")

    first = await store.append(SessionEntry.for_message(Message.user("hi")))
    marker = await store.append(SessionEntry.marker("label", {"name": "start"}, parent_id=first.id))
    last = await store.append(SessionEntry.for_message(Message.assistant("yo"), parent_id=marker.id))
    await other.append(SessionEntry.for_message(Message.user("unrelated")))

    tree = await store.load()

    assert [e.id for e in tree.entries] == [first.id, marker.id, last.id]
    assert tree.get(marker.id).metadata == {"name": "start"}
    assert [m.text for m in tree.messages_for(last.id)] == ["hi", "yo"]
    assert tree.get(first.id).created_at.tzinfo is not None

    with pytest.raises(SessionIntegrityError):
        await store.append(SessionEntry.for_message(Message.user("x"), id=first.id))
    with pytest.raises(SessionIntegrityError):
        await store.append(SessionEntry.for_message(Message.user("x"), parent_id="missing"))


@pytest.mark.asyncio
async def test_recorder_records_and_branches():
    """Test recording a chain and branching from an earlier entry."""
    store = InMemorySessionStore()
    recorder = SessionRecorder(store)

    root = await recorder.record(Message.user("hi"))
    reply = await recorder.record(Message.assistant("hello"))
    await recorder.record(Message.user("first"))

    recorder.checkout(reply.id)
    branch = await recorder.record(Message.user("second"))

    tree = await store.load()
    assert reply.parent_id == root.id
    assert branch.parent_id == reply.id
    assert [e.id for e in tree.branch_points()] == [reply.id]


@pytest.mark.asyncio
async def test_recorder_mark_and_restore():
    """Test markers and restoring from the latest leaf."""
    store = InMemorySessionStore()
    recorder = SessionRecorder(store)
    await recorder.record(Message.user("hi"))
    marker = await recorder.mark("compaction", {"summary": "short"})
    await recorder.record(Message.assistant("yo"))

    assert marker.metadata == {"summary": "short"}

    restored = SessionRecorder(store)
    messages = await restored.restore()
    assert [m.text for m in messages] == ["hi", "yo"]
    assert restored.leaf_id == recorder.leaf_id

    assert await SessionRecorder(InMemorySessionStore()).restore() == []


@pytest.mark.asyncio
async def test_create_session_store(settings, tmp_path):
    """Test backend selection from settings."""
    memory = await create_session_store(settings)
    assert isinstance(memory, InMemorySessionStore)

    jsonl = await create_session_store(
        settings.model_copy(update={"session_backend": "jsonl", "session_dir": str(tmp_path)}),
        session_id="abc",
    )
    assert isinstance(jsonl, JsonlSessionStore)
    assert jsonl.path == tmp_path / "abc.jsonl"

    sql = await create_session_store(
        settings.model_copy(update={
            "session_backend": "sql",
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}",
        }),
        session_id="abc",
    )
    assert isinstance(sql, SqlSessionStore)
    assert sql.session_id == "abc"


@pytest.mark.asyncio
async def test_recorder_rejects_reserved_marker_types():
    """Test that markers cannot take the message or header type."""
    recorder = SessionRecorder(InMemorySessionStore())

    for reserved in ("message", "session"):
        with pytest.raises(ValueError):
            await recorder.mark(reserved)

    assert len(await recorder.store.load()) == 0


@pytest.mark.asyncio
async def test_create_session_store_unknown_backend(settings):
    """Test that an unknown backend is a configuration error."""
    with pytest.raises(ConfigurationError, match="Unknown session backend: 'redis'"):
        await create_session_store(settings.model_copy(update={"session_backend": "redis"}))


@pytest_asyncio.fixture(params=["memory", "jsonl", "sql"])
async def fresh_store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    if request.param == "jsonl":
        return JsonlSessionStore(tmp_path / "fresh.jsonl")
    session_maker = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}")
    return SqlSessionStore(session_maker, "fresh")


@pytest.mark.asyncio
async def test_fresh_store_loads_empty_current_tree(fresh_store):
    """Test that every backend starts out as an empty current-version tree."""
    for _ in range(2):
        tree = await fresh_store.load()

        assert tree.version == CURRENT_VERSION
        assert tree.entries == []
