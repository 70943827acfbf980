"""
Shared memory tools - let agents read and write a SharedMemoryStore.

The tools are bound to an explicit store instance, so a parent agent and
the subagents registered against the same store see each other's writes.
"""

import json
from typing import Any

from ..memory import SharedMemoryStore
from .base import Tool, ToolCallContext, ToolParameter, ToolResult


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def create_shared_memory_tools(store: SharedMemoryStore) -> list[Tool]:
    """Create memory_get / memory_set / memory_delete / memory_list bound to ``store``."""

    async def memory_get(context: ToolCallContext, key: str) -> ToolResult:
        """Read a value from shared memory."""
        if key not in store:
            return ToolResult.text(f"No value stored for '{key}'.", details={"found": False})
        value = store.get(key)
        return ToolResult.text(_render(value), details={"found": True})

    async def memory_set(context: ToolCallContext, key: str, value: str) -> ToolResult:
        """Write a value to shared memory."""
        store.set(key, value)
        return ToolResult.text(f"Stored '{key}'.")

    async def memory_delete(context: ToolCallContext, key: str) -> ToolResult:
        """Remove a key from shared memory."""
        if store.delete(key):
            return ToolResult.text(f"Deleted '{key}'.")
        return ToolResult.text(f"No value stored for '{key}'.")

    async def memory_list(context: ToolCallContext, prefix: str = "") -> ToolResult:
        """List keys in shared memory."""
        keys = sorted(k for k in store.keys() if k.startswith(prefix))
        if not keys:
            return ToolResult.text("Shared memory is empty.", details={"keys": []})
        return ToolResult.text("\n".join(f"- {k}" for k in keys), details={"keys": keys})

    key_param = ToolParameter(
        name="key",
        param_type="string",
        description="Memory key",
        required=True,
    )

    return [
        Tool(
            name="memory_get",
            label="Read shared memory",
            description="Read a value from the memory shared with other agents.",
            parameters=[key_param],
            handler=memory_get,
        ),
        Tool(
            name="memory_set",
            label="Write shared memory",
            description=(
                "Store a value in the memory shared with other agents. "
                "Overwrites any existing value for the key."
            ),
            parameters=[
                key_param,
                ToolParameter(
                    name="value",
                    param_type="string",
                    description="Value to store",
                    required=True,
                ),
            ],
            handler=memory_set,
        ),
        Tool(
            name="memory_delete",
            label="Delete shared memory",
            description="Remove a key from the memory shared with other agents.",
            parameters=[key_param],
            handler=memory_delete,
        ),
        Tool(
            name="memory_list",
            label="List shared memory",
            description="List the keys currently stored in shared memory.",
            parameters=[
                ToolParameter(
                    name="prefix",
                    param_type="string",
                    description="Only list keys starting with this prefix",
                    required=False,
                ),
            ],
            handler=memory_list,
        ),
    ]
