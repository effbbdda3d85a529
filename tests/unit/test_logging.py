"""Unit tests — Logging context."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from dispatch_guard.logging import _inject_context_vars, bind_request_context


def _record() -> dict[str, Any]:
    return _inject_context_vars(None, "info", {"event": "x"})


@pytest.mark.unit
class TestRequestContext:
    async def test_bound_fields_injected(self) -> None:
        bind_request_context(session_id="s1", request_key="orders:list")
        assert _record() == {"event": "x", "session_id": "s1", "request_key": "orders:list"}

    async def test_explicit_kwarg_wins(self) -> None:
        bind_request_context(action_id="a1")
        record = _inject_context_vars(None, "info", {"event": "x", "action_id": "a2"})
        assert record["action_id"] == "a2"

    async def test_child_task_does_not_leak_into_parent(self) -> None:
        async def child() -> None:
            bind_request_context(action_id="replay-1")

        await asyncio.create_task(child())
        assert "action_id" not in _record()
