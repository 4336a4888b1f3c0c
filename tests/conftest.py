"""Pytest fixtures for Opsboard tests."""

import asyncio
from collections import deque
from typing import Any, Optional

import pytest

from opsboard.errors import PersistenceError, TransportError
from opsboard.models.window import SearchFilter
from opsboard.services.gateway import CollectionGateway, Subscription


class FakeGateway(CollectionGateway):
    """In-memory gateway.

    Results are computed when a call is issued. ``hold()`` queues a gate:
    the next read waits for the gate to be set before returning, which lets
    tests control the order in which responses arrive.
    """

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple] = []
        self.read_error: Optional[TransportError] = None
        self.write_error: Optional[PersistenceError] = None
        self.subscriptions: list[Subscription] = []
        self._holds: deque = deque()
        self._write_holds: deque = deque()
        self._next_id = 0

    def seed(self, table: str, rows: list[dict[str, Any]]) -> None:
        self.tables[table] = [dict(r) for r in rows]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def hold(self) -> asyncio.Event:
        gate = asyncio.Event()
        self._holds.append(gate)
        return gate

    def hold_write(self) -> asyncio.Event:
        """Gate the next update or delete until the returned event is set."""
        gate = asyncio.Event()
        self._write_holds.append(gate)
        return gate

    def notify(self, table: str) -> None:
        for sub in self.subscriptions:
            if sub.table == table:
                sub.push()

    async def _wait_for_write(self):
        if self._write_holds:
            gate = self._write_holds.popleft()
            await gate.wait()

    async def _respond(self, result):
        if self._holds:
            gate = self._holds.popleft()
            await gate.wait()
        return result

    def _sorted(self, table, order_by, ascending):
        def key(row):
            value = row.get(order_by)
            return (value is None, value if value is not None else "")

        return sorted(self.rows(table), key=key, reverse=not ascending)

    async def fetch_all(self, table, order_by, ascending=False, columns=None):
        self.calls.append(("fetch_all", table, order_by, ascending, columns))
        if self.read_error:
            raise self.read_error
        rows = [dict(r) for r in self._sorted(table, order_by, ascending)]
        if columns:
            rows = [{c: r.get(c) for c in columns} for r in rows]
        return await self._respond(rows)

    async def fetch_one(self, table, row_id):
        self.calls.append(("fetch_one", table, row_id))
        if self.read_error:
            raise self.read_error
        for row in self.rows(table):
            if row["id"] == row_id:
                return await self._respond(dict(row))
        return await self._respond(None)

    async def fetch_page(self, table, row_filter: SearchFilter, order_by, offset, limit, ascending=False):
        self.calls.append(("fetch_page", table, row_filter, offset, limit))
        if self.read_error:
            raise self.read_error
        matching = [r for r in self._sorted(table, order_by, ascending) if row_filter.matches(r)]
        page = [dict(r) for r in matching[offset : offset + limit]]
        return await self._respond((page, len(matching)))

    async def insert(self, table, row):
        self.calls.append(("insert", table, dict(row)))
        if self.write_error:
            raise self.write_error
        self._next_id += 1
        stamp = f"2026-06-01T00:00:{self._next_id:02d}+00:00"
        created = {"id": f"new-{self._next_id}", "created_at": stamp, "updated_at": stamp, **row}
        self.rows(table).append(created)
        return dict(created)

    async def update(self, table, row_id, patch):
        self.calls.append(("update", table, row_id, dict(patch)))
        await self._wait_for_write()
        if self.write_error:
            raise self.write_error
        for row in self.rows(table):
            if row["id"] == row_id:
                row.update(patch)
                return
        raise PersistenceError(f"No row {row_id}", code="not_found")

    async def delete(self, table, row_id):
        self.calls.append(("delete", table, row_id))
        await self._wait_for_write()
        if self.write_error:
            raise self.write_error
        self.tables[table] = [r for r in self.rows(table) if r["id"] != row_id]

    def subscribe(self, table):
        sub = Subscription(table)
        self.subscriptions.append(sub)
        return sub


def make_task(task_id: str, title: str, status: str = "TODO", second: int = 0, **extra) -> dict:
    """Helper to create a task row."""
    stamp = f"2026-01-01T00:00:{second:02d}+00:00"
    return {
        "id": task_id,
        "title": title,
        "status": status,
        "priority": "medium",
        "assignee": "aurora",
        "created_at": stamp,
        "updated_at": stamp,
        **extra,
    }


def make_note(note_id: str, title: str, content: str = "", tags=(), minute: int = 0) -> dict:
    """Helper to create a note row."""
    return {
        "id": note_id,
        "title": title,
        "content": content,
        "tags": list(tags),
        "source": "manual",
        "updated_at": f"2026-01-01T00:{minute:02d}:00+00:00",
    }


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def gateway():
    """Provide an empty in-memory gateway."""
    return FakeGateway()
