"""Shared fixtures: an in-memory RemoteStore with failure / latency knobs."""

import asyncio
import itertools
import math
from datetime import datetime, timezone

import pytest

from habitsync.errors import RemoteError
from habitsync.remote import ListResult, Pagination, RemoteStore


def _matches(record: dict, filters: dict | None) -> bool:
    for key, cond in (filters or {}).items():
        value = record.get(key)
        if not isinstance(cond, dict):
            cond = {"eq": cond}
        for op, expected in cond.items():
            if op == "eq" and value != expected:
                return False
            if op == "ne" and value == expected:
                return False
            if op == "gte" and not (value is not None and value >= expected):
                return False
            if op == "gt" and not (value is not None and value > expected):
                return False
            if op == "lte" and not (value is not None and value <= expected):
                return False
            if op == "lt" and not (value is not None and value < expected):
                return False
            if op == "in" and value not in expected:
                return False
    return True


class FakeStore(RemoteStore):
    """In-memory collections.

    echo:   None | "before" | "after": push the mutation to subscribers
            before the response is returned, or right after it.
    hold(): make mutations on a collection wait until release().
    fail_next(): make the next call of an operation raise.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, dict]] = {}
        self.subscribers: dict[str, list] = {}
        self.calls: list[tuple] = []
        self.echo: str | None = None
        self.closed = False
        self._ids = itertools.count(1)
        self._gates: dict[str, asyncio.Event] = {}
        self._failures: dict[tuple[str, str], Exception] = {}

    # ── Test knobs ───────────────────────────────────────────────────────

    def seed(self, collection: str, record: dict) -> dict:
        self.records.setdefault(collection, {})[record["id"]] = dict(record)
        return record

    def fail_next(self, collection: str, op: str, exc: Exception | None = None) -> None:
        self._failures[(collection, op)] = exc or RemoteError("boom", status=500)

    def hold(self, collection: str) -> None:
        self._gates[collection] = asyncio.Event()

    def release(self, collection: str) -> None:
        self._gates.pop(collection).set()

    def emit(self, collection: str, action: str, record: dict) -> None:
        for callback in list(self.subscribers.get(collection, [])):
            callback({"action": action, "record": dict(record)})

    # ── Internals ────────────────────────────────────────────────────────

    def _check_failure(self, collection: str, op: str) -> None:
        exc = self._failures.pop((collection, op), None)
        if exc is not None:
            raise exc

    async def _gate(self, collection: str) -> None:
        gate = self._gates.get(collection)
        if gate is not None:
            await gate.wait()

    def _echo(self, when: str, collection: str, action: str, record: dict) -> None:
        if self.echo != when:
            return
        if when == "before":
            self.emit(collection, action, record)
        else:
            asyncio.get_running_loop().call_soon(self.emit, collection, action, record)

    # ── RemoteStore ──────────────────────────────────────────────────────

    async def list(self, collection, filters=None, sort=None, order=None,
                   page=1, limit=None):
        self.calls.append(("list", collection, filters, page))
        self._check_failure(collection, "list")
        await asyncio.sleep(0)
        rows = [r for r in self.records.get(collection, {}).values() if _matches(r, filters)]
        if sort:
            rows.sort(key=lambda r: r.get(sort) or "", reverse=(order == "desc"))
        limit = limit or len(rows) or 1
        start = (page - 1) * limit
        return ListResult(
            data=[dict(r) for r in rows[start:start + limit]],
            pagination=Pagination(
                page=page, limit=limit, total=len(rows),
                total_pages=max(1, math.ceil(len(rows) / limit)),
            ),
        )

    async def create(self, collection, fields):
        self.calls.append(("create", collection, dict(fields)))
        prefix = "hab" if collection == "habits" else "cmp"
        record_id = f"{prefix}_{next(self._ids)}"
        self._check_failure(collection, "create")
        now = datetime.now(timezone.utc).isoformat()
        record = {**fields, "id": record_id, "created_at": now, "updated_at": now}
        self.records.setdefault(collection, {})[record_id] = record
        self._echo("before", collection, "created", record)
        await self._gate(collection)
        self._echo("after", collection, "created", record)
        return dict(record)

    async def update(self, collection, record_id, patch):
        self.calls.append(("update", collection, record_id, dict(patch)))
        await self._gate(collection)
        self._check_failure(collection, "update")
        record = self.records[collection][record_id]
        record.update(patch)
        self._echo("after", collection, "updated", record)
        return dict(record)

    async def delete(self, collection, record_id):
        self.calls.append(("delete", collection, record_id))
        await self._gate(collection)
        self._check_failure(collection, "delete")
        record = self.records.get(collection, {}).pop(record_id, {"id": record_id})
        self._echo("after", collection, "deleted", record)

    def subscribe(self, collection, filters, on_event):
        self.calls.append(("subscribe", collection, filters))
        self.subscribers.setdefault(collection, []).append(on_event)

        def unsubscribe():
            if on_event in self.subscribers.get(collection, []):
                self.subscribers[collection].remove(on_event)

        return unsubscribe

    async def aclose(self):
        self.closed = True


@pytest.fixture
def store():
    return FakeStore()
