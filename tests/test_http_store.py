"""Tests for the httpx-backed remote store, using httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from habitsync.errors import RemoteError
from habitsync.remote.http import HttpRemoteStore, _parse_sse_line


def _store(handler, **kwargs) -> HttpRemoteStore:
    kwargs.setdefault("retry_seconds", 10)
    return HttpRemoteStore(
        base_url="http://sync.test/api", token="tok", app_id="app-1",
        transport=httpx.MockTransport(handler), **kwargs,
    )


def _run(store: HttpRemoteStore, coro):
    async def wrapper():
        try:
            return await coro
        finally:
            await store.aclose()
    return asyncio.run(wrapper())


# ═══════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════

class TestRequests:
    def test_list_sends_query_and_auth(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={
                "data": [{"id": "hab_1"}],
                "pagination": {"page": 1, "limit": 50, "total": 1, "totalPages": 1},
            })

        store = _store(handler)
        result = _run(store, store.list("habits", {"user_id": "u1"}, sort="created_at",
                                        order="desc", page=1, limit=50))

        request = seen["request"]
        assert request.method == "GET"
        assert request.url.path == "/api/collections/habits/records"
        assert json.loads(request.url.params["filter"]) == {"user_id": "u1"}
        assert request.url.params["sort"] == "created_at"
        assert request.url.params["order"] == "desc"
        assert request.url.params["limit"] == "50"
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["x-app-id"] == "app-1"
        assert result.data == [{"id": "hab_1"}]
        assert result.pagination.total_pages == 1

    def test_list_all_pages(self):
        pages = {
            "1": {"data": [{"id": "a"}, {"id": "b"}],
                  "pagination": {"page": 1, "limit": 2, "total": 3, "totalPages": 2}},
            "2": {"data": [{"id": "c"}],
                  "pagination": {"page": 2, "limit": 2, "total": 3, "totalPages": 2}},
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params["page"]])

        store = _store(handler)
        records = _run(store, store.list_all("habit_completions", limit=2))
        assert [r["id"] for r in records] == ["a", "b", "c"]

    def test_create_posts_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["method"] = request.method
            return httpx.Response(201, json={**seen["body"], "id": "hab_1"})

        store = _store(handler)
        record = _run(store, store.create("habits", {"name": "Read", "user_id": "u1"}))
        assert seen["method"] == "POST"
        assert seen["body"] == {"name": "Read", "user_id": "u1"}
        assert record["id"] == "hab_1"

    def test_wrapped_record_unwrapped(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "hab_1", "archived": True}})

        store = _store(handler)
        record = _run(store, store.update("habits", "hab_1", {"archived": True}))
        assert record == {"id": "hab_1", "archived": True}

    def test_update_and_delete_paths(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json={"id": "hab_1"})

        store = _store(handler)

        async def scenario():
            await store.update("habits", "hab_1", {"name": "x"})
            await store.delete("habits", "hab_1")

        _run(store, scenario())
        assert seen == [
            ("PATCH", "/api/collections/habits/records/hab_1"),
            ("DELETE", "/api/collections/habits/records/hab_1"),
        ]


class TestErrors:
    def test_http_error_status(self):
        store = _store(lambda request: httpx.Response(500, text="kaboom"))
        with pytest.raises(RemoteError) as exc_info:
            _run(store, store.create("habits", {"name": "Read"}))
        assert exc_info.value.status == 500

    def test_not_found(self):
        store = _store(lambda request: httpx.Response(404, json={"error": "missing"}))
        with pytest.raises(RemoteError) as exc_info:
            _run(store, store.delete("habits", "hab_x"))
        assert exc_info.value.status == 404

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = _store(handler)
        with pytest.raises(RemoteError) as exc_info:
            _run(store, store.list("habits"))
        assert exc_info.value.status is None

    def test_unexpected_list_shape(self):
        store = _store(lambda request: httpx.Response(200, json=[1, 2, 3]))
        with pytest.raises(RemoteError):
            _run(store, store.list("habits"))


# ═══════════════════════════════════════════════════════════════════════════
# Push stream
# ═══════════════════════════════════════════════════════════════════════════

class TestParseSseLine:
    def test_data_line(self):
        assert _parse_sse_line('data: {"action": "created", "record": {"id": "x"}}') == {
            "action": "created", "record": {"id": "x"},
        }

    def test_ignored_lines(self):
        assert _parse_sse_line("") is None
        assert _parse_sse_line(": keepalive") is None
        assert _parse_sse_line("event: message") is None
        assert _parse_sse_line("data:") is None
        assert _parse_sse_line("data: {not json") is None
        assert _parse_sse_line("data: [1, 2]") is None


def _sse(*events: dict) -> bytes:
    lines = [": connected\n\n"]
    lines += [f"data: {json.dumps(e)}\n\n" for e in events]
    return "".join(lines).encode()


class TestSubscribe:
    def test_events_delivered_until_unsubscribed(self):
        seen = {}
        events = [
            {"action": "created", "record": {"id": "hab_1"}},
            {"action": "deleted", "record": {"id": "hab_1"}},
        ]

        def handler(request):
            seen["path"] = request.url.path
            seen["filter"] = request.url.params["filter"]
            return httpx.Response(200, content=_sse(*events),
                                  headers={"content-type": "text/event-stream"})

        store = _store(handler)

        async def scenario():
            received = []
            done = asyncio.Event()

            def on_event(event):
                received.append(event)
                if len(received) == len(events):
                    done.set()

            unsubscribe = store.subscribe("habits", {"user_id": "u1"}, on_event)
            await asyncio.wait_for(done.wait(), 2)
            unsubscribe()
            return received

        received = _run(store, scenario())
        assert received == events
        assert seen["path"] == "/api/collections/habits/events"
        assert json.loads(seen["filter"]) == {"user_id": "u1"}

    def test_reconnects_after_failure(self):
        attempts = []
        event = {"action": "updated", "record": {"id": "hab_1"}}

        def handler(request):
            attempts.append(request.url.path)
            if len(attempts) == 1:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, content=_sse(event))

        store = _store(handler, retry_seconds=0)

        async def scenario():
            done = asyncio.Event()
            received = []

            def on_event(e):
                received.append(e)
                done.set()

            unsubscribe = store.subscribe("habits", None, on_event)
            await asyncio.wait_for(done.wait(), 2)
            unsubscribe()
            return received

        received = _run(store, scenario())
        assert received[0] == event
        assert len(attempts) >= 2

    def test_aclose_cancels_streams(self):
        store = _store(lambda request: httpx.Response(200, content=_sse()))

        async def scenario():
            store.subscribe("habits", None, lambda e: None)
            await asyncio.sleep(0)
            await store.aclose()
            return store._subscriptions

        assert asyncio.run(scenario()) == set()
