"""HTTP remote store — talks to the collections API over httpx.

Endpoints (relative to HABITSYNC_API_URL):
  GET    /collections/{c}/records          list   (filter is JSON-encoded)
  POST   /collections/{c}/records          create
  PATCH  /collections/{c}/records/{id}     update
  DELETE /collections/{c}/records/{id}     delete
  GET    /collections/{c}/events           push stream (server-sent events)

Each SSE `data:` line carries one `{"action": ..., "record": {...}}` event.
A dropped stream is reopened after SUBSCRIBE_RETRY_SECONDS until the caller
unsubscribes.
"""

import asyncio
import json
import logging

import httpx

from habitsync.config import (
    HABITSYNC_API_TOKEN,
    HABITSYNC_API_URL,
    HABITSYNC_APP_ID,
    REQUEST_TIMEOUT_SECONDS,
    SUBSCRIBE_RETRY_SECONDS,
)
from habitsync.errors import RemoteError
from habitsync.remote import EventCallback, ListResult, RemoteStore, Unsubscribe

log = logging.getLogger(__name__)


def _parse_sse_line(line: str) -> dict | None:
    """Decode one `data: {...}` line. Comments, blanks and junk → None."""
    if not line.startswith("data:"):
        return None
    raw = line[len("data:"):].strip()
    if not raw:
        return None
    try:
        event = json.loads(raw)
    except json.JSONDecodeError:
        log.debug("Skipping undecodable push line: %s", raw[:200])
        return None
    return event if isinstance(event, dict) else None


def _unwrap_record(body) -> dict:
    # Some deployments wrap single records as {"data": {...}}
    if isinstance(body, dict) and "id" not in body and isinstance(body.get("data"), dict):
        return body["data"]
    if not isinstance(body, dict):
        raise RemoteError(f"expected a record object, got {type(body).__name__}")
    return body


class HttpRemoteStore(RemoteStore):
    """RemoteStore over HTTP. One instance per process; share it across mirrors."""

    def __init__(self, base_url: str = HABITSYNC_API_URL,
                 token: str = HABITSYNC_API_TOKEN,
                 app_id: str = HABITSYNC_APP_ID,
                 timeout: float = REQUEST_TIMEOUT_SECONDS,
                 retry_seconds: float = SUBSCRIBE_RETRY_SECONDS,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url
        self._token = token
        self._app_id = app_id
        self._timeout = timeout
        self._retry_seconds = retry_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._subscriptions: set[asyncio.Task] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            if self._app_id:
                headers["X-App-Id"] = self._app_id
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def set_token(self, token: str) -> None:
        """Swap the bearer token (new sign-in). Applies to subsequent requests."""
        self._token = token
        if self._client is not None:
            self._client.headers["Authorization"] = f"Bearer {token}"

    async def aclose(self) -> None:
        for task in list(self._subscriptions):
            task.cancel()
        if self._subscriptions:
            await asyncio.gather(*self._subscriptions, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Requests ─────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.error("Remote %s %s failed: %s %s", method, path, status, e.response.text[:200])
            raise RemoteError(f"{method} {path} failed with {status}", status=status) from e
        except httpx.HTTPError as e:
            log.error("Remote %s %s request error: %s", method, path, e)
            raise RemoteError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _records_path(collection: str, record_id: str | None = None) -> str:
        path = f"/collections/{collection}/records"
        return f"{path}/{record_id}" if record_id else path

    async def list(self, collection: str, filters: dict | None = None,
                   sort: str | None = None, order: str | None = None,
                   page: int = 1, limit: int | None = None) -> ListResult:
        params: dict = {"page": page}
        if filters:
            params["filter"] = json.dumps(filters, separators=(",", ":"))
        if sort:
            params["sort"] = sort
        if order:
            params["order"] = order
        if limit:
            params["limit"] = limit
        resp = await self._request("GET", self._records_path(collection), params=params)
        body = resp.json()
        if not isinstance(body, dict):
            raise RemoteError(f"list {collection}: unexpected response shape")
        return ListResult.from_response(body)

    async def create(self, collection: str, fields: dict) -> dict:
        resp = await self._request("POST", self._records_path(collection), json=fields)
        return _unwrap_record(resp.json())

    async def update(self, collection: str, record_id: str, patch: dict) -> dict:
        resp = await self._request(
            "PATCH", self._records_path(collection, record_id), json=patch,
        )
        return _unwrap_record(resp.json())

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", self._records_path(collection, record_id))

    # ── Push stream ──────────────────────────────────────────────────────

    def subscribe(self, collection: str, filters: dict | None,
                  on_event: EventCallback) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(
            self._stream(collection, filters, on_event),
            name=f"habitsync-subscribe-{collection}",
        )
        self._subscriptions.add(task)
        task.add_done_callback(self._subscriptions.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _stream(self, collection: str, filters: dict | None,
                      on_event: EventCallback) -> None:
        params = {}
        if filters:
            params["filter"] = json.dumps(filters, separators=(",", ":"))
        path = f"/collections/{collection}/events"
        # Long-lived stream: no read timeout, keep the connect timeout
        timeout = httpx.Timeout(self._timeout, read=None)

        while True:
            try:
                async with self.client.stream(
                    "GET", path, params=params, timeout=timeout,
                    headers={"Accept": "text/event-stream"},
                ) as resp:
                    if resp.status_code != 200:
                        body = await resp.aread()
                        raise RemoteError(
                            f"subscribe {collection} failed: {body.decode(errors='replace')[:200]}",
                            status=resp.status_code,
                        )
                    log.info("Push stream open: %s", collection)
                    async for line in resp.aiter_lines():
                        event = _parse_sse_line(line)
                        if event is not None:
                            on_event(event)
                log.warning("Push stream for %s closed by server", collection)
            except asyncio.CancelledError:
                log.info("Push stream closed: %s", collection)
                raise
            except Exception as e:
                log.warning("Push stream for %s dropped: %s", collection, e)
            await asyncio.sleep(self._retry_seconds)
