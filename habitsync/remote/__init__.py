"""Remote store abstraction — the persistence collaborator the mirrors talk to.

A remote store exposes named collections with list/create/update/delete
primitives and a push subscription. habitsync ships an HTTP implementation
(habitsync.remote.http); tests use an in-memory one.

Filters are dicts of field → value. A scalar value means equality; a dict
value holds operators, e.g. {"completed_date": {"gte": "2026-07-20T00:00:00.000Z"}}.
Supported operators: eq, ne, gt, gte, lt, lte, in, like.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

log = logging.getLogger(__name__)

FILTER_OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "like")

EventCallback = Callable[[dict], None]
Unsubscribe = Callable[[], None]


@dataclass
class Pagination:
    page: int = 1
    limit: int = 0
    total: int = 0
    total_pages: int = 1


@dataclass
class ListResult:
    """One page of a list call."""
    data: list[dict] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)

    @classmethod
    def from_response(cls, body: dict) -> "ListResult":
        """Parse `{data, pagination{page, limit, total, totalPages}}`."""
        data = body.get("data") or []
        p = body.get("pagination") or {}
        pagination = Pagination(
            page=int(p.get("page", 1)),
            limit=int(p.get("limit", len(data))),
            total=int(p.get("total", len(data))),
            total_pages=int(p.get("totalPages", p.get("total_pages", 1))),
        )
        return cls(data=list(data), pagination=pagination)


class RemoteStore(ABC):
    """Abstract base class for remote persistence backends.

    Implementations raise on any failure (habitsync.errors.RemoteError for
    the HTTP client). Mirrors turn those into LoadError / MutationError.
    """

    @abstractmethod
    async def list(self, collection: str, filters: dict | None = None,
                   sort: str | None = None, order: str | None = None,
                   page: int = 1, limit: int | None = None) -> ListResult:
        """Fetch one page of records matching filters."""
        ...

    @abstractmethod
    async def create(self, collection: str, fields: dict) -> dict:
        """Create a record. The server assigns id, created_at, updated_at."""
        ...

    @abstractmethod
    async def update(self, collection: str, record_id: str, patch: dict) -> dict:
        """Patch a record and return the stored version."""
        ...

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        ...

    @abstractmethod
    def subscribe(self, collection: str, filters: dict | None,
                  on_event: EventCallback) -> Unsubscribe:
        """Deliver `{action, record}` dicts for matching records until unsubscribed.

        Must be called from inside a running event loop.
        """
        ...

    async def list_all(self, collection: str, filters: dict | None = None,
                       sort: str | None = None, order: str | None = None,
                       limit: int = 100) -> "list[dict]":
        """Page through a list call until the server runs out of records."""
        records: list[dict] = []
        page = 1
        while True:
            result = await self.list(collection, filters, sort=sort, order=order,
                                     page=page, limit=limit)
            records.extend(result.data)
            if not result.data or page >= result.pagination.total_pages:
                break
            page += 1
        log.debug("list_all %s: %d records over %d pages", collection, len(records), page)
        return records
