"""Completions mirror — one record per (habit, calendar day).

The display load only covers the last COMPLETIONS_WINDOW_DAYS days;
fetch_history() pages through everything for stats and export without
touching the mirror.

toggle() is serialized per (habit_id, day): a second toggle on the same key
waits for the first one's create/delete to settle, then toggles back. Two
fast clicks therefore end where they started instead of racing into two
records for one day.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta

from habitsync import dates
from habitsync.config import COMPLETIONS_WINDOW_DAYS, HISTORY_PAGE_LIMIT
from habitsync.errors import LoadError
from habitsync.mirror import EntityMirror
from habitsync.models import COMPLETIONS, Completion, EntityState
from habitsync.remote import RemoteStore

log = logging.getLogger(__name__)


class CompletionMirror(EntityMirror):
    """Mirror of the `habit_completions` collection."""

    collection = COMPLETIONS
    label = "completion"
    entity_type = Completion

    def __init__(self, store: RemoteStore, window_days: int = COMPLETIONS_WINDOW_DAYS,
                 page_limit: int = HISTORY_PAGE_LIMIT, **kwargs) -> None:
        super().__init__(store, **kwargs)
        self._window_days = window_days
        self._page_limit = page_limit
        self._key_locks: dict[tuple[str, date], asyncio.Lock] = {}
        self._key_users: dict[tuple[str, date], int] = {}

    def window_start(self) -> date:
        return dates.today() - timedelta(days=self._window_days)

    async def _fetch(self, owner_id: str) -> list[dict]:
        filters = {
            "user_id": owner_id,
            "completed_date": {"gte": dates.to_iso_date(self.window_start())},
        }
        return await self._store.list_all(
            COMPLETIONS, filters, sort="completed_date", order="desc",
            limit=self._page_limit,
        )

    async def fetch_history(self, owner_id: str | None = None) -> list[Completion]:
        """Every completion the owner has, across all pages. Raises LoadError."""
        owner = owner_id or self._require_owner()
        try:
            records = await self._store.list_all(
                COMPLETIONS, {"user_id": owner}, sort="completed_date", order="desc",
                limit=self._page_limit,
            )
        except Exception as e:
            log.error("Fetching completion history failed: %s", e)
            raise LoadError(f"Failed to load completion history: {e}") from e

        history: list[Completion] = []
        seen: set[str] = set()
        for record in records:
            try:
                completion = Completion.from_record(record)
            except ValueError as e:
                log.warning("Skipping malformed completion record: %s", e)
                continue
            if completion.id not in seen:
                seen.add(completion.id)
                history.append(completion)
        log.info("Fetched %d completions of history for %s", len(history), owner)
        return history

    # ── Queries ──────────────────────────────────────────────────────────

    def find(self, habit_id: str, day: date | datetime | str) -> Completion | None:
        day = dates.normalize(day)
        for c in self._items:
            if c.habit_id == habit_id and c.completed_date == day:
                return c
        return None

    def is_completed(self, habit_id: str, day: date | datetime | str) -> bool:
        return self.find(habit_id, day) is not None

    def for_habit(self, habit_id: str) -> list[Completion]:
        return [c for c in self._items if c.habit_id == habit_id]

    # ── Mutations ────────────────────────────────────────────────────────

    async def add_completion(self, habit_id: str, day: date | datetime | str) -> Completion:
        return await self.create({
            "habit_id": habit_id,
            "completed_date": dates.to_iso_date(day),
        })

    async def toggle(self, habit_id: str, day: date | datetime | str) -> bool:
        """Complete or un-complete a habit for a day. Returns the new state."""
        self._require_owner()
        key = (habit_id, dates.normalize(day))
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                existing = self.find(habit_id, key[1])
                if existing is not None:
                    await self.delete(existing.id)
                    return False
                await self.add_completion(habit_id, key[1])
                return True
        finally:
            self._key_users[key] -= 1
            if not self._key_users[key]:
                del self._key_users[key]
                del self._key_locks[key]

    def discard_habit(self, habit_id: str) -> int:
        """Drop a deleted habit's confirmed completions locally (server cascades)."""
        keep = [
            c for c in self._items
            if c.habit_id != habit_id or self._states.get(c.id) is EntityState.PENDING
        ]
        dropped = len(self._items) - len(keep)
        if dropped:
            for c in self._items:
                if c.habit_id == habit_id and self._states.get(c.id) is EntityState.CONFIRMED:
                    self._states.pop(c.id, None)
            self._items = keep
            self._notify()
            log.info("Dropped %d completions of deleted habit %s", dropped, habit_id)
        return dropped
