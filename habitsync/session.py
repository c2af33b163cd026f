"""Sync session — both mirrors for one signed-in user.

The session follows the auth collaborator: nothing is loaded while signed
out, sign-out drops both mirrors, and a user switch tears everything down
before loading the new user's data. One session per process; the remote
store is injected so tests can pass a fake.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime

from habitsync import stats
from habitsync.completions import CompletionMirror
from habitsync.errors import AuthRequiredError, UnknownEntityError
from habitsync.habits import HabitMirror
from habitsync.models import Completion
from habitsync.remote import RemoteStore

log = logging.getLogger(__name__)


class AuthProvider(ABC):
    """What the session needs from the authentication layer."""

    @abstractmethod
    def current_user_id(self) -> str | None:
        """Signed-in user id, or None when signed out."""
        ...

    @property
    def is_authenticated(self) -> bool:
        return bool(self.current_user_id())


class StaticAuth(AuthProvider):
    """Auth provider holding a user id set by the caller."""

    def __init__(self, user_id: str | None = None) -> None:
        self._user_id = user_id or None

    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None


class SyncSession:
    def __init__(self, store: RemoteStore, auth: AuthProvider,
                 habits: HabitMirror | None = None,
                 completions: CompletionMirror | None = None) -> None:
        self._store = store
        self._auth = auth
        self.habits = habits or HabitMirror(store)
        self.completions = completions or CompletionMirror(store)
        self._user_id: str | None = None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def active(self) -> bool:
        return self._user_id is not None

    def _require_user(self) -> str:
        if not self._user_id:
            raise AuthRequiredError("no signed-in user")
        return self._user_id

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe and load both mirrors for the signed-in user.

        Raises AuthRequiredError when signed out, or the first LoadError.
        A mirror whose load failed stays empty and unsubscribed, and the
        session is left inactive so the next start() or sync_auth() retries.
        """
        user_id = self._auth.current_user_id()
        if not user_id:
            raise AuthRequiredError("cannot start a sync session while signed out")
        if user_id == self._user_id:
            return
        if self._user_id:
            log.info("User switch %s → %s", self._user_id, user_id)
            self.stop()

        self._user_id = user_id
        log.info("Starting sync session for %s", user_id)
        mirrors = (self.habits, self.completions)
        for mirror in mirrors:
            mirror.start(user_id)
        results = await asyncio.gather(
            *(mirror.load(user_id) for mirror in mirrors), return_exceptions=True,
        )
        if self._user_id != user_id:
            return  # signed out or switched while loading

        errors = []
        for mirror, result in zip(mirrors, results):
            if isinstance(result, BaseException):
                mirror.stop()
                errors.append(result)
        if errors:
            self._user_id = None
            raise errors[0]
        log.info("Sync session ready: %d habits, %d completions",
                 len(self.habits), len(self.completions))

    def stop(self) -> None:
        """Sign-out: close subscriptions and drop both mirrors."""
        self.habits.clear()
        self.completions.clear()
        if self._user_id:
            log.info("Sync session stopped for %s", self._user_id)
        self._user_id = None

    async def sync_auth(self) -> None:
        """Follow the auth collaborator after a sign-in/sign-out/switch."""
        user_id = self._auth.current_user_id()
        if not user_id:
            # also covers a failed start that left one mirror loaded
            self.stop()
            return
        if user_id != self._user_id:
            await self.start()

    async def reload(self) -> None:
        """Re-subscribe where needed and re-fetch both mirrors for the current user."""
        user_id = self._require_user()
        for mirror in (self.habits, self.completions):
            mirror.start(user_id)
        await asyncio.gather(self.habits.load(user_id), self.completions.load(user_id))

    # ── Cross-mirror operations ──────────────────────────────────────────

    async def delete_habit(self, habit_id: str) -> None:
        """Delete a habit and drop its completions from the local mirror."""
        await self.habits.delete_habit(habit_id)
        self.completions.discard_habit(habit_id)

    async def toggle(self, habit_id: str, day: date | datetime | str) -> bool:
        self._require_user()
        if self.habits.get(habit_id) is None:
            raise UnknownEntityError(f"habit {habit_id} is not loaded")
        return await self.completions.toggle(habit_id, day)

    def visible_completions(self) -> list[Completion]:
        """Completions whose habit is in the habits mirror (no orphans)."""
        habit_ids = {h.id for h in self.habits.items}
        return [c for c in self.completions.items if c.habit_id in habit_ids]

    def completions_for(self, habit_id: str) -> list[Completion]:
        if self.habits.get(habit_id) is None:
            return []
        return self.completions.for_habit(habit_id)

    async def fetch_history(self) -> list[Completion]:
        """Full completion history for stats/export, orphans removed."""
        history = await self.completions.fetch_history(self._require_user())
        habit_ids = {h.id for h in self.habits.items}
        return [c for c in history if c.habit_id in habit_ids]

    # ── Derived data ─────────────────────────────────────────────────────

    def stats_for(self, habit_id: str, today: date | None = None) -> dict:
        return stats.habit_stats(self.completions_for(habit_id), today=today)

    def overview(self, today: date | None = None) -> dict:
        return stats.overview(self.habits.items, self.visible_completions(), today=today)

    def summary(self, today: date | None = None) -> dict:
        return stats.daily_summary(self.habits.items, self.visible_completions(), today=today)

    def snapshot(self) -> dict:
        """Presentation view: items, loading flag and error for each mirror."""
        return {
            mirror.collection: {
                "items": mirror.items,
                "loading": mirror.loading,
                "error": mirror.error,
            }
            for mirror in (self.habits, self.completions)
        }
