"""Entity mirror — local in-memory copy of one remote collection.

Three sources feed a mirror:
  1. load()            — bulk fetch, replaces confirmed state wholesale
  2. local mutations   — applied optimistically, then confirmed or rolled back
  3. on_event()        — push events from the subscription, best effort

Reconciliation rules:
  - A local create inserts a temporary entity (state=pending). When the
    server answers, the temporary entity is replaced in place and the server
    id is remembered as "recently created"; the matching `created` echo is
    then consumed and ignored. If the echo got there first, the echoed copy
    is dropped when the confirmation lands.
  - `created` for a known id is ignored. `updated` replaces (last writer
    wins). `deleted` removes. Unknown ids on updated/deleted are no-ops.
  - Push events never touch a pending entity: it has a temporary id.
  - Every id seen deleted (push event or confirmed local delete) is kept as a
    tombstone. A later `created` event or create confirmation for it is
    dropped, whatever order the stream delivers them in. A load forgets only
    the tombstones of ids the server still returns.

All state changes are synchronous; suspension only happens while awaiting
the remote store. Mutations and load() may therefore interleave only at
those awaits, which is what the epoch/revision checks guard.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable

from habitsync.config import MUTATION_TIMEOUT_SECONDS, RECENTLY_CREATED_LIMIT
from habitsync.errors import (
    AuthRequiredError,
    EntityPendingError,
    EventValidationError,
    LoadError,
    MutationError,
    MutationTimeoutError,
    UnknownEntityError,
)
from habitsync.models import EntityState, EventAction, parse_event
from habitsync.remote import RemoteStore

log = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"

Listener = Callable[["EntityMirror"], None]


class _RecentIds:
    """Insertion-ordered id set that forgets the oldest ids past `limit`."""

    def __init__(self, limit: int) -> None:
        self._limit = max(1, limit)
        self._ids: OrderedDict[str, None] = OrderedDict()

    def add(self, entity_id: str) -> None:
        self._ids[entity_id] = None
        self._ids.move_to_end(entity_id)
        while len(self._ids) > self._limit:
            self._ids.popitem(last=False)

    def consume(self, entity_id: str) -> bool:
        """Remove the id; True if it was present."""
        if entity_id not in self._ids:
            return False
        del self._ids[entity_id]
        return True

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        self._ids.clear()


class EntityMirror(ABC):
    """Base class for a mirrored collection.

    Subclasses set `collection`, `entity_type` and `label`, and implement
    _fetch(). Everything else (optimism, rollback, push reconciliation,
    listeners) is handled here.
    """

    collection: str = ""
    label: str = "record"
    entity_type: Any = None  # dataclass with from_record()/to_record()

    def __init__(self, store: RemoteStore,
                 mutation_timeout: float | None = MUTATION_TIMEOUT_SECONDS,
                 recently_created_limit: int = RECENTLY_CREATED_LIMIT) -> None:
        self._store = store
        self._timeout = mutation_timeout
        self._owner_id: str | None = None
        self._items: list = []
        self._states: dict[str, EntityState] = {}
        self._recently_created = _RecentIds(recently_created_limit)
        # ids known to be deleted; created events and confirmations for them are dropped
        self._tombstones = _RecentIds(recently_created_limit)
        self._loading = False
        self._error: str | None = None
        self._listeners: list[Listener] = []
        self._unsubscribe: Callable[[], None] | None = None
        # bumped on clear(): in-flight work from a torn-down owner is dropped
        self._epoch = 0
        # bumped on every load() so stale responses can be discarded
        self._generation = 0
        # bumped on every state change
        self._revision = 0

    # ── Presentation surface ─────────────────────────────────────────────

    @property
    def items(self) -> list:
        return list(self._items)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    def get(self, entity_id: str):
        idx = self._index_of(entity_id)
        return self._items[idx] if idx is not None else None

    def state_of(self, entity_id: str) -> EntityState:
        return self._states.get(entity_id, EntityState.ABSENT)

    def __len__(self) -> int:
        return len(self._items)

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Call `callback(mirror)` after every state change. Returns a remover."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        self._revision += 1
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                log.warning("%s listener failed: %s", self.collection, e, exc_info=True)

    # ── Subclass hooks ───────────────────────────────────────────────────

    @abstractmethod
    async def _fetch(self, owner_id: str) -> list[dict]:
        """Fetch the owner's records for a load()."""
        ...

    def _subscription_filter(self, owner_id: str) -> dict:
        return {"user_id": owner_id}

    def _insert_index(self, entity) -> int:
        """Where new entities go. Newest first by default."""
        return 0

    def _entity_from(self, record: dict):
        return self.entity_type.from_record(record)

    # ── Internals ────────────────────────────────────────────────────────

    def _index_of(self, entity_id: str) -> int | None:
        for i, item in enumerate(self._items):
            if item.id == entity_id:
                return i
        return None

    def _require_owner(self) -> str:
        if not self._owner_id:
            raise AuthRequiredError(f"sign in before changing {self.collection}")
        return self._owner_id

    def _require_confirmed(self, entity_id: str) -> int:
        idx = self._index_of(entity_id)
        if idx is None:
            raise UnknownEntityError(f"{self.label} {entity_id} is not loaded")
        if self._states.get(entity_id) is EntityState.PENDING:
            raise EntityPendingError(f"{self.label} {entity_id} is still being created")
        return idx

    async def _remote(self, action: str, coro, rollback: Callable[[], None]):
        """Await a remote call under the mutation timeout; roll back on any failure."""
        try:
            if self._timeout is not None:
                return await asyncio.wait_for(coro, self._timeout)
            return await coro
        except asyncio.CancelledError:
            rollback()
            raise
        except asyncio.TimeoutError as e:
            rollback()
            log.warning("%s %s timed out after %ss, rolled back",
                        action.capitalize(), self.label, self._timeout)
            raise MutationTimeoutError(
                action, f"{action} {self.label} timed out after {self._timeout}s",
            ) from e
        except Exception as e:
            rollback()
            log.warning("%s %s failed, rolled back: %s", action.capitalize(), self.label, e)
            raise MutationError(action, f"Failed to {action} {self.label}: {e}") from e

    # ── Load / lifecycle ─────────────────────────────────────────────────

    async def load(self, owner_id: str) -> None:
        """Replace mirror state with the owner's records.

        Pending local creates survive a reload. On failure the mirror is
        left empty, `error` is set and LoadError is raised. No retry.
        """
        if not owner_id:
            raise AuthRequiredError(f"cannot load {self.collection} without a user")
        if self._owner_id and self._owner_id != owner_id:
            self.clear()
        self._owner_id = owner_id
        self._generation += 1
        generation = self._generation
        self._loading = True
        self._error = None
        self._notify()

        try:
            records = await self._fetch(owner_id)
        except Exception as e:
            if generation != self._generation:
                log.debug("Discarding failed stale load of %s", self.collection)
                return
            log.error("Loading %s failed: %s", self.collection, e, exc_info=True)
            self._items = []
            self._states = {}
            self._loading = False
            self._error = str(e) or f"Failed to load {self.collection}"
            self._notify()
            raise LoadError(f"Failed to load {self.collection}: {e}") from e

        if generation != self._generation:
            log.debug("Discarding stale load of %s", self.collection)
            return

        entities = []
        seen: set[str] = set()
        for record in records:
            try:
                entity = self._entity_from(record)
            except ValueError as e:
                log.warning("Skipping malformed %s record: %s", self.label, e)
                continue
            if entity.id in seen:
                continue
            seen.add(entity.id)
            entities.append(entity)

        pending = [i for i in self._items if self._states.get(i.id) is EntityState.PENDING]
        self._items = pending + entities
        self._states = {i.id: EntityState.PENDING for i in pending}
        self._states.update({e.id: EntityState.CONFIRMED for e in entities})
        self._recently_created.clear()
        for e in entities:
            self._tombstones.consume(e.id)
        self._loading = False
        self._notify()
        log.info("Loaded %d %s for %s", len(entities), self.collection, owner_id)

    def start(self, owner_id: str | None = None) -> None:
        """Open the push subscription for `owner_id` (default: the current owner).

        Subscribing before load() means no event is missed between the bulk
        fetch and the stream opening; the load then overwrites confirmed state.
        """
        if owner_id and owner_id != self._owner_id:
            if self._owner_id:
                self.clear()
            self._owner_id = owner_id
        owner = self._require_owner()
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._store.subscribe(
            self.collection, self._subscription_filter(owner), self.on_event,
        )
        log.info("Subscribed to %s for %s", self.collection, owner)

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        unsubscribe()
        log.info("Unsubscribed from %s", self.collection)

    def clear(self) -> None:
        """Drop everything (sign-out / user switch). In-flight work is discarded."""
        self.stop()
        self._epoch += 1
        self._generation += 1
        self._owner_id = None
        self._items = []
        self._states = {}
        self._recently_created.clear()
        self._tombstones.clear()
        self._loading = False
        self._error = None
        self._notify()

    # ── Optimistic mutations ─────────────────────────────────────────────

    async def create(self, fields: dict):
        """Insert a pending entity now, confirm it when the server answers.

        The pending entity is visible in `items` (and listeners have fired)
        before the first suspension. Returns the confirmed entity; on failure
        the pending entity is removed and MutationError is raised.
        """
        owner = self._require_owner()
        epoch = self._epoch
        now = datetime.now(timezone.utc).isoformat()
        temp = self._entity_from({
            "created_at": now,
            "updated_at": now,
            **fields,
            "id": f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            "user_id": owner,
        })
        self._items.insert(self._insert_index(temp), temp)
        self._states[temp.id] = EntityState.PENDING
        self._notify()

        def rollback() -> None:
            if epoch != self._epoch:
                return
            idx = self._index_of(temp.id)
            if idx is not None:
                del self._items[idx]
            self._states.pop(temp.id, None)
            self._notify()

        async def call():
            return self._entity_from(
                await self._store.create(self.collection, {**fields, "user_id": owner})
            )

        entity = await self._remote("create", call(), rollback)
        if epoch == self._epoch:
            self._confirm_create(temp.id, entity)
        return entity

    def _confirm_create(self, temp_id: str, entity) -> None:
        temp_idx = self._index_of(temp_id)
        self._states.pop(temp_id, None)

        if entity.id in self._tombstones:
            # Deleted remotely before our confirmation arrived
            if temp_idx is not None:
                del self._items[temp_idx]
            log.debug("%s %s deleted before confirmation", self.label, entity.id)
            self._notify()
            return

        existing = self._index_of(entity.id)
        if temp_idx is None:
            if existing is None:
                self._items.insert(self._insert_index(entity), entity)
                self._recently_created.add(entity.id)
            else:
                self._items[existing] = entity
        else:
            self._items[temp_idx] = entity
            if existing is not None:
                # The echo (or a reload) beat the response: keep one copy
                del self._items[existing]
                log.debug("Collapsed early echo of %s %s", self.label, entity.id)
            else:
                self._recently_created.add(entity.id)
        self._states[entity.id] = EntityState.CONFIRMED
        self._notify()

    async def update(self, entity_id: str, patch: dict):
        """Apply `patch` now; revert that one record if the server refuses."""
        self._require_owner()
        idx = self._require_confirmed(entity_id)
        before = self._items[idx]
        optimistic = self._entity_from({**before.to_record(), **patch, "id": entity_id})
        self._items[idx] = optimistic
        epoch = self._epoch
        self._notify()

        def rollback() -> None:
            if epoch != self._epoch:
                return
            i = self._index_of(entity_id)
            if i is not None:
                self._items[i] = before
                self._notify()

        async def call():
            return self._entity_from(
                await self._store.update(self.collection, entity_id, patch)
            )

        updated = await self._remote("update", call(), rollback)
        if epoch == self._epoch:
            i = self._index_of(entity_id)
            if i is not None:
                self._items[i] = updated
                self._notify()
        return updated

    async def delete(self, entity_id: str) -> None:
        """Remove now; restore the pre-delete collection if the server refuses.

        When nothing else touched the mirror meanwhile the whole snapshot is
        restored. Otherwise only the removed record is put back at its old
        position, so concurrent changes are not lost.
        """
        self._require_owner()
        idx = self._require_confirmed(entity_id)
        snapshot_items = list(self._items)
        snapshot_states = dict(self._states)
        removed = self._items.pop(idx)
        self._states.pop(entity_id, None)
        epoch = self._epoch
        self._notify()
        revision = self._revision

        def rollback() -> None:
            if epoch != self._epoch:
                return
            if self._revision == revision:
                self._items = snapshot_items
                self._states = snapshot_states
            elif self._index_of(entity_id) is None:
                self._items.insert(min(idx, len(self._items)), removed)
                self._states[entity_id] = EntityState.CONFIRMED
            self._notify()

        await self._remote("delete", self._store.delete(self.collection, entity_id), rollback)

        if epoch == self._epoch:
            self._tombstones.add(entity_id)
            # A reload during the call may have brought it back
            i = self._index_of(entity_id)
            if i is not None:
                del self._items[i]
                self._states.pop(entity_id, None)
                self._notify()

    # ── Push events ──────────────────────────────────────────────────────

    def on_event(self, raw) -> None:
        """Merge one push event. Never raises: bad events are logged and dropped."""
        if self._owner_id is None:
            return
        try:
            event = parse_event(raw)
        except EventValidationError as e:
            log.warning("Ignoring malformed %s event: %s", self.collection, e)
            return

        if event.action is EventAction.DELETED:
            self._apply_deleted(event.record_id)
            return

        try:
            entity = self._entity_from(event.record)
        except ValueError as e:
            log.warning("Ignoring %s event with bad record: %s", self.collection, e)
            return
        if entity.user_id != self._owner_id:
            log.debug("Ignoring %s event for another user", self.collection)
            return

        if event.action is EventAction.CREATED:
            self._apply_created(entity)
        else:
            self._apply_updated(entity)

    def _apply_created(self, entity) -> None:
        if entity.id in self._tombstones:
            log.debug("Created event for deleted %s %s ignored", self.label, entity.id)
            return
        if self._recently_created.consume(entity.id):
            log.debug("Echo of local create %s suppressed", entity.id)
            return
        if self._index_of(entity.id) is not None:
            log.debug("Duplicate created event for %s ignored", entity.id)
            return
        self._items.insert(self._insert_index(entity), entity)
        self._states[entity.id] = EntityState.CONFIRMED
        self._notify()

    def _apply_updated(self, entity) -> None:
        idx = self._index_of(entity.id)
        if idx is None or self._states.get(entity.id) is EntityState.PENDING:
            log.debug("Update for unknown %s %s ignored", self.label, entity.id)
            return
        self._items[idx] = entity
        self._notify()

    def _apply_deleted(self, entity_id: str) -> None:
        idx = self._index_of(entity_id)
        if idx is None:
            self._tombstones.add(entity_id)
            log.debug("Delete for unknown %s %s remembered", self.label, entity_id)
            return
        if self._states.get(entity_id) is EntityState.PENDING:
            return
        del self._items[idx]
        self._states.pop(entity_id, None)
        self._recently_created.consume(entity_id)
        self._tombstones.add(entity_id)
        self._notify()
