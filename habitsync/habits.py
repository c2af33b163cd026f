"""Habits mirror — the signed-in user's habits, newest first."""

import logging

from habitsync.config import HABITS_PAGE_LIMIT
from habitsync.errors import ValidationError
from habitsync.mirror import EntityMirror
from habitsync.models import (
    DEFAULT_CATEGORY,
    DEFAULT_HABIT_COLOR,
    HABITS,
    Habit,
    HabitCategory,
    HabitColor,
    coerce_category,
    coerce_color,
    validate_habit_name,
)
from habitsync.remote import RemoteStore

log = logging.getLogger(__name__)


class HabitMirror(EntityMirror):
    """Mirror of the `habits` collection.

    The load is a single page (HABITS_PAGE_LIMIT) sorted by created_at desc.
    Archived habits stay in the mirror; use active_habits() for the main view.
    """

    collection = HABITS
    label = "habit"
    entity_type = Habit

    def __init__(self, store: RemoteStore, page_limit: int = HABITS_PAGE_LIMIT,
                 **kwargs) -> None:
        super().__init__(store, **kwargs)
        self._page_limit = page_limit

    async def _fetch(self, owner_id: str) -> list[dict]:
        result = await self._store.list(
            HABITS,
            {"user_id": owner_id},
            sort="created_at",
            order="desc",
            page=1,
            limit=self._page_limit,
        )
        return result.data

    def active_habits(self) -> list[Habit]:
        return [h for h in self._items if not h.archived]

    def archived_habits(self) -> list[Habit]:
        return [h for h in self._items if h.archived]

    async def create_habit(self, name: str,
                           color: HabitColor | str = DEFAULT_HABIT_COLOR,
                           category: HabitCategory | str = DEFAULT_CATEGORY) -> Habit:
        self._require_owner()
        fields = {
            "name": validate_habit_name(name),
            "color": coerce_color(color).value,
            "category": coerce_category(category).value,
            "archived": False,
        }
        return await self.create(fields)

    async def update_habit(self, habit_id: str, name: str | None = None,
                           color: HabitColor | str | None = None,
                           category: HabitCategory | str | None = None) -> Habit:
        """Edit name / color / category. Only the given fields are sent."""
        patch: dict = {}
        if name is not None:
            patch["name"] = validate_habit_name(name)
        if color is not None:
            patch["color"] = coerce_color(color).value
        if category is not None:
            patch["category"] = coerce_category(category).value
        if not patch:
            raise ValidationError("nothing to update")
        return await self.update(habit_id, patch)

    async def archive_habit(self, habit_id: str) -> Habit:
        return await self.update(habit_id, {"archived": True})

    async def unarchive_habit(self, habit_id: str) -> Habit:
        return await self.update(habit_id, {"archived": False})

    async def delete_habit(self, habit_id: str) -> None:
        """Delete a habit. The server cascades to its completions."""
        await self.delete(habit_id)
        log.info("Deleted habit %s", habit_id)
