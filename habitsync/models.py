"""Entity types for the two mirrored collections, plus the push-event schema.

Records cross the boundary as plain dicts (what the remote store speaks) and
become dataclasses here. Local input is validated strictly (ValidationError);
records coming from the server are read leniently: unknown colors and
categories fall back to the defaults instead of rejecting the record.
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum

from habitsync import dates
from habitsync.errors import EventValidationError, ValidationError

HABITS = "habits"
COMPLETIONS = "habit_completions"

MAX_HABIT_NAME_LENGTH = 50


class HabitColor(str, Enum):
    BLUE = "blue"
    GREEN = "green"
    PURPLE = "purple"
    ORANGE = "orange"
    PINK = "pink"


class HabitCategory(str, Enum):
    HEALTH = "health"
    PRODUCTIVITY = "productivity"
    LEARNING = "learning"
    FITNESS = "fitness"
    MINDFULNESS = "mindfulness"
    SOCIAL = "social"
    FINANCE = "finance"
    CREATIVITY = "creativity"
    OTHER = "other"


DEFAULT_HABIT_COLOR = HabitColor.BLUE
DEFAULT_CATEGORY = HabitCategory.OTHER


class EntityState(str, Enum):
    """Lifecycle of one mirrored entity.

    absent → pending (local create in flight) → confirmed (server record).
    Push events only ever see confirmed entities.
    """
    ABSENT = "absent"
    PENDING = "pending"
    CONFIRMED = "confirmed"


class EventAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# ═══════════════════════════════════════════════════════════════════════════
# Input validation
# ═══════════════════════════════════════════════════════════════════════════

def validate_habit_name(name: str) -> str:
    """Return the trimmed name, or raise ValidationError."""
    if not isinstance(name, str):
        raise ValidationError("habit name must be a string")
    name = name.strip()
    if not name:
        raise ValidationError("habit name cannot be empty")
    if len(name) > MAX_HABIT_NAME_LENGTH:
        raise ValidationError(
            f"habit name must be at most {MAX_HABIT_NAME_LENGTH} characters"
        )
    return name


def coerce_color(value: "HabitColor | str") -> HabitColor:
    try:
        return HabitColor(value)
    except ValueError:
        raise ValidationError(f"unknown habit color: {value!r}") from None


def coerce_category(value: "HabitCategory | str") -> HabitCategory:
    try:
        return HabitCategory(value)
    except ValueError:
        raise ValidationError(f"unknown habit category: {value!r}") from None


def _lenient(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"record field {key!r} missing or not a string")
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Entities
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Habit:
    id: str
    name: str
    user_id: str
    color: HabitColor = DEFAULT_HABIT_COLOR
    category: HabitCategory = DEFAULT_CATEGORY
    archived: bool = False
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, data: dict) -> "Habit":
        """Build from a server record. Raises ValueError if id/name/user_id are missing."""
        return cls(
            id=_require_str(data, "id"),
            name=_require_str(data, "name"),
            user_id=_require_str(data, "user_id"),
            color=_lenient(HabitColor, data.get("color"), DEFAULT_HABIT_COLOR),
            category=_lenient(HabitCategory, data.get("category"), DEFAULT_CATEGORY),
            archived=bool(data.get("archived", False)),
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
        )

    def to_record(self) -> dict:
        record = asdict(self)
        record["color"] = self.color.value
        record["category"] = self.category.value
        return record


@dataclass
class Completion:
    id: str
    habit_id: str
    completed_date: date
    user_id: str
    created_at: str = ""

    @classmethod
    def from_record(cls, data: dict) -> "Completion":
        raw_date = data.get("completed_date")
        if raw_date is None:
            raise ValueError("record field 'completed_date' missing")
        try:
            day = dates.normalize(raw_date)
        except (TypeError, ValueError) as e:
            raise ValueError(f"bad completed_date {raw_date!r}: {e}") from e
        return cls(
            id=_require_str(data, "id"),
            habit_id=_require_str(data, "habit_id"),
            completed_date=day,
            user_id=_require_str(data, "user_id"),
            created_at=data.get("created_at") or "",
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "habit_id": self.habit_id,
            "completed_date": dates.to_iso_date(self.completed_date),
            "user_id": self.user_id,
            "created_at": self.created_at,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Push events
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PushEvent:
    """One validated `{action, record}` message from a subscription."""
    action: EventAction
    record_id: str
    record: dict = field(default_factory=dict)


def parse_event(raw) -> PushEvent:
    """Validate a raw push payload. Raises EventValidationError.

    `deleted` events only need the record id; the others carry a full
    record which the owning mirror converts to its entity type.
    """
    if not isinstance(raw, dict):
        raise EventValidationError(f"event is not an object: {type(raw).__name__}")
    try:
        action = EventAction(raw.get("action"))
    except ValueError:
        raise EventValidationError(f"unknown event action: {raw.get('action')!r}") from None
    record = raw.get("record")
    if not isinstance(record, dict):
        raise EventValidationError("event has no record object")
    record_id = record.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise EventValidationError("event record has no id")
    return PushEvent(action=action, record_id=record_id, record=record)
