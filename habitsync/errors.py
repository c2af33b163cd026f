"""Error taxonomy for the sync engine.

Mirrors never swallow a mutation failure: they roll back and raise one of
these so the caller decides how to show it. Push-event problems are the
exception: they are logged and dropped (a later load repairs divergence).
"""


class SyncError(Exception):
    """Base class for every habitsync error."""


class LoadError(SyncError):
    """Bulk fetch failed. The mirror is left empty; no automatic retry."""


class MutationError(SyncError):
    """A create/update/delete failed after its optimistic apply was rolled back."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(message)
        self.action = action  # "create" | "update" | "delete"


class MutationTimeoutError(MutationError):
    """The remote call behind an optimistic mutation did not answer in time."""


class AuthRequiredError(SyncError):
    """No signed-in user. Raised before any optimistic apply."""


class ValidationError(SyncError, ValueError):
    """Invalid local input (habit name, color, category...)."""


class UnknownEntityError(SyncError, LookupError):
    """Update/delete of an id the mirror does not hold."""


class EntityPendingError(SyncError):
    """Update/delete of an entity whose create has not been confirmed yet."""


class RemoteError(SyncError):
    """Transport or HTTP failure talking to the remote store."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EventValidationError(SyncError):
    """Malformed push event. Never propagates out of a mirror."""
