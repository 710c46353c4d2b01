"""Error kinds raised by gyst."""

from __future__ import annotations


class GystError(Exception):
    """Base class for all gyst errors."""


class NotFoundError(GystError):
    """A requested document does not exist."""


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class UnauthenticatedError(GystError):
    """No user id was supplied for an operation that needs one."""

    def __init__(self) -> None:
        super().__init__("Not signed in. Run: gyst login --user <id>")


class TransientStoreError(GystError):
    """The backing store could not be opened or a call on it failed."""


class InvalidFrequencyError(GystError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(
            f"Invalid frequency {value!r}. Must be one of: daily, weekly, monthly"
        )
        self.value = value


class NotificationSendError(GystError):
    """A reminder could not be delivered to one device token."""

    def __init__(self, token: str, reason: str = "") -> None:
        super().__init__(f"Failed to send to {token}: {reason}" if reason else f"Failed to send to {token}")
        self.token = token
        self.reason = reason


class TokenInvalidError(NotificationSendError):
    """The device token is no longer registered with the push service."""
