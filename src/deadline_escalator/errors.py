"""Exception hierarchy for deadline-escalator."""

from __future__ import annotations


class EscalatorError(Exception):
    """Base exception for all deadline-escalator errors."""


class MalformedDuration(EscalatorError, ValueError):
    """A duration string does not match ``[-]<digits><unit>``."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Malformed duration: {value!r}")


class UnknownPolicy(EscalatorError, LookupError):
    """A task references a policy name that was never registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown notification policy: {name}")


class InvalidPolicy(EscalatorError, ValueError):
    """Policy tiers are empty, incomplete, or not strictly ascending."""


class ProviderReadError(EscalatorError):
    """One agenda source could not be read."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"Cannot read agenda source {source}: {message}")


class HandlerError(EscalatorError):
    """An action handler raised or could not be resolved."""

    def __init__(self, action: str, message: str) -> None:
        self.action = action
        super().__init__(f"Action {action} failed: {message}")


class TaskNotFoundError(EscalatorError):
    """The task store no longer holds the task a callback refers to."""


class SchedulerStartError(EscalatorError):
    """The scheduler driver could not arm its timer."""


class InvalidDeadline(EscalatorError):
    """A task's deadline cannot be turned into a point in time."""
