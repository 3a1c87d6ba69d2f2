"""Task records and the merged context handed to action handlers."""

from __future__ import annotations

import datetime
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deadline_escalator.policies import Tier

DEFAULT_POLICY = "default"


def make_task_id(heading: str, raw_deadline: str) -> str:
    """Stable identity for a task across ticks.

    Derived from the heading and the deadline text as written, so that
    editing the deadline yields a new identity (and fresh fire-state).
    """
    digest = hashlib.sha1(f"{heading}\0{raw_deadline}".encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class SourceLocation:
    """Where a task line lives in a markdown note."""

    path: Path
    line: int

    def __str__(self) -> str:
        return f"{self.path}:{self.line}"


@dataclass(frozen=True)
class Task:
    """A single deadline-bearing item produced by an agenda provider."""

    heading: str
    deadline: datetime.datetime
    raw_deadline: str
    policy_name: str = DEFAULT_POLICY
    source_location: Any = None
    extra_fields: dict[str, Any] = field(default_factory=dict)
    unique_id: str = ""

    def __post_init__(self) -> None:
        if not self.unique_id:
            object.__setattr__(
                self, "unique_id", make_task_id(self.heading, self.raw_deadline)
            )
        if not self.policy_name:
            object.__setattr__(self, "policy_name", DEFAULT_POLICY)

    def remaining(self, now: float) -> float:
        """Seconds until the deadline at POSIX time *now* (negative if overdue)."""
        return self.deadline.timestamp() - now


@dataclass
class ActionContext:
    """Merged task + tier view passed to every action handler.

    Core fields are typed; everything else (task extra fields overlaid by
    tier parameters) lives in ``params``.
    """

    heading: str
    deadline: datetime.datetime
    unique_id: str
    policy_name: str
    source_location: Any
    time_remaining: float
    tier: Tier
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def merge(cls, task: Task, tier: Tier, now: float) -> ActionContext:
        """Build the context for *task* firing *tier* at *now*."""
        params = dict(task.extra_fields)
        params.update(tier.extra_params)
        return cls(
            heading=task.heading,
            deadline=task.deadline,
            unique_id=task.unique_id,
            policy_name=task.policy_name,
            source_location=task.source_location,
            time_remaining=task.remaining(now),
            tier=tier,
            params=params,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Read a core field, falling back to ``params``."""
        if key in _CORE_FIELDS:
            return getattr(self, key)
        return self.params.get(key, default)


_CORE_FIELDS = frozenset(
    {
        "heading",
        "deadline",
        "unique_id",
        "policy_name",
        "source_location",
        "time_remaining",
        "tier",
    }
)
