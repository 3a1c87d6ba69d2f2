"""Notification policies: named, ordered lists of escalation tiers.

A tier activates once the time remaining until a deadline drops below its
``trigger_offset``. Positive offsets are lead times before the deadline
("1h" = within the last hour); negative offsets reach past it ("-1d" = a
day overdue). Tiers are kept strictly ascending by offset, so the first
match in a scan is always the tightest applicable tier.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from deadline_escalator.durations import format_duration, parse_duration
from deadline_escalator.errors import InvalidPolicy, UnknownPolicy
from deadline_escalator.tasks import DEFAULT_POLICY

logger = logging.getLogger(__name__)

_RESERVED_KEYS = {"time", "period", "actions"}


@dataclass(frozen=True)
class Tier:
    """One escalation step of a policy.

    Attributes:
        trigger_offset: Seconds relative to the deadline; active while
            remaining time is strictly below it.
        repeat_period: Seconds between repeated fires, or None for one-shot.
        actions: Action identifiers dispatched in order.
        extra_params: Handler parameters (e.g. ``duration``).
    """

    trigger_offset: int
    repeat_period: int | None = None
    actions: tuple[str, ...] = ()
    extra_params: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Tier:
        """Build a tier from a config mapping.

        Recognised keys are ``time``, ``period`` and ``actions``; any other
        key is carried in ``extra_params``.

        Raises:
            MalformedDuration: If ``time`` or ``period`` does not parse.
            InvalidPolicy: If ``time`` is missing or ``actions`` is malformed.
        """
        offset = parse_duration(data.get("time"))
        if offset is None:
            raise InvalidPolicy(f"Tier is missing 'time': {dict(data)!r}")
        period = parse_duration(data.get("period"))
        actions = data.get("actions", ())
        if isinstance(actions, str):
            actions = [actions]
        if not isinstance(actions, (list, tuple)):
            raise InvalidPolicy(f"Tier 'actions' must be a list: {actions!r}")
        extra = {k: v for k, v in data.items() if k not in _RESERVED_KEYS}
        return cls(
            trigger_offset=offset,
            repeat_period=period,
            actions=tuple(str(a) for a in actions),
            extra_params=extra,
        )

    def describe(self) -> str:
        """Short human-readable summary used by logs and the CLI."""
        text = f"time={format_duration(self.trigger_offset)}"
        if self.repeat_period is not None:
            text += f" period={format_duration(self.repeat_period)}"
        return f"{text} actions={','.join(self.actions)}"


@dataclass(frozen=True)
class Policy:
    """A named, immutable, ascending list of tiers."""

    name: str
    tiers: tuple[Tier, ...]


def _coerce_tiers(tiers: Iterable[Tier | Mapping[str, Any]]) -> tuple[Tier, ...]:
    coerced = []
    for tier in tiers:
        if isinstance(tier, Tier):
            coerced.append(tier)
        elif isinstance(tier, Mapping):
            coerced.append(Tier.from_mapping(tier))
        else:
            raise InvalidPolicy(f"Unsupported tier value: {tier!r}")
    return tuple(coerced)


def validate_tiers(name: str, tiers: tuple[Tier, ...]) -> None:
    """Check a tier list is non-empty, actionable and strictly ascending.

    Raises:
        InvalidPolicy: On the first violation found.
    """
    if not tiers:
        raise InvalidPolicy(f"Policy {name!r} has no tiers")
    for tier in tiers:
        if not tier.actions:
            raise InvalidPolicy(
                f"Policy {name!r} tier {format_duration(tier.trigger_offset)} "
                "has no actions"
            )
        if tier.repeat_period is not None and tier.repeat_period <= 0:
            raise InvalidPolicy(
                f"Policy {name!r} tier {format_duration(tier.trigger_offset)} "
                "needs a positive period"
            )
    for prev, cur in zip(tiers, tiers[1:]):
        if cur.trigger_offset <= prev.trigger_offset:
            raise InvalidPolicy(
                f"Policy {name!r} tiers must be strictly ascending by time: "
                f"{format_duration(prev.trigger_offset)} then "
                f"{format_duration(cur.trigger_offset)}"
            )


DEFAULT_TIERS = ({"time": "1h", "period": "2m", "actions": ["message"]},)


class PolicyRegistry:
    """Mapping of policy name to tiers, owned by one scheduler context."""

    def __init__(self) -> None:
        self._policies: dict[str, Policy] = {}
        self.register(DEFAULT_POLICY, DEFAULT_TIERS)

    def register(self, name: str, tiers: Iterable[Tier | Mapping[str, Any]]) -> Policy:
        """Register *tiers* under *name*, replacing any existing policy.

        Raises:
            MalformedDuration: If a tier mapping carries a bad duration.
            InvalidPolicy: If the tiers fail validation.
        """
        if not name:
            raise InvalidPolicy("Policy name must not be empty")
        coerced = _coerce_tiers(tiers)
        validate_tiers(name, coerced)
        policy = Policy(name=name, tiers=coerced)
        if name in self._policies:
            logger.debug("Replacing policy %s", name)
        self._policies[name] = policy
        return policy

    def unregister(self, name: str) -> None:
        """Remove a policy. The default policy can only be replaced."""
        if name == DEFAULT_POLICY:
            raise InvalidPolicy("The default policy cannot be removed")
        self._policies.pop(name, None)

    def lookup(self, name: str | None) -> tuple[Tier, ...]:
        """Return the tiers for *name* (empty name means the default).

        Raises:
            UnknownPolicy: If *name* was never registered.
        """
        policy = self._policies.get(name or DEFAULT_POLICY)
        if policy is None:
            raise UnknownPolicy(name or DEFAULT_POLICY)
        return policy.tiers

    def names(self) -> list[str]:
        return sorted(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)
