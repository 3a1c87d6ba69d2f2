"""Escalation engine: decides, per tick and per task, whether a tier fires.

Nothing about a task's "current tier" is stored between ticks. Each tick
recomputes the active tier from the absolute time remaining, so edited
deadlines and re-registered policies take effect immediately. The only
state kept is when each (task, tier) pair last fired, which is what repeat
suppression and drift detection need.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from deadline_escalator.agenda import AgendaProvider
from deadline_escalator.dispatcher import ActionDispatcher, DispatchResult
from deadline_escalator.durations import format_duration
from deadline_escalator.errors import (
    EscalatorError,
    InvalidDeadline,
    ProviderReadError,
    UnknownPolicy,
)
from deadline_escalator.policies import PolicyRegistry, Tier
from deadline_escalator.tasks import ActionContext, Task

logger = logging.getLogger(__name__)

DRIFT_RATIO = 1.5

FireKey = tuple[str, str, int]


# ---------------------------------------------------------------------------
# Pure timing rules
# ---------------------------------------------------------------------------


def select_tier(tiers: Sequence[Tier], remaining: float) -> Tier | None:
    """Return the first tier whose offset is strictly above *remaining*.

    Tiers are ascending, so this is the tightest window that applies.
    """
    for tier in tiers:
        if remaining < tier.trigger_offset:
            return tier
    return None


def should_fire(
    last_fired_at: float | None, repeat_period: int | None, now: float
) -> tuple[bool, float | None]:
    """Decide whether a matched tier fires at *now*.

    Returns:
        (fire, drift_ratio). drift_ratio is ``elapsed / period`` when it
        exceeds the drift threshold, otherwise None.
    """
    if last_fired_at is None:
        return True, None
    if repeat_period is None:
        return False, None
    diff = now - last_fired_at
    if diff <= repeat_period:
        return False, None
    ratio = diff / repeat_period
    return True, ratio if ratio > DRIFT_RATIO else None


# ---------------------------------------------------------------------------
# Tick report
# ---------------------------------------------------------------------------


@dataclass
class FireEvent:
    """One tier firing for one task."""

    task: Task
    tier: Tier
    dispatch: DispatchResult


@dataclass
class DriftWarning:
    """A repeating tier fired later than its period allows."""

    task: Task
    tier: Tier
    elapsed: float
    ratio: float


@dataclass
class TaskError:
    """A task that could not be evaluated this tick."""

    task: Task
    error: EscalatorError


@dataclass
class TickReport:
    """Everything that happened during one engine tick."""

    now: float
    fired: list[FireEvent] = field(default_factory=list)
    suppressed: list[tuple[Task, Tier]] = field(default_factory=list)
    drift: list[DriftWarning] = field(default_factory=list)
    errors: list[TaskError] = field(default_factory=list)
    provider_errors: list[ProviderReadError] = field(default_factory=list)
    task_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors and not self.provider_errors


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EscalationEngine:
    """Evaluates every task against its policy once per tick."""

    def __init__(
        self,
        registry: PolicyRegistry,
        dispatcher: ActionDispatcher,
        provider: AgendaProvider,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.provider = provider
        self.clock = clock
        self._fire_state: dict[FireKey, float] = {}
        self._tick_lock = threading.Lock()

    @property
    def fire_state(self) -> dict[FireKey, float]:
        """Snapshot of last-fired timestamps keyed by (task, policy, offset)."""
        return dict(self._fire_state)

    def reset(self) -> None:
        self._fire_state.clear()

    def last_fired(self, task: Task, tier: Tier) -> float | None:
        return self._fire_state.get(self._key(task, tier))

    @staticmethod
    def _key(task: Task, tier: Tier) -> FireKey:
        return (task.unique_id, task.policy_name, tier.trigger_offset)

    def tick(self, now: float | None = None) -> TickReport:
        """Run one pass over the agenda.

        Ticks are serialized; a second caller waits for the first to finish.
        """
        with self._tick_lock:
            if now is None:
                now = self.clock()
            report = TickReport(now=now)
            try:
                agenda = self.provider.list_tasks()
            except ProviderReadError as exc:
                logger.error("Agenda unavailable: %s", exc)
                report.provider_errors.append(exc)
                return report
            report.provider_errors.extend(agenda.errors)
            report.task_count = len(agenda.tasks)
            for task in agenda.tasks:
                try:
                    self._evaluate(task, now, report)
                except (UnknownPolicy, InvalidDeadline) as exc:
                    logger.error("Skipping task %r: %s", task.heading, exc)
                    report.errors.append(TaskError(task, exc))
            logger.debug(
                "Tick done: %d tasks, %d fired, %d errors",
                report.task_count,
                len(report.fired),
                len(report.errors) + len(report.provider_errors),
            )
            return report

    def _evaluate(self, task: Task, now: float, report: TickReport) -> None:
        tiers = self.registry.lookup(task.policy_name)
        try:
            remaining = task.remaining(now)
        except (AttributeError, TypeError, ValueError, OverflowError) as exc:
            raise InvalidDeadline(
                f"Bad deadline {task.raw_deadline!r}: {exc}"
            ) from exc
        tier = select_tier(tiers, remaining)
        if tier is None:
            return

        key = self._key(task, tier)
        last = self._fire_state.get(key)
        fire, ratio = should_fire(last, tier.repeat_period, now)
        if not fire:
            report.suppressed.append((task, tier))
            return
        if ratio is not None and last is not None:
            elapsed = now - last
            logger.warning(
                "Schedule drift for %r: %s since last fire, period %s (%.2fx)",
                task.heading,
                format_duration(int(elapsed)),
                format_duration(tier.repeat_period or 0),
                ratio,
            )
            report.drift.append(DriftWarning(task, tier, elapsed, ratio))

        self._fire_state[key] = now
        context = ActionContext.merge(task, tier, now)
        logger.info(
            "Firing %s for %r (deadline %s, tier %s)",
            ",".join(tier.actions),
            task.heading,
            task.deadline.isoformat(sep=" ", timespec="minutes"),
            format_duration(tier.trigger_offset),
        )
        result = self.dispatcher.dispatch(tier.actions, context)
        report.fired.append(FireEvent(task, tier, result))
