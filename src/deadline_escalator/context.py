"""One scheduler instance: registry, fire-state, dispatcher and driver.

Nothing here is process-global, so several contexts can run side by side
(and tests can build a fresh one per case).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from deadline_escalator.agenda import AgendaProvider, MarkdownAgenda
from deadline_escalator.config import EscalatorConfig, HandlerSettings
from deadline_escalator.dispatcher import ActionDispatcher, ActionHandler, TaskStore
from deadline_escalator.driver import DEFAULT_INTERVAL, IdleProbe, SchedulerDriver
from deadline_escalator.engine import EscalationEngine, TickReport
from deadline_escalator.errors import InvalidPolicy, MalformedDuration
from deadline_escalator.handlers import register_builtin_handlers
from deadline_escalator.policies import Policy, PolicyRegistry, Tier

logger = logging.getLogger(__name__)


class SchedulerContext:
    """Owns every piece of mutable scheduler state.

    Args:
        provider: Source of tasks, queried once per tick.
        store: Where done/snooze follow-ups are written. Defaults to the
            provider when it implements the task store protocol.
        clock: POSIX-time source for ticks.
        idle_probe: Host idle-time source for idle-triggered mode.
        timer_factory: Passed through to the driver.
        handler_settings: Defaults for the built-in back-ends, which are
            always registered; replace any of them with register_handler.
    """

    def __init__(
        self,
        provider: AgendaProvider,
        *,
        store: TaskStore | None = None,
        clock: Callable[[], float] = time.time,
        idle_probe: IdleProbe | None = None,
        timer_factory: Callable[..., Any] | None = None,
        handler_settings: HandlerSettings | None = None,
    ) -> None:
        if store is None and isinstance(provider, TaskStore):
            store = provider
        self.registry = PolicyRegistry()
        self.dispatcher = ActionDispatcher(store=store)
        register_builtin_handlers(self.dispatcher, handler_settings)
        self.engine = EscalationEngine(
            self.registry, self.dispatcher, provider, clock=clock
        )
        driver_kwargs: dict[str, Any] = {"idle_probe": idle_probe}
        if timer_factory is not None:
            driver_kwargs["timer_factory"] = timer_factory
        self.driver = SchedulerDriver(self.engine.tick, **driver_kwargs)

    @classmethod
    def from_config(cls, config: EscalatorConfig, **kwargs: Any) -> SchedulerContext:
        """Build a context from *config*.

        Wires the markdown agenda, handler settings and every configured
        policy. Policies that fail validation are logged and skipped.
        """
        provider = MarkdownAgenda(config.agenda.paths)
        kwargs.setdefault("handler_settings", config.handlers)
        context = cls(provider, **kwargs)
        for name, tiers in config.policies.items():
            try:
                context.register_policy(name, tiers)
            except (InvalidPolicy, MalformedDuration) as exc:
                logger.error("Skipping policy %s: %s", name, exc)
        return context

    # -- delegation ----------------------------------------------------------------

    def register_policy(
        self, name: str, tiers: Iterable[Tier | Mapping[str, Any]]
    ) -> Policy:
        return self.registry.register(name, tiers)

    def register_handler(
        self, name: str, handler: ActionHandler, *, interactive: bool = False
    ) -> None:
        self.dispatcher.register_handler(name, handler, interactive=interactive)

    def tick(self, now: float | None = None) -> TickReport:
        return self.engine.tick(now)

    def start(self, interval_seconds: float = DEFAULT_INTERVAL) -> None:
        self.driver.start(interval_seconds)

    def stop(self) -> None:
        self.driver.stop()

    def on_user_action(self, dispatch_id: str, action_key: str) -> bool:
        return self.dispatcher.on_user_action(dispatch_id, action_key)

    def on_close(self, dispatch_id: str, reason: str | None = None) -> bool:
        return self.dispatcher.on_close(dispatch_id, reason)
