"""Tests for deadline_escalator.context."""

from __future__ import annotations

import datetime
import logging

from deadline_escalator.agenda import MarkdownAgenda, StaticAgendaProvider
from deadline_escalator.config import AgendaConfig, EscalatorConfig, HandlerSettings
from deadline_escalator.context import SchedulerContext
from deadline_escalator.driver import DriverState
from deadline_escalator.tasks import Task

NOW = datetime.datetime(2026, 10, 17, 12, 0).timestamp()


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=()):
        class _Timer:
            daemon = False

            def start(self):
                pass

            def cancel(self):
                pass

        timer = _Timer()
        timer.interval, timer.function, timer.args = interval, function, args
        self.timers.append(timer)
        return timer


def _task(heading: str, remaining: float) -> Task:
    deadline = datetime.datetime.fromtimestamp(NOW + remaining)
    return Task(heading, deadline, deadline.isoformat())


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_builtins_and_default_policy(self):
        ctx = SchedulerContext(StaticAgendaProvider())
        assert "message" in ctx.dispatcher.handler_names()
        assert ctx.registry.names() == ["default"]

    def test_markdown_provider_is_store(self, tmp_path):
        provider = MarkdownAgenda([tmp_path])
        ctx = SchedulerContext(provider)
        assert ctx.dispatcher.store is provider

    def test_static_provider_has_no_store(self):
        ctx = SchedulerContext(StaticAgendaProvider())
        assert ctx.dispatcher.store is None

    def test_contexts_are_independent(self):
        tasks = [_task("t", 100)]
        a = SchedulerContext(StaticAgendaProvider(tasks), clock=lambda: NOW)
        b = SchedulerContext(StaticAgendaProvider(tasks), clock=lambda: NOW)
        a.register_handler("message", lambda c, d: None)
        b.register_handler("message", lambda c, d: None)
        a.tick()
        assert a.engine.fire_state
        assert b.engine.fire_state == {}


# ---------------------------------------------------------------------------
# Delegation
# ---------------------------------------------------------------------------


class TestDelegation:
    def test_tick_fires_custom_handler(self):
        seen = []
        ctx = SchedulerContext(
            StaticAgendaProvider([_task("t", 300)]), clock=lambda: NOW
        )
        ctx.register_handler("ping", lambda c, d: seen.append(c.heading))
        ctx.register_policy("default", [{"time": "10m", "actions": ["ping"]}])
        report = ctx.tick()
        assert seen == ["t"]
        assert len(report.fired) == 1

    def test_start_stop(self):
        factory = TimerFactory()
        ctx = SchedulerContext(StaticAgendaProvider(), timer_factory=factory)
        ctx.start(30)
        assert ctx.driver.state is DriverState.RUNNING
        assert factory.timers[-1].interval == 30
        ctx.stop()
        assert ctx.driver.state is DriverState.STOPPED

    def test_follow_up_routes_to_dispatcher(self):
        ctx = SchedulerContext(StaticAgendaProvider())
        assert ctx.on_close("missing") is False
        assert ctx.on_user_action("missing", "done") is False


# ---------------------------------------------------------------------------
# from_config
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_policies_and_paths(self, tmp_path):
        note = tmp_path / "tasks.md"
        note.write_text("- [ ] Call back @deadline(2026-10-17 12:10)\n")
        config = EscalatorConfig(
            agenda=AgendaConfig(paths=(str(note),)),
            policies={"urgent": [{"time": "1d", "actions": ["message"]}]},
        )
        ctx = SchedulerContext.from_config(config, clock=lambda: NOW)
        assert ctx.registry.names() == ["default", "urgent"]
        assert isinstance(ctx.engine.provider, MarkdownAgenda)
        assert ctx.tick().task_count == 1

    def test_handler_settings_applied(self):
        config = EscalatorConfig(handlers=HandlerSettings(popup_duration=42))
        ctx = SchedulerContext.from_config(config)
        popup = ctx.dispatcher._handlers["popup-window"]
        assert popup.duration == 42

    def test_invalid_policy_skipped(self, caplog):
        config = EscalatorConfig(
            policies={
                "broken": [{"time": "1h"}],
                "badtime": [{"time": "soon", "actions": ["message"]}],
                "fine": [{"time": "1h", "actions": ["message"]}],
            }
        )
        with caplog.at_level(logging.ERROR):
            ctx = SchedulerContext.from_config(config)
        assert ctx.registry.names() == ["default", "fine"]
        assert "Skipping policy broken" in caplog.text
        assert "Skipping policy badtime" in caplog.text
