"""Built-in action back-ends.

``message`` and ``audible-alert`` are fire-and-forget. ``popup-window``
(zenity) and ``system-notification`` (notify-send) are interactive: they
open a dispatch record, wait for the user on a daemon thread, then report
the choice through ``on_user_action`` or ``on_close``. Every subprocess is
bounded by the display duration plus a grace period.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import IO, Any

from deadline_escalator.config import HandlerSettings
from deadline_escalator.dispatcher import USER_ACTIONS, ActionDispatcher
from deadline_escalator.durations import parse_duration
from deadline_escalator.slack_client import SlackClient
from deadline_escalator.tasks import ActionContext

logger = logging.getLogger(__name__)

APP_NAME = "deadline-escalator"
_GRACE_SECONDS = 5


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def describe_remaining(seconds: float) -> str:
    """Countdown text such as ``in 1h 05m`` or ``overdue by 2d 3h``."""
    total = int(abs(seconds)) // 60
    days, rem = divmod(total, 1440)
    hours, minutes = divmod(rem, 60)
    if days:
        span = f"{days}d {hours}h"
    elif hours:
        span = f"{hours}h {minutes:02d}m"
    else:
        span = f"{minutes}m"
    return f"overdue by {span}" if seconds < 0 else f"in {span}"


def format_message(context: ActionContext) -> str:
    """One-line notification text for a firing tier."""
    when = context.deadline.strftime("%Y-%m-%d %H:%M")
    return (
        f"{context.heading} -- due {when} "
        f"({describe_remaining(context.time_remaining)})"
    )


def _duration(context: ActionContext, default: int) -> int:
    """Tier ``duration`` parameter in seconds, else *default*."""
    try:
        value = parse_duration(context.get("duration"))
    except ValueError:
        logger.warning("Ignoring bad duration %r", context.get("duration"))
        return default
    return value if value and value > 0 else default


def _require(executable: str) -> str:
    path = shutil.which(executable)
    if path is None:
        raise RuntimeError(f"{executable} not found on PATH")
    return path


def _wait_in_background(
    name: str,
    dispatch_id: str,
    dispatcher: ActionDispatcher,
    command: list[str],
    timeout: float,
    choose: Callable[[subprocess.CompletedProcess], str | None],
) -> None:
    """Run *command* on a daemon thread and route the result to callbacks."""

    def _run() -> None:
        try:
            proc = subprocess.run(
                command, capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            dispatcher.on_close(dispatch_id, "timeout")
            return
        except OSError:
            logger.exception("%s could not be shown", name)
            dispatcher.on_close(dispatch_id, "error")
            return
        key = choose(proc)
        if key is None:
            dispatcher.on_close(dispatch_id, "dismissed")
        else:
            dispatcher.on_user_action(dispatch_id, key)

    thread = threading.Thread(
        target=_run, name=f"{name}-{dispatch_id[:8]}", daemon=True
    )
    try:
        thread.start()
    except RuntimeError:
        dispatcher.on_close(dispatch_id, "error")
        raise


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


@dataclass
class MessageAction:
    """Print the heading and deadline; also logged at INFO."""

    stream: IO[str] | None = None

    def __call__(self, context: ActionContext, dispatcher: ActionDispatcher) -> None:
        text = format_message(context)
        logger.info("Reminder: %s", text)
        print(f"TODO: {text}", file=self.stream or sys.stdout, flush=True)


@dataclass
class AudibleAlert:
    """Ring the terminal bell once a second for ``duration`` seconds."""

    duration: int = 3
    stream: IO[str] | None = None
    timer_factory: Callable[..., Any] = threading.Timer

    def __call__(self, context: ActionContext, dispatcher: ActionDispatcher) -> None:
        self._ring(_duration(context, self.duration))

    def _ring(self, remaining: int) -> None:
        stream = self.stream or sys.stdout
        stream.write("\a")
        stream.flush()
        if remaining > 1:
            timer = self.timer_factory(1.0, self._ring, args=(remaining - 1,))
            timer.daemon = True
            timer.start()


@dataclass
class PopupWindow:
    """zenity dialog with Done / snooze buttons, auto-dismissed after ``duration``."""

    duration: int = 10

    def command(self, context: ActionContext, duration: int) -> list[str]:
        cmd = [
            _require("zenity"),
            "--question",
            f"--title={APP_NAME}",
            f"--text={format_message(context)}",
            f"--ok-label={USER_ACTIONS['done']}",
            "--cancel-label=Dismiss",
        ]
        for key in ("hour", "day", "week"):
            cmd.append(f"--extra-button={USER_ACTIONS[key]}")
        cmd.append(f"--timeout={duration}")
        return cmd

    @staticmethod
    def choose(proc: subprocess.CompletedProcess) -> str | None:
        """Map zenity's exit status and output to an action key.

        OK exits 0; an extra button exits 1 and prints its label; Dismiss
        exits 1 silently; the timeout exits 5.
        """
        if proc.returncode == 0:
            return "done"
        label = (proc.stdout or "").strip()
        for key, text in USER_ACTIONS.items():
            if label == text:
                return key
        return None

    def __call__(self, context: ActionContext, dispatcher: ActionDispatcher) -> str:
        duration = _duration(context, self.duration)
        command = self.command(context, duration)
        dispatch_id = dispatcher.open_interactive(context)
        _wait_in_background(
            "popup-window",
            dispatch_id,
            dispatcher,
            command,
            duration + _GRACE_SECONDS,
            self.choose,
        )
        return dispatch_id


@dataclass
class SystemNotification:
    """Desktop notification via ``notify-send --wait`` with action buttons."""

    duration: int = 10

    def command(self, context: ActionContext, duration: int) -> list[str]:
        cmd = [
            _require("notify-send"),
            f"--app-name={APP_NAME}",
            "--wait",
            f"--expire-time={duration * 1000}",
        ]
        for key, label in USER_ACTIONS.items():
            cmd.append(f"--action={key}={label}")
        cmd.extend([context.heading, format_message(context)])
        return cmd

    @staticmethod
    def choose(proc: subprocess.CompletedProcess) -> str | None:
        """notify-send prints the chosen action key, nothing on close."""
        key = (proc.stdout or "").strip()
        return key if key in USER_ACTIONS else None

    def __call__(self, context: ActionContext, dispatcher: ActionDispatcher) -> str:
        duration = _duration(context, self.duration)
        command = self.command(context, duration)
        dispatch_id = dispatcher.open_interactive(context)
        _wait_in_background(
            "system-notification",
            dispatch_id,
            dispatcher,
            command,
            duration + _GRACE_SECONDS,
            self.choose,
        )
        return dispatch_id


def email_action(context: ActionContext, dispatcher: ActionDispatcher) -> None:
    raise NotImplementedError("email action is not implemented yet")


@dataclass
class SlackAction:
    """Post the reminder to a Slack channel; skipped when Slack is unset."""

    channel: str = ""
    client_factory: Callable[[], SlackClient | None] = field(
        default=SlackClient.from_env_optional
    )

    def __call__(self, context: ActionContext, dispatcher: ActionDispatcher) -> None:
        client = self.client_factory()
        if client is None:
            logger.warning("Slack not configured, skipping %r", context.heading)
            return
        channel = context.get("channel") or self.channel
        client.post_message(f":alarm_clock: {format_message(context)}", channel)


def register_builtin_handlers(
    dispatcher: ActionDispatcher, settings: HandlerSettings | None = None
) -> None:
    """Register every built-in back-end on *dispatcher*."""
    settings = settings or HandlerSettings()
    dispatcher.register_handler("message", MessageAction())
    dispatcher.register_handler(
        "audible-alert", AudibleAlert(duration=settings.audible_duration)
    )
    dispatcher.register_handler(
        "popup-window",
        PopupWindow(duration=settings.popup_duration),
        interactive=True,
    )
    dispatcher.register_handler(
        "system-notification",
        SystemNotification(duration=settings.notification_duration),
        interactive=True,
    )
    dispatcher.register_handler("email", email_action)
    dispatcher.register_handler("slack", SlackAction(channel=settings.slack_channel))
