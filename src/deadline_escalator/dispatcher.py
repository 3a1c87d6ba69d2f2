"""Action dispatch and interactive follow-up handling.

Handlers are looked up by identifier at dispatch time and run in order.
A failing handler is logged and skipped; the rest of the list still runs.
Handlers registered as interactive (popups, desktop notifications) return a
dispatch id; the dispatcher keeps the merged context under that id until the
user picks a follow-up action or the notification closes. An id returned by
a handler not registered as interactive is logged and dropped.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from deadline_escalator.errors import HandlerError
from deadline_escalator.tasks import ActionContext

logger = logging.getLogger(__name__)

USER_ACTIONS = {
    "done": "Done",
    "hour": "1 hour",
    "day": "1 day",
    "week": "1 week",
}

SNOOZE_SECONDS = {
    "hour": 3600,
    "day": 86400,
    "week": 604800,
}


@runtime_checkable
class ActionHandler(Protocol):
    """Callable invoked with the merged context of a firing tier.

    Returns a dispatch id when the handler opened something the user can
    respond to, otherwise None.
    """

    def __call__(
        self, context: ActionContext, dispatcher: ActionDispatcher
    ) -> str | None: ...


@runtime_checkable
class TaskStore(Protocol):
    """Where user follow-up actions are applied."""

    def mark_done(self, context: ActionContext) -> None: ...

    def shift_deadline(self, context: ActionContext, seconds: int) -> None: ...


@dataclass
class DispatchResult:
    """Outcome of one ``dispatch`` call."""

    invoked: list[str] = field(default_factory=list)
    dispatch_ids: list[str] = field(default_factory=list)
    errors: list[HandlerError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ActionDispatcher:
    """Registry of action handlers plus the interactive-record table."""

    def __init__(self, store: TaskStore | None = None) -> None:
        self.store = store
        self._handlers: dict[str, ActionHandler] = {}
        self._interactive: set[str] = set()
        self._records: dict[str, ActionContext] = {}
        self._opened: set[str] = set()
        self._lock = threading.Lock()

    # -- handler registry ---------------------------------------------------

    def register_handler(
        self, name: str, handler: ActionHandler, *, interactive: bool = False
    ) -> None:
        """Register *handler* under *name*, replacing any previous one."""
        self._handlers[name] = handler
        if interactive:
            self._interactive.add(name)
        else:
            self._interactive.discard(name)

    def handler_names(self) -> list[str]:
        return sorted(self._handlers)

    def is_interactive(self, name: str) -> bool:
        return name in self._interactive

    @staticmethod
    def new_dispatch_id() -> str:
        """Fresh id for handlers that track their own notifications."""
        return uuid.uuid4().hex

    def open_interactive(self, context: ActionContext) -> str:
        """Assign a dispatch id and record *context* under it.

        Interactive handlers call this before handing the UI wait to another
        thread, so a fast callback always finds its record.
        """
        dispatch_id = self.new_dispatch_id()
        with self._lock:
            self._records[dispatch_id] = context
            self._opened.add(dispatch_id)
        return dispatch_id

    # -- dispatch -------------------------------------------------------------

    def dispatch(
        self, actions: tuple[str, ...] | list[str], context: ActionContext
    ) -> DispatchResult:
        """Invoke every action in order with *context*.

        Failures are isolated per handler: logged, collected in the result,
        and never stop the remaining actions.
        """
        result = DispatchResult()
        for action in actions:
            with self._lock:
                self._opened.clear()
            handler = self._handlers.get(action)
            if handler is None:
                err = HandlerError(action, "no handler registered")
                logger.error("%s (task %s)", err, context.heading)
                result.errors.append(err)
                continue
            try:
                dispatch_id = handler(context, self)
            except Exception as exc:
                logger.exception(
                    "Action %s failed for task %s", action, context.heading
                )
                message = str(exc) or type(exc).__name__
                result.errors.append(HandlerError(action, message))
                continue
            result.invoked.append(action)
            if dispatch_id and action not in self._interactive:
                logger.warning(
                    "Action %s is not interactive, ignoring dispatch id %s",
                    action,
                    dispatch_id,
                )
                with self._lock:
                    self._records.pop(dispatch_id, None)
            elif dispatch_id:
                with self._lock:
                    # ids from open_interactive are recorded already and may
                    # have been closed by now
                    if dispatch_id not in self._opened:
                        self._records[dispatch_id] = context
                result.dispatch_ids.append(dispatch_id)
                logger.debug(
                    "Recorded interactive dispatch %s (%s)", dispatch_id, action
                )
        return result

    # -- interactive follow-up -------------------------------------------------

    def record(self, dispatch_id: str) -> ActionContext | None:
        with self._lock:
            return self._records.get(dispatch_id)

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def on_user_action(self, dispatch_id: str, action_key: str) -> bool:
        """Apply a user's follow-up choice for an interactive dispatch.

        ``done`` marks the task complete; ``hour``, ``day`` and ``week``
        push the deadline out. The record is removed before the store is
        touched, so a later ``on_close`` for the same id does nothing.

        Returns:
            True if the action was applied, False otherwise.
        """
        if action_key not in USER_ACTIONS:
            logger.warning("Unknown user action %r for %s", action_key, dispatch_id)
            return False
        # claim the record first so a racing close or repeat click is a no-op
        with self._lock:
            context = self._records.pop(dispatch_id, None)
        if context is None:
            logger.debug("No interactive record for %s", dispatch_id)
            return False

        applied = False
        if self.store is None:
            logger.warning(
                "No task store configured, ignoring %s for %s",
                action_key,
                context.heading,
            )
        else:
            try:
                if action_key == "done":
                    self.store.mark_done(context)
                    logger.info("Marked done: %s", context.heading)
                else:
                    self.store.shift_deadline(context, SNOOZE_SECONDS[action_key])
                    logger.info(
                        "Snoozed %s by %s", context.heading, USER_ACTIONS[action_key]
                    )
                applied = True
            except Exception:
                logger.exception(
                    "Failed to apply %s to task %s", action_key, context.heading
                )
        logger.debug("Closed dispatch %s (user-action)", dispatch_id)
        return applied

    def on_close(self, dispatch_id: str, reason: str | None = None) -> bool:
        """Forget an interactive record. Unknown ids are a no-op.

        Returns:
            True if a record was removed.
        """
        with self._lock:
            removed = self._records.pop(dispatch_id, None)
        if removed is None:
            return False
        logger.debug("Closed dispatch %s (%s)", dispatch_id, reason or "closed")
        return True
