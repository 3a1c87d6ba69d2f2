"""deadline-escalator: escalating, repeating reminders for tasks with deadlines."""

__version__ = "0.1.0"

from deadline_escalator.agenda import (
    AgendaProvider,
    AgendaResult,
    MarkdownAgenda,
    StaticAgendaProvider,
)
from deadline_escalator.context import SchedulerContext
from deadline_escalator.dispatcher import (
    USER_ACTIONS,
    ActionDispatcher,
    ActionHandler,
    DispatchResult,
    TaskStore,
)
from deadline_escalator.driver import DriverState, SchedulerDriver
from deadline_escalator.durations import format_duration, parse_duration
from deadline_escalator.engine import EscalationEngine, TickReport
from deadline_escalator.errors import (
    EscalatorError,
    HandlerError,
    InvalidDeadline,
    InvalidPolicy,
    MalformedDuration,
    ProviderReadError,
    SchedulerStartError,
    TaskNotFoundError,
    UnknownPolicy,
)
from deadline_escalator.policies import Policy, PolicyRegistry, Tier
from deadline_escalator.tasks import ActionContext, SourceLocation, Task

__all__ = [
    # agenda
    "AgendaProvider",
    "AgendaResult",
    "MarkdownAgenda",
    "StaticAgendaProvider",
    # context
    "SchedulerContext",
    # dispatcher
    "USER_ACTIONS",
    "ActionDispatcher",
    "ActionHandler",
    "DispatchResult",
    "TaskStore",
    # driver
    "DriverState",
    "SchedulerDriver",
    # durations
    "format_duration",
    "parse_duration",
    # engine
    "EscalationEngine",
    "TickReport",
    # errors
    "EscalatorError",
    "HandlerError",
    "InvalidDeadline",
    "InvalidPolicy",
    "MalformedDuration",
    "ProviderReadError",
    "SchedulerStartError",
    "TaskNotFoundError",
    "UnknownPolicy",
    # policies
    "Policy",
    "PolicyRegistry",
    "Tier",
    # tasks
    "ActionContext",
    "SourceLocation",
    "Task",
]
