"""Configuration loader for deadline-escalator.

Reads ``escalator.yaml`` and provides typed access to all settings::

    interval: 50            # seconds or duration; negative = idle-triggered
    log_level: INFO
    agenda:
      paths: [~/notes/tasks.md, ~/notes/projects]
    handlers:
      audible_duration: 3
      popup_duration: 10
      notification_duration: 10
      slack_channel: C0123456
    policies:
      default:
        - {time: 1h, period: 2m, actions: [message]}
      urgent:
        - {time: -1d, period: 4h, actions: [slack]}
        - {time: 15m, period: 5m, actions: [system-notification, audible-alert]}
        - {time: 1d, actions: [popup-window], duration: 30}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deadline_escalator.driver import DEFAULT_INTERVAL
from deadline_escalator.durations import parse_duration


@dataclass(frozen=True)
class AgendaConfig:
    """Markdown files or directories scanned for task lines."""

    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class HandlerSettings:
    """Defaults for the built-in action back-ends.

    Tier parameters (``duration``, ``channel``) override these per tier.
    """

    audible_duration: int = 3
    popup_duration: int = 10
    notification_duration: int = 10
    slack_channel: str = ""


@dataclass(frozen=True)
class EscalatorConfig:
    """Top-level configuration."""

    interval: int = DEFAULT_INTERVAL
    log_level: str = "INFO"
    agenda: AgendaConfig = field(default_factory=AgendaConfig)
    handlers: HandlerSettings = field(default_factory=HandlerSettings)
    policies: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


def _build_sub(cls: type, data: dict[str, Any] | None) -> Any:
    """Build a frozen dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid}
    return cls(**filtered)


def _build_policies(raw: Any) -> dict[str, list[dict[str, Any]]]:
    """Keep policy entries shaped like ``name -> [tier mapping, ...]``.

    Tier contents are validated later, at registration.
    """
    if not isinstance(raw, dict):
        return {}
    policies = {}
    for name, tiers in raw.items():
        if isinstance(tiers, dict):
            tiers = [tiers]
        if isinstance(tiers, list):
            policies[str(name)] = [t for t in tiers if isinstance(t, dict)]
    return policies


def load_config(config_path: Path) -> EscalatorConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to escalator.yaml.

    Returns:
        Populated EscalatorConfig.

    Raises:
        FileNotFoundError: If config file does not exist.
        yaml.YAMLError: If YAML is malformed.
        MalformedDuration: If ``interval`` is not a valid duration.
    """
    raw = yaml.safe_load(Path(config_path).read_text())
    if not isinstance(raw, dict):
        return EscalatorConfig()

    interval = parse_duration(raw.get("interval"))

    agenda_raw = raw.get("agenda")
    if isinstance(agenda_raw, dict):
        paths = agenda_raw.get("paths", ())
        if isinstance(paths, str):
            paths = [paths]
        agenda = AgendaConfig(paths=tuple(str(p) for p in paths or ()))
    else:
        agenda = AgendaConfig()

    return EscalatorConfig(
        interval=interval if interval is not None else DEFAULT_INTERVAL,
        log_level=str(raw.get("log_level", "INFO")).upper(),
        agenda=agenda,
        handlers=_build_sub(HandlerSettings, raw.get("handlers")),
        policies=_build_policies(raw.get("policies")),
    )
