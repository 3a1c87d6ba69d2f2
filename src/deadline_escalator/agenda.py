"""Agenda providers: where the engine gets its tasks each tick.

The markdown provider reads task lines out of notes::

    ---
    policy: urgent
    project: thesis
    ---
    - [ ] Submit draft @deadline(2026-10-20 17:00)
    - [ ] Book venue @deadline(2026-11-01) @policy(default)
    - [x] Already handled @deadline(2026-10-01)

Frontmatter keys become ``extra_fields`` for every task in the file; a
``policy`` key sets the file's default policy. The same class doubles as
the task store that follow-up actions (done / snooze) write back to.
"""

from __future__ import annotations

import datetime
import logging
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml

from deadline_escalator.errors import ProviderReadError, TaskNotFoundError
from deadline_escalator.tasks import (
    DEFAULT_POLICY,
    ActionContext,
    SourceLocation,
    Task,
)

logger = logging.getLogger(__name__)

_FM_RE = re.compile(r"^---\s*\n(.*?)\n---", re.DOTALL)
_TASK_RE = re.compile(r"^(\s*-\s+\[)([ xX])(\]\s+)(.*)$")
_DEADLINE_RE = re.compile(r"@deadline\(([^)]*)\)")
_POLICY_RE = re.compile(r"@policy\(([\w.-]+)\)")
_DATE_FORMAT = "%Y-%m-%d"
_DATETIME_FORMAT = "%Y-%m-%d %H:%M"
_DATETIME_SECONDS_FORMAT = "%Y-%m-%d %H:%M:%S"
_SECONDS_RE = re.compile(r"[0-9]{2}:[0-9]{2}:[0-9]{2}")


@dataclass
class AgendaResult:
    """Tasks gathered in one pass plus per-source read failures."""

    tasks: list[Task] = field(default_factory=list)
    errors: list[ProviderReadError] = field(default_factory=list)


@runtime_checkable
class AgendaProvider(Protocol):
    """Yields the current task list once per tick."""

    def list_tasks(self) -> AgendaResult: ...


class StaticAgendaProvider:
    """Provider over a fixed, replaceable list of tasks."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self.tasks = list(tasks)

    def list_tasks(self) -> AgendaResult:
        return AgendaResult(tasks=list(self.tasks))


# ---------------------------------------------------------------------------
# Deadline text
# ---------------------------------------------------------------------------


def parse_deadline(raw: str) -> datetime.datetime:
    """Parse ``YYYY-MM-DD``, ``YYYY-MM-DD HH:MM`` or any ISO 8601 timestamp.

    The short forms are local naive time; an ISO offset is kept.

    Raises:
        ValueError: If the text matches none of these forms.
    """
    text = raw.strip()
    for fmt in (_DATETIME_FORMAT, _DATE_FORMAT):
        try:
            return datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return datetime.datetime.fromisoformat(text)


def format_deadline(value: datetime.datetime, template: str = "") -> str:
    """Inverse of ``parse_deadline``.

    *template* is the deadline text being replaced; its shape (ISO ``T``
    separator, seconds, date-only) is kept where the new value allows it.
    Timezone-aware values always render in ISO form with their offset.
    """
    template = template.strip()
    seconds = value.second != 0 or bool(_SECONDS_RE.search(template))
    if value.tzinfo is not None or "T" in template:
        return value.isoformat(timespec="seconds" if seconds else "minutes")
    if seconds:
        return value.strftime(_DATETIME_SECONDS_FORMAT)
    midnight = value.hour == 0 and value.minute == 0
    if midnight and len(template) <= len("YYYY-MM-DD"):
        return value.strftime(_DATE_FORMAT)
    return value.strftime(_DATETIME_FORMAT)


def _strip_markers(text: str) -> str:
    text = _DEADLINE_RE.sub("", text)
    text = _POLICY_RE.sub("", text)
    return " ".join(text.split())


# ---------------------------------------------------------------------------
# Markdown notes
# ---------------------------------------------------------------------------


def _read_frontmatter(text: str, path: Path) -> dict:
    """Parse YAML frontmatter from note text. Returns {} when absent or bad."""
    m = _FM_RE.match(text)
    if not m:
        return {}
    try:
        fm = yaml.safe_load(m.group(1))
    except yaml.YAMLError:
        logger.warning("Malformed YAML frontmatter in %s", path)
        return {}
    return fm if isinstance(fm, dict) else {}


def parse_task_lines(text: str, path: Path) -> list[Task]:
    """Extract open tasks carrying a ``@deadline(...)`` marker from a note.

    Lines with an unparseable deadline are logged and skipped.
    """
    fm = _read_frontmatter(text, path)
    file_policy = str(fm.get("policy") or DEFAULT_POLICY)
    extras = {k: v for k, v in fm.items() if k != "policy"}

    tasks = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        m = _TASK_RE.match(line)
        if not m or m.group(2) != " ":
            continue
        body = m.group(4)
        dm = _DEADLINE_RE.search(body)
        if not dm:
            continue
        raw_deadline = dm.group(1).strip()
        try:
            deadline = parse_deadline(raw_deadline)
        except ValueError:
            logger.warning(
                "Unparseable deadline %r at %s:%d", raw_deadline, path, lineno
            )
            continue
        pm = _POLICY_RE.search(body)
        heading = _strip_markers(body)
        tasks.append(
            Task(
                heading=heading,
                deadline=deadline,
                raw_deadline=raw_deadline,
                policy_name=pm.group(1) if pm else file_policy,
                source_location=SourceLocation(path=path, line=lineno),
                extra_fields=dict(extras),
            )
        )
    return tasks


class MarkdownAgenda:
    """Agenda provider and task store over markdown files or directories."""

    def __init__(self, paths: Iterable[Path | str]) -> None:
        self.paths = [Path(p).expanduser() for p in paths]
        self._write_lock = threading.Lock()

    def _sources(self) -> tuple[list[Path], list[ProviderReadError]]:
        files: list[Path] = []
        errors: list[ProviderReadError] = []
        for path in self.paths:
            if path.is_dir():
                files.extend(sorted(path.rglob("*.md")))
            elif path.is_file():
                files.append(path)
            else:
                errors.append(
                    ProviderReadError(str(path), "no such file or directory")
                )
        return files, errors

    def list_tasks(self) -> AgendaResult:
        files, errors = self._sources()
        result = AgendaResult(errors=errors)
        for path in files:
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                result.errors.append(ProviderReadError(str(path), str(exc)))
                continue
            result.tasks.extend(parse_task_lines(text, path))
        for err in result.errors:
            logger.warning("%s", err)
        return result

    # -- task store -------------------------------------------------------------

    def _locate(self, context: ActionContext) -> tuple[Path, list[str], int]:
        loc = context.source_location
        if not isinstance(loc, SourceLocation):
            raise TaskNotFoundError(f"No markdown location for {context.heading!r}")
        try:
            with loc.path.open(encoding="utf-8", newline="") as fh:
                lines = fh.read().splitlines(keepends=True)
        except OSError as exc:
            raise TaskNotFoundError(f"Cannot read {loc.path}: {exc}") from exc
        idx = loc.line - 1
        if 0 <= idx < len(lines):
            m = _TASK_RE.match(lines[idx].rstrip("\r\n"))
            if m and _strip_markers(m.group(4)) == context.heading:
                return loc.path, lines, idx
        raise TaskNotFoundError(f"Task {context.heading!r} moved or was removed")

    @staticmethod
    def _write(path: Path, lines: list[str]) -> None:
        # newline="" keeps each line's own ending (CRLF notes stay CRLF)
        path.write_text("".join(lines), encoding="utf-8", newline="")

    def mark_done(self, context: ActionContext) -> None:
        """Tick the task's checkbox."""
        with self._write_lock:
            path, lines, idx = self._locate(context)
            body, ending = _split_ending(lines[idx])
            lines[idx] = _TASK_RE.sub(r"\1x\3\4", body, count=1) + ending
            self._write(path, lines)

    def shift_deadline(self, context: ActionContext, seconds: int) -> None:
        """Move the task's deadline by *seconds*, rewriting the marker.

        The shift starts from the deadline currently written on the line,
        so an edit made while a notification was open is respected.
        """
        with self._write_lock:
            path, lines, idx = self._locate(context)
            dm = _DEADLINE_RE.search(lines[idx])
            if dm is None:
                raise TaskNotFoundError(f"Task {context.heading!r} lost its deadline")
            raw = dm.group(1).strip()
            try:
                current = parse_deadline(raw)
            except ValueError as exc:
                raise TaskNotFoundError(
                    f"Task {context.heading!r} has unparseable deadline {raw!r}"
                ) from exc
            new_deadline = current + datetime.timedelta(seconds=seconds)
            marker = f"@deadline({format_deadline(new_deadline, raw)})"
            lines[idx] = lines[idx][: dm.start()] + marker + lines[idx][dm.end() :]
            self._write(path, lines)


def _split_ending(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body) :]
