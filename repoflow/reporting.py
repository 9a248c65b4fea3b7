"""Structured events and run summaries.

Everything the runtime and the action handlers want to tell the user is an `Event`: a level
(INFO/WARN/ERROR), a short code (`TASK_APPLY`, `TASK_SKIP`, ...), the repository it concerns,
a message, and optional string details. Events go to an `EventSink`; the runtime does not care
how they are rendered.

`SummaryReporter` sits between the runtime and the sink. It forwards each event and tallies
counts per code and per level under a lock, so totals do not depend on the order in which
concurrent repositories finish. `render_summary_line()` turns the tally into the one-line
summary printed at the end of a multi-repository run.
"""

from __future__ import annotations

import sys
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TextIO


class EventLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


TASK_PLAN = "TASK_PLAN"
TASK_APPLY = "TASK_APPLY"
TASK_SKIP = "TASK_SKIP"
TASK_ERROR = "TASK_ERROR"
TASK_CANCEL = "TASK_CANCEL"


@dataclass(frozen=True)
class Event:
    level: EventLevel
    code: str
    message: str
    repository: str = ""
    details: dict[str, str] = field(default_factory=dict)

    def with_repository(self, repository: str) -> "Event":
        if self.repository:
            return self
        return Event(level=self.level, code=self.code, message=self.message, repository=repository, details=self.details)


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class StderrEventSink:
    """Print events as `[repoflow] LEVEL CODE repo: message k=v` lines."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        line = format_event(event)
        with self._lock:
            print(line, file=self.stream or sys.stderr)


def format_event(event: Event) -> str:
    parts = [f"[repoflow] {event.level.value:<5} {event.code}"]
    if event.repository:
        parts.append(f"{event.repository}:")
    parts.append(event.message)
    for key in sorted(event.details):
        parts.append(f"{key}={event.details[key]}")
    return " ".join(parts)


@dataclass(frozen=True)
class SummaryData:
    total_repositories: int = 0
    event_counts: dict[str, int] = field(default_factory=dict)
    level_counts: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0
    duration_human: str = "0s"


class SummaryReporter:
    def __init__(self, sink: EventSink | None = None, *, clock=time.monotonic) -> None:
        self.sink = sink
        self._clock = clock
        self._start = clock()
        self._lock = threading.Lock()
        self._events: Counter[str] = Counter()
        self._levels: Counter[str] = Counter()
        self._repositories: set[str] = set()

    def record_repository(self, repository: str) -> None:
        with self._lock:
            self._repositories.add(repository)

    def report(self, event: Event) -> None:
        with self._lock:
            self._events[event.code] += 1
            self._levels[event.level.value] += 1
        if self.sink is not None:
            self.sink.emit(event)

    def summary(self) -> SummaryData:
        elapsed = max(0.0, self._clock() - self._start)
        with self._lock:
            return SummaryData(
                total_repositories=len(self._repositories),
                event_counts=dict(self._events),
                level_counts=dict(self._levels),
                duration_ms=int(elapsed * 1000),
                duration_human=_human_duration(elapsed),
            )


def _human_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m{rest}s"


def render_summary_line(data: SummaryData) -> str:
    """Summary for multi-repository runs; empty when at most one repository was processed."""
    if data.total_repositories <= 1:
        return ""
    parts = [f"Summary: total.repos={data.total_repositories}"]
    for code in sorted(data.event_counts):
        parts.append(f"{code}={data.event_counts[code]}")
    parts.append(f"{EventLevel.WARN.value}={data.level_counts.get(EventLevel.WARN.value, 0)}")
    parts.append(f"{EventLevel.ERROR.value}={data.level_counts.get(EventLevel.ERROR.value, 0)}")
    parts.append(f"duration_human={data.duration_human or '0s'}")
    parts.append(f"duration_ms={data.duration_ms}")
    return " ".join(parts)
