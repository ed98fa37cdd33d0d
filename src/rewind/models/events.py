"""Raw instrumentation events emitted by a browser test process.

Events are written by the in-browser support code while a spec runs and
are consumed in one pass once the run completes.  Each event is a tagged
variant: ``kind`` decides which of the optional fields are meaningful.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


class MalformedEventError(ValueError):
    """Raised when a serialized event cannot be decoded."""


class EventKind(Enum):
    """Kind of a raw instrumentation event."""

    STEP_ENQUEUE = "step:enqueue"
    STEP_START = "step:start"
    STEP_END = "step:end"
    TEST_START = "test:start"
    TEST_END = "test:end"

    @property
    def is_step(self) -> bool:
        """Return ``True`` for events scoped to a single step."""
        return self in {EventKind.STEP_ENQUEUE, EventKind.STEP_START, EventKind.STEP_END}


class StepCategory(Enum):
    """Category a step is rendered under."""

    ASSERTION = "assertion"
    COMMAND = "command"
    OTHER = "other"


class HookKind(Enum):
    """Per-test hook a step ran in.  ``None`` on an event means the test body."""

    BEFORE_EACH = "beforeEach"
    AFTER_EACH = "afterEach"


@dataclass(frozen=True)
class TestError:
    """Error reported for a step or a test."""

    message: str
    name: str = "Error"
    line: int | None = None
    column: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "message": self.message}
        if self.line is not None:
            data["line"] = self.line
        if self.column is not None:
            data["column"] = self.column
        return data


@dataclass(frozen=True)
class Command:
    """Browser command a step event describes."""

    id: str
    name: str
    args: tuple[Any, ...] = ()
    group_id: str | None = None
    """Chainer id shared by sibling commands attached to one parent."""

    command_id: str | None = None
    """Set on assertions: the id of the command being asserted on."""


@dataclass(frozen=True)
class RawEvent:
    """A single timestamped instrumentation notification."""

    kind: EventKind
    timestamp: float | str
    """Milliseconds, or an ISO-8601 string."""

    test_path: tuple[str, ...]
    command: Command | None = None
    category: StepCategory = StepCategory.OTHER
    hook: HookKind | None = None
    error: TestError | None = None
    file: str | None = None

    def __post_init__(self) -> None:
        # Fail at construction rather than halfway through aggregation.
        to_millis(self.timestamp)

    @property
    def millis(self) -> float:
        """Timestamp normalised to milliseconds."""
        return to_millis(self.timestamp)


def to_millis(timestamp: float | str) -> float:
    """Convert a numeric or ISO-8601 timestamp to milliseconds."""
    if isinstance(timestamp, bool):
        raise MalformedEventError(f"Invalid timestamp: {timestamp!r}")
    if isinstance(timestamp, (int, float)):
        return float(timestamp)
    if not isinstance(timestamp, str) or not timestamp.strip():
        raise MalformedEventError(f"Invalid timestamp: {timestamp!r}")

    text = timestamp.strip()
    try:
        return float(text)
    except ValueError:
        pass

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise MalformedEventError(f"Invalid timestamp: {timestamp!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.timestamp() * 1000


# ── Decoding ─────────────────────────────────────────────────────


def _parse_error(raw: Any) -> TestError | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedEventError(f"Error must be an object, got {type(raw).__name__}")

    line = raw.get("line")
    column = raw.get("column")
    return TestError(
        message=str(raw.get("message", "")),
        name=str(raw.get("name") or "Error"),
        line=int(line) if isinstance(line, (int, float)) else None,
        column=int(column) if isinstance(column, (int, float)) else None,
    )


def _parse_command(raw: Any) -> Command | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedEventError(f"Command must be an object, got {type(raw).__name__}")
    if "id" not in raw or "name" not in raw:
        raise MalformedEventError(f"Command requires 'id' and 'name': {raw!r}")

    args = raw.get("args") or []
    if not isinstance(args, list):
        raise MalformedEventError(f"Command args must be a list: {raw!r}")

    group_id = raw.get("groupId")
    command_id = raw.get("commandId")
    return Command(
        id=str(raw["id"]),
        name=str(raw["name"]),
        args=tuple(args),
        group_id=str(group_id) if group_id else None,
        command_id=str(command_id) if command_id else None,
    )


def parse_raw_event(data: Mapping[str, Any]) -> RawEvent:
    """Decode one serialized event as written by the browser support code.

    Expected shape (camelCase, as emitted by the plugin)::

        {"event": "step:start", "timestamp": "2024-01-01T00:00:00.000Z",
         "test": ["suite", "test title"], "file": "cypress/e2e/a.cy.ts",
         "command": {"id": "cmd-1", "groupId": "chainer-1", "name": "click",
                     "args": ["#submit"]},
         "category": "command", "hook": null, "error": null}

    Raises:
        MalformedEventError: If required fields are missing or invalid.
    """
    raw_kind = data.get("event")
    try:
        kind = EventKind(raw_kind)
    except ValueError as exc:
        raise MalformedEventError(f"Unknown event kind: {raw_kind!r}") from exc

    if "timestamp" not in data:
        raise MalformedEventError(f"Event {raw_kind} has no timestamp")

    test_path = data.get("test") or []
    if not isinstance(test_path, list):
        raise MalformedEventError(f"Event {raw_kind} has an invalid test path: {test_path!r}")

    command = _parse_command(data.get("command"))
    if kind.is_step and command is None:
        raise MalformedEventError(f"Step event {raw_kind} has no command")

    try:
        category = StepCategory(data.get("category") or "other")
    except ValueError:
        category = StepCategory.OTHER

    raw_hook = data.get("hook")
    try:
        hook = HookKind(raw_hook) if raw_hook else None
    except ValueError:
        hook = None

    file = data.get("file")
    return RawEvent(
        kind=kind,
        timestamp=data["timestamp"],
        test_path=tuple(str(part) for part in test_path),
        command=command,
        category=category,
        hook=hook,
        error=_parse_error(data.get("error")),
        file=str(file) if file else None,
    )


def load_events(path: Path) -> list[RawEvent]:
    """Read events from a JSON array or a JSON-lines file."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []

    try:
        if text.startswith("["):
            records = json.loads(text)
        else:
            records = [json.loads(line) for line in text.splitlines() if line.strip()]
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"{path}: invalid JSON ({exc})") from exc

    if not isinstance(records, list):
        raise MalformedEventError(f"{path}: expected a list of events")

    events: list[RawEvent] = []
    for record in records:
        if not isinstance(record, dict):
            raise MalformedEventError(f"{path}: event must be an object, got {record!r}")
        events.append(parse_raw_event(record))
    return events
