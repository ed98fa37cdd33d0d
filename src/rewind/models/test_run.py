"""Reconstructed tests and steps, and their collector payload form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rewind.models.events import HookKind, StepCategory, TestError

_EVENT_BUCKETS = ("beforeAll", "afterAll", "beforeEach", "afterEach", "main")


class TestResult(Enum):
    """Outcome of a test as determined by the host runner."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


def _stringify_arg(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


@dataclass
class Step:
    """One command or assertion executed by a test."""

    id: str
    name: str
    args: list[Any] = field(default_factory=list)
    parent_id: str | None = None
    command_id: str | None = None
    category: StepCategory = StepCategory.OTHER
    hook: HookKind | None = None
    relative_start_time: float = 0.0
    """Milliseconds since the owning test started."""

    duration: float | None = None
    """Milliseconds; ``None`` until the matching end event is seen."""

    error: TestError | None = None
    assert_ids: list[str] = field(default_factory=list)

    def to_user_action(self, scope: list[str]) -> dict[str, Any]:
        return {
            "data": {
                "id": self.id,
                "parentId": self.parent_id,
                "category": self.category.value,
                "command": {
                    "name": self.name,
                    "arguments": [_stringify_arg(arg) for arg in self.args],
                },
                "scope": scope,
                "error": self.error.to_dict() if self.error else None,
                "relativeStartTime": self.relative_start_time,
                "duration": self.duration,
                "assertIds": list(self.assert_ids),
            }
        }


@dataclass
class Test:
    """A reconstructed test case with its flat list of steps."""

    title: str
    path: tuple[str, ...]
    relative_start_time: float
    """Milliseconds since the first event of the run."""

    relative_path: str | None = None
    duration: float | None = None
    result: TestResult = TestResult.PASSED
    error: TestError | None = None
    attempt: int = 1
    steps: list[Step] = field(default_factory=list)
    _by_id: dict[str, Step] = field(default_factory=dict, init=False, repr=False, compare=False)

    def add_step(self, step: Step) -> None:
        self.steps.append(step)
        self._by_id[step.id] = step

    def find_step(self, step_id: str) -> Step | None:
        """Return the most recently added step with *step_id*."""
        return self._by_id.get(step_id)

    def to_payload(self, test_id: int) -> dict[str, Any]:
        """Serialize to the collector's per-test metadata shape.

        Steps are bucketed by the hook they ran in; steps outside any
        per-test hook land in ``main``.
        """
        events: dict[str, list[dict[str, Any]]] = {bucket: [] for bucket in _EVENT_BUCKETS}
        scope = list(self.path)
        for step in self.steps:
            bucket = step.hook.value if step.hook else "main"
            events[bucket].append(step.to_user_action(scope))

        return {
            "id": test_id,
            "attempt": self.attempt,
            "approximateDuration": self.duration or 0,
            "relativeStartTime": self.relative_start_time,
            "result": self.result.value,
            "error": self.error.to_dict() if self.error else None,
            "source": {
                "title": self.title,
                "scope": list(self.path[:-1]),
            },
            "events": events,
        }
