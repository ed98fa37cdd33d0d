"""Group raw step events into tests with a parent/child step tree.

Events arrive out of order but carry timestamps, so the whole buffer is
sorted once and then walked in a single pass.  Start events open a step,
end events close the matching one, and test events bound each test.

Commands that belong to the same chain share a ``groupId``; the first
command of a chain becomes the parent of the ones that follow it.  Steps
can be suppressed (``{log: false}`` as the last argument), and a
suppressed step takes the rest of its chain with it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from rewind.models.events import Command, EventKind, HookKind, RawEvent
from rewind.models.test_run import Step, Test

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

_ASSERT_COMMAND = "assert"


class AggregationError(Exception):
    """Raised when the event stream violates the instrumentation protocol."""


class MismatchedStepError(AggregationError):
    """A step end event has no open step and was never skipped."""

    def __init__(self, step_id: str, test_path: tuple[str, ...]) -> None:
        self.step_id = step_id
        self.test_path = test_path
        super().__init__(
            f"Mismatched step event: no open step {step_id!r} in test {' > '.join(test_path)!r}"
        )


class UnknownTestError(AggregationError):
    """An event references a test that never started."""

    def __init__(self, test_path: tuple[str, ...]) -> None:
        self.test_path = test_path
        super().__init__(f"Event references unknown test {' > '.join(test_path)!r}")


class StepLookup(Enum):
    """Outcome of matching a step end event against the open steps."""

    FOUND = "found"
    KNOWN_SKIPPED = "known_skipped"
    UNEXPECTED = "unexpected"


@dataclass
class _OpenStep:
    event: RawEvent
    step: Step


@dataclass
class _Group:
    group_id: str
    parent_id: str


def _command_of(event: RawEvent) -> Command:
    if event.command is None:
        raise AggregationError(
            f"Step event {event.kind.value} in {' > '.join(event.test_path)!r} has no command"
        )
    return event.command


def _sanitize_args(args: Iterable[Any]) -> list[Any]:
    # Object arguments are not rendered, so keep the payload small.
    return [{} if isinstance(arg, (Mapping, list, tuple)) else arg for arg in args]


class _StepWalker:
    """Single-use state for one aggregation pass."""

    def __init__(self, tests: dict[tuple[str, ...], Test], first_timestamp: float) -> None:
        self._tests = tests
        self._first_timestamp = first_timestamp
        # Latest opened step per (test path, step id).  Closed steps stay so a
        # repeated end event still finds them.
        self._open: dict[tuple[tuple[str, ...], str], _OpenStep] = {}
        self._skipped: set[str] = set()
        self._group: _Group | None = None
        self._current: Test | None = None
        self._current_path: tuple[str, ...] | None = None

    def walk(self, events: list[RawEvent]) -> None:
        for event in events:
            test = self._resolve_test(event)
            logger.debug("Processing %s event: %s", event.kind.value, event)

            if event.kind is EventKind.STEP_ENQUEUE:
                continue
            if event.kind is EventKind.STEP_START:
                self._on_step_start(event, test)
            elif event.kind is EventKind.STEP_END:
                self._on_step_end(event, test)
            elif event.kind is EventKind.TEST_END:
                test.duration = max(0.0, self._relative(event) - test.relative_start_time)
            elif event.kind is EventKind.TEST_START:
                pass
            else:
                raise AggregationError(f"Unhandled event kind: {event.kind!r}")

    def _relative(self, event: RawEvent) -> float:
        return event.millis - self._first_timestamp

    def _resolve_test(self, event: RawEvent) -> Test:
        if event.test_path == self._current_path and self._current is not None:
            return self._current

        test = self._tests.get(event.test_path)
        if test is None:
            raise UnknownTestError(event.test_path)
        if test is not self._current:
            self._group = None
        self._current = test
        self._current_path = event.test_path
        return test

    def _skip_reason(self, event: RawEvent) -> str | None:
        command = _command_of(event)
        last_arg = command.args[-1] if command.args else None
        if isinstance(last_arg, Mapping) and last_arg.get("log") is False:
            return "Command logging disabled"
        if command.id in self._skipped:
            return "Prior step event already skipped"
        if command.group_id and command.group_id in self._skipped:
            return "Parent skipped"
        return None

    def _on_step_start(self, event: RawEvent, test: Test) -> None:
        command = _command_of(event)

        reason = self._skip_reason(event)
        if reason:
            logger.debug("Test step %s skipped: %s", command.id, reason)
            self._skipped.add(command.id)
            if command.group_id:
                self._skipped.add(command.group_id)
            return

        parent_id: str | None = None
        if self._group and self._group.group_id == command.group_id:
            parent_id = self._group.parent_id
        elif command.group_id:
            self._group = _Group(group_id=command.group_id, parent_id=command.id)

        step = Step(
            id=command.id,
            name=command.name,
            args=_sanitize_args(command.args),
            parent_id=parent_id,
            command_id=command.command_id,
            category=event.category,
            hook=event.hook,
            relative_start_time=self._relative(event) - test.relative_start_time,
        )

        if command.command_id:
            target = test.find_step(command.command_id)
            if target is None:
                logger.debug(
                    "Assertion %s targets unknown step %s", command.id, command.command_id
                )
            elif step.id not in target.assert_ids:
                target.assert_ids.append(step.id)

        test.add_step(step)
        self._open[(event.test_path, step.id)] = _OpenStep(event=event, step=step)

    def _find_open_step(self, event: RawEvent) -> tuple[StepLookup, _OpenStep | None]:
        command = _command_of(event)
        item = self._open.get((event.test_path, command.id))
        if item is not None:
            return StepLookup.FOUND, item
        if command.id in self._skipped:
            return StepLookup.KNOWN_SKIPPED, None
        return StepLookup.UNEXPECTED, None

    def _on_step_end(self, event: RawEvent, test: Test) -> None:
        command = _command_of(event)

        lookup, item = self._find_open_step(event)
        if lookup is StepLookup.KNOWN_SKIPPED:
            return

        # afterEach hook steps are never finalized; their durations stay unset.
        if event.hook is HookKind.AFTER_EACH:
            logger.debug("afterEach hook steps are not supported, ignoring end of %s", command.id)
            return

        if lookup is StepLookup.UNEXPECTED or item is None:
            raise MismatchedStepError(command.id, event.test_path)

        step = item.step
        # Assertion messages can change between start and end.
        if command.name == _ASSERT_COMMAND:
            step.args = _sanitize_args(command.args)

        relative_end = self._relative(event) - test.relative_start_time
        step.duration = max(0.0, relative_end - step.relative_start_time)
        # Always overwrite so a successful retry clears an earlier failure.
        step.error = event.error


def _seed_tests(events: list[RawEvent], first_timestamp: float) -> dict[tuple[str, ...], Test]:
    tests: dict[tuple[str, ...], Test] = {}
    for event in events:
        if event.kind is not EventKind.TEST_START or event.test_path in tests:
            continue
        title = event.test_path[-1] if event.test_path else (event.file or "")
        tests[event.test_path] = Test(
            title=title,
            path=event.test_path,
            relative_path=event.file,
            relative_start_time=event.millis - first_timestamp,
        )
    return tests


def aggregate(events: Iterable[RawEvent]) -> list[Test]:
    """Reconstruct tests and their steps from raw instrumentation events.

    Arrival order is ignored: events are stably sorted by timestamp and that
    order alone decides structure.  Tests are returned in the order their
    ``test:start`` events occur.

    Raises:
        MismatchedStepError: A step end event has no open step and the step
            was never skipped.
        UnknownTestError: An event belongs to a test with no ``test:start``.
    """
    ordered = sorted(events, key=lambda event: event.millis)
    if not ordered:
        logger.debug("No test steps found")
        return []

    first_timestamp = ordered[0].millis
    tests = _seed_tests(ordered, first_timestamp)
    logger.debug("Found %d tests: %s", len(tests), [test.title for test in tests.values()])

    _StepWalker(tests, first_timestamp).walk(ordered)
    return list(tests.values())
