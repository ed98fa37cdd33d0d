"""Lifecycle reporter that host test-runner plugins drive.

A reporter lives for exactly one run::

    reporter = RunReporter(RunnerInfo(name="cypress", version="13.6.0"), config)
    reporter.on_suite_begin()
    reporter.on_test_begin(TestIdContext(title="logs in", scope=("auth",)))
    reporter.on_test_end(TestRecord(events=events, result=TestResult.PASSED))
    await reporter.on_suite_end()

Results are buffered until ``on_suite_end``, where each record's events are
aggregated into tests and the payloads are uploaded concurrently.
"""

from __future__ import annotations

import functools
import dataclasses
import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from rewind.aggregation import AggregationError, aggregate
from rewind.delivery import exponential_backoff_retry, linear_backoff_retry, run_all
from rewind.models.test_run import Test, TestResult
from rewind.telemetry import record_metric_count, record_metric_distribution, start_span
from rewind.utils.ci_context import detect_ci_context
from rewind.utils.collector_client import post_test_run_async

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from rewind.config import RewindConfig
    from rewind.models.events import RawEvent, TestError

    Uploader = Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]

logger = logging.getLogger(__name__)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m")
_CALL_LOG_MARKER = "Call log:"
_MAX_ERROR_LINES = 10
_UNKNOWN_ERROR = "Unknown error"


class ReporterStateError(RuntimeError):
    """Raised when lifecycle hooks are called out of order."""


def _clean_error_message(message: str) -> str:
    """Strip terminal colours and drop the call log a runner appends to errors.

    At most the first ten lines are kept.
    """
    lines = _ANSI_ESCAPE_RE.sub("", message).split("\n")
    end = _MAX_ERROR_LINES
    for index, line in enumerate(lines[:_MAX_ERROR_LINES]):
        if line.startswith(_CALL_LOG_MARKER):
            end = index
            break
    cleaned = "\n".join(lines[:end]).strip()
    return cleaned or _UNKNOWN_ERROR


def _clean_error(error: TestError | None) -> TestError | None:
    if error is None:
        return None
    return dataclasses.replace(error, message=_clean_error_message(error.message))


class _Phase(Enum):
    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class RunnerInfo:
    """Identifies the host test runner and the plugin driving the reporter."""

    name: str
    version: str | None = None
    plugin: str | None = None


@dataclass(frozen=True)
class TestIdContext:
    """Identity of the test the runner is about to execute."""

    title: str
    scope: tuple[str, ...] = ()
    attempt: int = 1


@dataclass
class TestRecord:
    """Everything the runner reports when a test (or spec) finishes."""

    events: list[RawEvent] = field(default_factory=list)
    result: TestResult = TestResult.PASSED
    error: TestError | None = None
    spec_file: str | None = None
    attempt: int | None = None
    context: TestIdContext | None = None


class RunReporter:
    """Collects test results for one run and ships them at suite end."""

    def __init__(
        self,
        runner: RunnerInfo,
        config: RewindConfig,
        *,
        upload: Uploader | None = None,
    ) -> None:
        self._runner = runner
        self._config = config
        self._upload = upload
        self._phase = _Phase.CREATED
        self._run_id = ""
        self._run_title = ""
        self._current: TestIdContext | None = None
        self._records: list[TestRecord] = []

    @property
    def run_id(self) -> str:
        return self._run_id

    def _require(self, phase: _Phase, hook: str) -> None:
        if self._phase is not phase:
            raise ReporterStateError(
                f"{hook} called while reporter is {self._phase.value} (expected {phase.value})"
            )

    # ── Lifecycle hooks ──────────────────────────────────────────

    def on_suite_begin(self, run_title: str | None = None) -> str:
        """Start the run and return its id.

        *run_title* overrides the title from the run configuration.
        """
        self._require(_Phase.CREATED, "on_suite_begin")
        self._phase = _Phase.RUNNING
        self._run_id = self._config.run.id or str(uuid.uuid4())
        self._run_title = run_title or self._config.run.title
        logger.info("Test run %s started (%s)", self._run_id, self._runner.name)
        return self._run_id

    def on_test_begin(self, context: TestIdContext) -> None:
        self._require(_Phase.RUNNING, "on_test_begin")
        self._current = context
        logger.debug("Test started: %s (attempt %d)", context.title, context.attempt)

    def on_test_end(self, record: TestRecord) -> None:
        self._require(_Phase.RUNNING, "on_test_end")
        if record.context is None:
            record.context = self._current
        self._current = None
        label = record.spec_file or (record.context.title if record.context else "?")
        # Skipped tests never ran, so there is nothing to report for them.
        if record.result is TestResult.SKIPPED:
            logger.debug("Test skipped, not reporting: %s", label)
            return
        self._records.append(record)
        logger.debug(
            "Test finished: %s (%s, %d events)", label, record.result.value, len(record.events)
        )

    async def on_suite_end(self) -> list[dict[str, Any]]:
        """Aggregate every buffered record and upload the results.

        Returns the collector responses in the order the tests ended.

        Raises:
            AggregationError: A record's events violate the step protocol.
            Exception: The last delivery error once retries are exhausted.
        """
        self._require(_Phase.RUNNING, "on_suite_end")
        self._phase = _Phase.FINISHED

        payloads = self.build_payloads()
        if not payloads:
            logger.info("Test run %s finished with no results to upload", self._run_id)
            return []

        upload = self._upload
        if upload is None:
            if not self._config.collector.is_configured:
                logger.warning(
                    "Collector is not configured; skipping upload of %d test results",
                    len(payloads),
                )
                return []
            upload = functools.partial(post_test_run_async, self._config.collector)

        retry_fn = (
            exponential_backoff_retry
            if self._config.delivery.backoff == "exponential"
            else linear_backoff_retry
        )
        tasks = [functools.partial(upload, payload) for payload in payloads]

        with start_span("rewind.upload", f"Upload {len(tasks)} test results") as span:
            span.set_data("run_id", self._run_id)
            try:
                responses = await run_all(tasks, self._config.delivery.concurrency, retry_fn)
            except Exception:
                record_metric_count("rewind.upload.failed", len(tasks))
                logger.exception("Failed to deliver test results for run %s", self._run_id)
                raise

        record_metric_count("rewind.upload.delivered", len(tasks))
        logger.info("Delivered %d test results for run %s", len(tasks), self._run_id)
        return responses

    # ── Payloads ─────────────────────────────────────────────────

    def _tests_for(self, record: TestRecord) -> list[Test]:
        try:
            tests = aggregate(record.events)
        except AggregationError:
            record_metric_count("rewind.aggregation.failed")
            logger.error(
                "Failed to reconstruct steps for %s",
                record.spec_file or (record.context.title if record.context else "unknown test"),
            )
            raise

        context = record.context
        if not tests:
            title = context.title if context else (record.spec_file or "")
            scope = context.scope if context else ()
            tests = [
                Test(
                    title=title,
                    path=(*scope, title),
                    relative_path=record.spec_file,
                    relative_start_time=0.0,
                )
            ]

        attempt = record.attempt or (context.attempt if context else 1)
        error = _clean_error(record.error)
        for test in tests:
            test.result = record.result
            test.error = error
            test.attempt = attempt
            record_metric_distribution("rewind.test.steps", len(test.steps))
        return tests

    def build_payloads(self) -> list[dict[str, Any]]:
        """Build one collector payload per buffered record."""
        source = detect_ci_context().to_metadata()
        payloads: list[dict[str, Any]] = []
        for record in self._records:
            tests = self._tests_for(record)
            spec_file = record.spec_file or tests[0].relative_path
            payloads.append(
                {
                    "runId": self._run_id,
                    "runner": {
                        "name": self._runner.name,
                        "version": self._runner.version,
                        "plugin": self._runner.plugin,
                    },
                    "run": {
                        "title": self._run_title or None,
                        "mode": self._config.run.mode or None,
                    },
                    "source": source,
                    "specFile": spec_file,
                    "result": record.result.value,
                    "tests": [test.to_payload(index) for index, test in enumerate(tests)],
                }
            )
        return payloads
