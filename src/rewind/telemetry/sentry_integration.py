"""Opt-in Sentry integration: initialization, scrubbing, metrics and spans.

Nothing is sent unless ``sentry.enabled: true`` is set in ``.rewind.yml``
or ``REWIND_SENTRY_ENABLED=true`` is exported.  Test payloads can carry
collector keys and local paths, so every outgoing event is scrubbed.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import TYPE_CHECKING, Any

import sentry_sdk
import sentry_sdk.metrics
from sentry_sdk.integrations.logging import LoggingIntegration

from rewind import __version__
from rewind.utils.ci_context import detect_ci_context

if TYPE_CHECKING:
    from types import TracebackType

    from rewind.config import SentryConfig

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_initialized: dict[str, bool] = {"value": False}

_REDACTED = "[REDACTED]"
_SECRET_ASSIGNMENT_RE = re.compile(
    r"(api[_-]?key|authorization|bearer|token|secret|password|dsn)(\s*[:=]\s*|\s+)\S+",
    re.IGNORECASE,
)
_HOME_DIR_RE = re.compile(r"/(?:home|Users)/[^/]+")
_SECRET_KEYS = frozenset(
    {"api_key", "apikey", "authorization", "token", "secret", "password", "dsn", "cookie"}
)


def init_sentry(config: SentryConfig) -> None:
    """Initialize the Sentry SDK when enabled.  Idempotent and thread-safe."""
    with _init_lock:
        if _initialized["value"]:
            return
        if not config.enabled:
            logger.debug("Sentry disabled (sentry.enabled is false)")
            return
        if not config.dsn:
            logger.warning("Sentry enabled but no DSN configured")
            return

        environment = config.environment or ("ci" if detect_ci_context().is_ci else "local")
        sentry_sdk.init(
            dsn=config.dsn,
            release=f"rewind-reporter@{__version__}",
            environment=environment,
            traces_sample_rate=config.traces_sample_rate,
            send_default_pii=False,
            server_name="",
            before_send=_before_send,
            before_send_transaction=_before_send,
            in_app_include=["rewind"],
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )
        _initialized["value"] = True
        logger.info(
            "Sentry initialized (env=%s, tracing=%.2f)", environment, config.traces_sample_rate
        )


def is_sentry_enabled() -> bool:
    """Return ``True`` once :func:`init_sentry` has configured the SDK."""
    return _initialized["value"]


# ---------------------------------------------------------------------------
# Scrubbing
# ---------------------------------------------------------------------------


def _scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        return _HOME_DIR_RE.sub("/~", _SECRET_ASSIGNMENT_RE.sub(rf"\1\2{_REDACTED}", value))
    if isinstance(value, dict):
        return {
            key: _REDACTED if str(key).lower() in _SECRET_KEYS else _scrub_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_scrub_value(item) for item in value]
    return value


def _scrub_event(event: dict[str, Any]) -> dict[str, Any]:
    for section in ("extra", "tags", "contexts", "request"):
        if isinstance(event.get(section), dict):
            event[section] = _scrub_value(event[section])

    if isinstance(event.get("breadcrumbs"), dict):
        crumbs = event["breadcrumbs"].get("values", [])
        event["breadcrumbs"]["values"] = _scrub_value(crumbs)

    exception = event.get("exception")
    if isinstance(exception, dict):
        for value in exception.get("values", []):
            if isinstance(value.get("value"), str):
                value["value"] = _scrub_value(value["value"])
            frames = (value.get("stacktrace") or {}).get("frames", [])
            for frame in frames:
                # Locals may hold collector keys and payloads.
                frame.pop("vars", None)
                for key in ("filename", "abs_path"):
                    if isinstance(frame.get(key), str):
                        frame[key] = _HOME_DIR_RE.sub("/~", frame[key])

    event.pop("server_name", None)
    return event


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any] | None:
    return _scrub_event(event)


# ---------------------------------------------------------------------------
# Metrics and tracing (no-op when disabled)
# ---------------------------------------------------------------------------


def record_metric_count(name: str, value: int = 1, **attrs: str | int | float) -> None:
    """Add *value* to the counter *name*.  Does nothing until Sentry is initialized."""
    if not is_sentry_enabled():
        return
    sentry_sdk.metrics.count(name, float(value), attributes=dict(attrs) if attrs else None)


def record_metric_distribution(
    name: str, value: float, unit: str = "", **attrs: str | int | float
) -> None:
    """Record one sample of *name*.  Does nothing until Sentry is initialized."""
    if not is_sentry_enabled():
        return
    sentry_sdk.metrics.distribution(
        name, value, unit=unit or None, attributes=dict(attrs) if attrs else None
    )


class _NoOpSpan:
    """Stand-in span used while Sentry is disabled."""

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass

    def set_data(self, key: str, value: Any) -> None:
        """Discard span data."""


def start_span(op: str, description: str) -> Any:
    """Start a Sentry span, or a no-op span when Sentry is disabled."""
    if not is_sentry_enabled():
        return _NoOpSpan()
    return sentry_sdk.start_span(op=op, description=description)
