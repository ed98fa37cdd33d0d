"""Configuration parsing from ``.rewind.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rewind.utils.collector_client import CollectorConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".rewind.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")
_TRUTHY = {True, "true", "1", "yes"}
_BACKOFF_STRATEGIES = {"linear", "exponential"}


def _resolve_env_vars(value: str) -> str:
    """Substitute ``${NAME}`` references with the value of the environment variable."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("%s is referenced in %s but not set", var, CONFIG_FILENAME)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Resolve placeholders in every string value of *data*, recursing into mappings."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        else:
            result[key] = value
    return result


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _setting(
    section: dict[str, Any], key: str, env_var: str | None = None, default: Any = ""
) -> Any:
    """Return *key* from *section*, falling back to *env_var* then *default*.

    A key left empty or set to ``null`` in the file counts as unset.
    """
    value = section.get(key)
    if value is None or value == "":
        return os.environ.get(env_var, default) if env_var else default
    return value


@dataclass
class DeliveryConfig:
    """How results are shipped to the collector."""

    concurrency: int = 4
    """Maximum uploads in flight at once."""

    backoff: str = "linear"
    """Retry backoff strategy: linear or exponential."""


@dataclass
class RunConfig:
    """Metadata describing the test run as a whole."""

    id: str = ""
    """Run id shared by every spec of the run.  Generated when empty."""

    title: str = ""
    mode: str = ""
    """Free-form run mode, e.g. ``record`` or ``diagnostics``."""


@dataclass
class SentryConfig:
    """Sentry error monitoring configuration."""

    enabled: bool = False
    """Nothing is sent to Sentry unless this is set."""

    dsn: str = ""
    traces_sample_rate: float = 0.0
    """Fraction of transactions sent for tracing (0.0-1.0)."""

    environment: str = ""
    """Environment tag; ``ci`` or ``local`` is detected when empty."""


@dataclass
class RewindConfig:
    """Top-level configuration."""

    collector: CollectorConfig = field(default_factory=CollectorConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    run: RunConfig = field(default_factory=RunConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)
    raw: dict[str, Any] = field(default_factory=dict)


def _parse_collector_config(raw: dict[str, Any]) -> CollectorConfig:
    collector_raw = _section(raw, "collector")
    return CollectorConfig(
        url=str(_setting(collector_raw, "url", "REWIND_COLLECTOR_URL")),
        api_key=str(_setting(collector_raw, "api_key", "REWIND_API_KEY")),
        timeout_seconds=float(_setting(collector_raw, "timeout_seconds", default=15.0)),
    )


def _parse_delivery_config(raw: dict[str, Any]) -> DeliveryConfig:
    collector_raw = _section(raw, "collector")
    return DeliveryConfig(
        concurrency=int(_setting(collector_raw, "concurrency", default=4)),
        backoff=str(_setting(collector_raw, "backoff", default="linear")).strip().lower(),
    )


def _parse_run_config(raw: dict[str, Any]) -> RunConfig:
    run_raw = _section(raw, "run")
    return RunConfig(
        id=str(_setting(run_raw, "id", "REWIND_TEST_RUN_ID")),
        title=str(_setting(run_raw, "title", "REWIND_TEST_RUN_TITLE")),
        mode=str(_setting(run_raw, "mode", "REWIND_TEST_RUN_MODE")),
    )


def _parse_sentry_config(raw: dict[str, Any]) -> SentryConfig:
    sentry_raw = _section(raw, "sentry")
    enabled_raw = _setting(sentry_raw, "enabled", "REWIND_SENTRY_ENABLED")
    return SentryConfig(
        enabled=enabled_raw in _TRUTHY,
        dsn=str(_setting(sentry_raw, "dsn", "REWIND_SENTRY_DSN")),
        traces_sample_rate=float(
            _setting(
                sentry_raw,
                "traces_sample_rate",
                "REWIND_SENTRY_TRACES_SAMPLE_RATE",
                default="0.0",
            )
        ),
        environment=str(_setting(sentry_raw, "environment")),
    )


def load_config(root: str | Path) -> RewindConfig:
    """Load ``.rewind.yml`` from *root*.

    Falls back to defaults and environment variables when the file is
    missing or incomplete.
    """
    config_path = Path(root).resolve() / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.is_file():
        parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)

    return RewindConfig(
        collector=_parse_collector_config(raw),
        delivery=_parse_delivery_config(raw),
        run=_parse_run_config(raw),
        sentry=_parse_sentry_config(raw),
        raw=raw,
    )


def validate_config(config: RewindConfig) -> list[str]:
    """Return a list of configuration errors; empty when valid."""
    errors: list[str] = []

    url = config.collector.url.strip()
    if url and not url.startswith(("http://", "https://")):
        errors.append(f"collector.url must start with http:// or https:// (got: {url})")

    if config.collector.timeout_seconds <= 0:
        errors.append(
            f"collector.timeout_seconds must be positive (got: {config.collector.timeout_seconds})"
        )

    if config.delivery.concurrency < 1:
        errors.append(
            f"collector.concurrency must be at least 1 (got: {config.delivery.concurrency})"
        )

    if config.delivery.backoff not in _BACKOFF_STRATEGIES:
        errors.append(
            f"collector.backoff must be one of {sorted(_BACKOFF_STRATEGIES)} "
            f"(got: {config.delivery.backoff})"
        )

    if config.sentry.enabled and not config.sentry.dsn:
        errors.append("sentry.dsn is required when sentry.enabled is true")

    if not 0.0 <= config.sentry.traces_sample_rate <= 1.0:
        errors.append(
            f"sentry.traces_sample_rate must be between 0.0 and 1.0 "
            f"(got: {config.sentry.traces_sample_rate})"
        )

    return errors
