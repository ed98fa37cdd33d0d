"""Tests for rewind.config."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from rewind.config import (
    CONFIG_FILENAME,
    DeliveryConfig,
    RunConfig,
    load_config,
    validate_config,
)

if TYPE_CHECKING:
    from pathlib import Path


def _write_config(root: Path, text: str) -> None:
    (root / CONFIG_FILENAME).write_text(text, encoding="utf-8")


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert config.collector.url == ""
    assert config.collector.timeout_seconds == 15.0
    assert not config.collector.is_configured
    assert config.delivery == DeliveryConfig(concurrency=4, backoff="linear")
    assert config.run == RunConfig()
    assert not config.sentry.enabled
    assert config.raw == {}
    assert validate_config(config) == []


def test_full_config_file(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
collector:
  url: https://collector.example.com
  api_key: rk_test
  timeout_seconds: 30
  concurrency: 8
  backoff: Exponential
run:
  id: nightly-42
  title: Nightly regression
  mode: record
""",
    )

    config = load_config(tmp_path)

    assert config.collector.url == "https://collector.example.com"
    assert config.collector.api_key == "rk_test"
    assert config.collector.timeout_seconds == 30.0
    assert config.collector.is_configured
    assert config.delivery == DeliveryConfig(concurrency=8, backoff="exponential")
    assert config.run == RunConfig(id="nightly-42", title="Nightly regression", mode="record")
    assert validate_config(config) == []


def test_env_var_placeholders_are_resolved(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("COLLECTOR_TOKEN", "rk_from_env")
    _write_config(
        tmp_path,
        "collector:\n  url: https://collector.example.com\n  api_key: ${COLLECTOR_TOKEN}\n",
    )

    assert load_config(tmp_path).collector.api_key == "rk_from_env"


def test_missing_env_var_placeholder_warns(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    _write_config(tmp_path, "collector:\n  api_key: ${REWIND_TEST_UNSET_VAR}\n")

    config = load_config(tmp_path)

    assert config.collector.api_key == ""
    assert "REWIND_TEST_UNSET_VAR is referenced in .rewind.yml but not set" in caplog.text


def test_environment_fallbacks(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REWIND_COLLECTOR_URL", "https://env.example.com")
    monkeypatch.setenv("REWIND_API_KEY", "rk_env")
    monkeypatch.setenv("REWIND_TEST_RUN_ID", "ci-build-7")
    monkeypatch.setenv("REWIND_TEST_RUN_TITLE", "PR checks")
    monkeypatch.setenv("REWIND_TEST_RUN_MODE", "diagnostics")

    config = load_config(tmp_path)

    assert config.collector.url == "https://env.example.com"
    assert config.collector.api_key == "rk_env"
    assert config.run == RunConfig(id="ci-build-7", title="PR checks", mode="diagnostics")


def test_file_values_take_precedence_over_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("REWIND_COLLECTOR_URL", "https://env.example.com")
    _write_config(tmp_path, "collector:\n  url: https://file.example.com\n")

    assert load_config(tmp_path).collector.url == "https://file.example.com"


@pytest.mark.parametrize("text", ["", "just a string\n", "collector: nope\n"])
def test_malformed_documents_fall_back_to_defaults(tmp_path: Path, text: str) -> None:
    _write_config(tmp_path, text)

    config = load_config(tmp_path)

    assert config.collector.url == ""
    assert config.delivery.concurrency == 4


def test_validation_reports_every_problem(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
collector:
  url: collector.example.com
  timeout_seconds: 0
  concurrency: 0
  backoff: fibonacci
""",
    )

    errors = validate_config(load_config(tmp_path))

    assert len(errors) == 4
    assert any(error.startswith("collector.url must start with http") for error in errors)
    assert any(error.startswith("collector.timeout_seconds") for error in errors)
    assert any(error.startswith("collector.concurrency") for error in errors)
    assert any(error.startswith("collector.backoff") for error in errors)


def test_null_values_count_as_unset(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REWIND_API_KEY", "rk_env")
    _write_config(
        tmp_path,
        """
collector:
  url: null
  api_key:
  timeout_seconds: null
  concurrency: ~
run:
  title: null
sentry:
  dsn: null
""",
    )

    config = load_config(tmp_path)

    assert config.collector.url == ""
    assert config.collector.api_key == "rk_env"
    assert not config.collector.is_configured
    assert config.collector.timeout_seconds == 15.0
    assert config.delivery.concurrency == 4
    assert config.run.title == ""
    assert config.sentry.dsn == ""
    assert validate_config(config) == []


def test_null_url_falls_back_to_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("REWIND_COLLECTOR_URL", "https://env.example.com")
    _write_config(tmp_path, "collector:\n  url: null\n  api_key: rk_test\n")

    config = load_config(tmp_path)

    assert config.collector.url == "https://env.example.com"
    assert config.collector.is_configured


def test_explicit_zero_is_kept(tmp_path: Path) -> None:
    _write_config(tmp_path, "collector:\n  concurrency: 0\n")

    assert load_config(tmp_path).delivery.concurrency == 0
