"""Shared fixtures for the rewind test suite."""

from __future__ import annotations

import pytest

_ISOLATED_ENV_VARS = (
    "CI",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "CIRCLECI",
    "GITHUB_HEAD_REF",
    "GITHUB_REF_NAME",
    "GITHUB_SHA",
    "GITHUB_PR_NUMBER",
    "GITHUB_REPOSITORY",
    "CI_COMMIT_REF_NAME",
    "CI_COMMIT_SHA",
    "CI_MERGE_REQUEST_IID",
    "CI_PROJECT_PATH",
    "CIRCLE_BRANCH",
    "CIRCLE_SHA1",
    "CIRCLE_PR_NUMBER",
    "CIRCLE_PROJECT_REPONAME",
    "REWIND_COLLECTOR_URL",
    "REWIND_API_KEY",
    "REWIND_TEST_RUN_ID",
    "REWIND_TEST_RUN_TITLE",
    "REWIND_TEST_RUN_MODE",
    "REWIND_SENTRY_ENABLED",
    "REWIND_SENTRY_DSN",
    "REWIND_SENTRY_TRACES_SAMPLE_RATE",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host's CI and rewind settings out of every test."""
    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
