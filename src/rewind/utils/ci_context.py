"""CI provider detection used to annotate uploaded test runs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class _Provider:
    name: str
    marker: str
    branch_var: str
    commit_var: str
    pr_var: str
    repository_var: str


_PROVIDERS = (
    _Provider(
        name="github",
        marker="GITHUB_ACTIONS",
        branch_var="GITHUB_HEAD_REF",
        commit_var="GITHUB_SHA",
        pr_var="GITHUB_PR_NUMBER",
        repository_var="GITHUB_REPOSITORY",
    ),
    _Provider(
        name="gitlab",
        marker="GITLAB_CI",
        branch_var="CI_COMMIT_REF_NAME",
        commit_var="CI_COMMIT_SHA",
        pr_var="CI_MERGE_REQUEST_IID",
        repository_var="CI_PROJECT_PATH",
    ),
    _Provider(
        name="circleci",
        marker="CIRCLECI",
        branch_var="CIRCLE_BRANCH",
        commit_var="CIRCLE_SHA1",
        pr_var="CIRCLE_PR_NUMBER",
        repository_var="CIRCLE_PROJECT_REPONAME",
    ),
)


@dataclass
class CIContext:
    """Detected CI execution context."""

    is_ci: bool = False
    provider: str | None = None
    branch: str | None = None
    commit_sha: str | None = None
    pr_number: int | None = None
    repository: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        """Render as the ``source`` block of a test-run payload."""
        if not self.is_ci:
            return {}

        metadata: dict[str, Any] = {"provider": self.provider or "unknown"}
        if self.branch:
            metadata["branch"] = self.branch
        if self.commit_sha:
            metadata["commit"] = {"id": self.commit_sha}
        if self.pr_number is not None:
            metadata["merge"] = {"id": str(self.pr_number)}
        if self.repository:
            metadata["repository"] = self.repository
        return metadata


def _env(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _parse_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value.rsplit("/", 1)[-1])
    except ValueError:
        return None


def detect_ci_context() -> CIContext:
    """Detect the CI provider and its branch/commit/PR from the environment."""
    for provider in _PROVIDERS:
        if os.getenv(provider.marker) != "true":
            continue
        branch = _env(provider.branch_var)
        if provider.name == "github" and branch is None:
            branch = _env("GITHUB_REF_NAME")
        return CIContext(
            is_ci=True,
            provider=provider.name,
            branch=branch,
            commit_sha=_env(provider.commit_var),
            pr_number=_parse_int(_env(provider.pr_var)),
            repository=_env(provider.repository_var),
        )

    if os.getenv("CI") == "true":
        return CIContext(is_ci=True)

    return CIContext()
