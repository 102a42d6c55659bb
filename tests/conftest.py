"""Shared fixtures for the buildboard tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from buildboard_engine.build_registry import BuildRegistry
from buildboard_engine.workspace_manager import WorkspaceManager


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def registry(data_root: Path) -> BuildRegistry:
    return BuildRegistry(data_root)


@pytest.fixture
def workspace_manager(data_root: Path) -> WorkspaceManager:
    return WorkspaceManager(data_root, timeout=None)


def make_job(build_id: int | None = None, success: bool | None = None, sha: str = "abc",
             tags: dict | None = None, **overrides: Any) -> dict:
    job: dict[str, Any] = {
        "author": "octo",
        "repo": "widget",
        "branch": "main",
        "commit": {
            "sha": sha,
            "date": "2024-05-01T12:00:00+00:00",
            "timestamp": 1714564800,
            "message": f"commit {sha}",
            "author": "Octo Cat",
            "avatar": "https://example.invalid/avatar.png",
        },
        "license": "MIT",
        "tags": tags or {},
    }
    if build_id is not None:
        job["id"] = build_id
    if success is not None:
        job["success"] = success
    job.update(overrides)
    return job


@pytest.fixture
def job_factory():
    return make_job
