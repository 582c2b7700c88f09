"""Shared fixtures: throwaway git repositories and an isolated config layer."""

import logging
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from github_mirror.constants import APP_NAME, ENV_PREFIX

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git not installed"
)


def git(path: Path, *args: str) -> str:
    """Runs git in `path` with a fixed identity and returns stripped stdout."""
    res = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            "-c",
            "tag.gpgsign=false",
            *args,
        ],
        cwd=path,
        capture_output=True,
        text=True,
        check=True,
    )
    return res.stdout.strip()


@pytest.fixture
def make_remote(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a working repository under tmp_path/remotes/<identifier>.

    Args:
        identifier: The 'owner/name' the repository is published as.
        empty: When True, no commit is made.
    """

    def _make(identifier: str, empty: bool = False) -> Path:
        path = tmp_path / "remotes" / identifier
        path.mkdir(parents=True)
        git(path, "init", "-q")
        git(path, "symbolic-ref", "HEAD", "refs/heads/main")
        if not empty:
            commit(path, "initial")
        return path

    return _make


def commit(path: Path, message: str) -> str:
    """Creates an empty commit on the current branch and returns its hash."""
    git(path, "commit", "-q", "--allow-empty", "-m", message)
    return git(path, "rev-parse", "HEAD")


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Any:
    """Keeps the user's real config file and environment out of every test."""
    monkeypatch.setattr(
        "github_mirror.config.CONFIG_FILE", tmp_path / "no-such-config.toml"
    )
    for key in ("TOKEN", "USERNAME", "BASEPATH", "WORKERS", "LOGLEVEL", "IGNORE"):
        monkeypatch.delenv(f"{ENV_PREFIX}{key}", raising=False)
    monkeypatch.delenv(f"{ENV_PREFIX}CONFIG", raising=False)
    yield


@pytest.fixture(autouse=True)
def reset_logger() -> Any:
    """Removes handlers and levels installed by setup_logging between tests."""
    yield
    app_logger = logging.getLogger(APP_NAME)
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
    app_logger.setLevel(logging.NOTSET)
