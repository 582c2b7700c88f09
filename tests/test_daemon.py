"""Tests for the worker pool, logging setup, and the run entry point."""

import logging
import threading
import time
from collections import Counter
from unittest.mock import MagicMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from github_mirror import daemon
from github_mirror.config import Config, ConfigError
from github_mirror.constants import APP_NAME
from github_mirror.refs import DiffError
from github_mirror.sync import SyncOutcome


class RecordingTask:
    """Thread-safe fake task recording identifiers and peak concurrency."""

    def __init__(
        self, delay: float = 0.0, outcome: SyncOutcome = SyncOutcome.SYNCED
    ):
        self.delay = delay
        self.outcome = outcome
        self.seen: list[str] = []
        self.active = 0
        self.peak = 0
        self.lock = threading.Lock()

    def __call__(self, identifier: str) -> SyncOutcome:
        with self.lock:
            self.seen.append(identifier)
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self.lock:
            self.active -= 1
        return self.outcome


@pytest.mark.parametrize(
    ("count", "workers"),
    [(0, 3), (2, 5), (5, 5), (12, 3), (7, 1)],
)
def test_run_pool_processes_each_identifier_once(count: int, workers: int) -> None:
    """Verifies exactly-once processing for M=0, M<N, M=N, and M>N."""
    identifiers = {f"owner/repo{i}" for i in range(count)}
    task = RecordingTask(delay=0.01)

    outcomes = daemon.run_pool(identifiers, workers, task)

    assert sorted(task.seen) == sorted(identifiers)
    assert outcomes == Counter({SyncOutcome.SYNCED: count} if count else {})
    assert task.active == 0  # Nothing still running after return.
    assert task.peak <= workers


def test_run_pool_bounds_concurrency() -> None:
    task = RecordingTask(delay=0.05)

    daemon.run_pool({f"o/r{i}" for i in range(8)}, 2, task)

    assert task.peak == 2


def test_run_pool_skips_ignored(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies ignored identifiers never reach a task."""
    caplog.set_level(logging.DEBUG, logger=APP_NAME)
    task = RecordingTask()

    outcomes = daemon.run_pool(
        {"acme/widgets", "acme/huge", "someone/else"}, 2, task, ignore={"acme/huge"}
    )

    assert sorted(task.seen) == ["acme/widgets", "someone/else"]
    assert sum(outcomes.values()) == 2
    assert "Ignoring repo: acme/huge" in caplog.text


def test_run_pool_all_ignored_returns_immediately() -> None:
    task = RecordingTask()
    assert daemon.run_pool({"a/b"}, 4, task, ignore=["a/b"]) == Counter()
    assert task.seen == []


def test_run_pool_non_positive_workers_still_runs() -> None:
    task = RecordingTask()
    daemon.run_pool({"a/b", "c/d"}, 0, task)
    assert sorted(task.seen) == ["a/b", "c/d"]


def test_run_pool_isolates_unexpected_errors(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies one crashing task is counted as failed and the rest still run."""

    def task(identifier: str) -> SyncOutcome:
        if identifier == "bad/repo":
            raise OSError("disk full")
        return SyncOutcome.SYNCED

    outcomes = daemon.run_pool({"bad/repo", "good/one", "good/two"}, 1, task)

    assert outcomes == Counter({SyncOutcome.SYNCED: 2, SyncOutcome.FAILED: 1})
    assert "LOOP ERROR bad/repo" in caplog.text


def test_run_pool_reraises_diff_error() -> None:
    def task(identifier: str) -> SyncOutcome:
        raise DiffError("bug")

    with pytest.raises(DiffError):
        daemon.run_pool({"a/b", "c/d"}, 2, task)


@settings(max_examples=25, deadline=None)
@given(
    identifiers=st.sets(
        st.from_regex(r"[a-z]{1,5}/[a-z]{1,5}", fullmatch=True), max_size=20
    ),
    workers=st.integers(min_value=1, max_value=8),
)
def test_run_pool_exactly_once_property(identifiers: set[str], workers: int) -> None:
    """Property: every identifier is handed to exactly one task."""
    task = RecordingTask()

    outcomes = daemon.run_pool(identifiers, workers, task)

    assert len(task.seen) == len(set(task.seen)) == len(identifiers)
    assert sum(outcomes.values()) == len(identifiers)


@pytest.mark.parametrize(
    ("loglevel", "expected"),
    [
        (0, logging.ERROR),
        (1, logging.INFO),
        (2, logging.DEBUG),
        (3, daemon.TRACE),
        (9, daemon.TRACE),
        (-1, logging.ERROR),
    ],
)
def test_setup_logging_maps_verbosity(loglevel: int, expected: int) -> None:
    daemon.setup_logging(loglevel)
    app_logger = logging.getLogger(APP_NAME)

    assert app_logger.level == expected
    assert len(app_logger.handlers) == 1


def test_main_requires_token() -> None:
    with pytest.raises(ConfigError, match="Token must be set"):
        daemon.main(Config(), client=MagicMock())


def test_main_syncs_discovered_repositories(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies discovery feeds the pool and ignored repos are left out."""
    caplog.set_level(logging.INFO, logger=APP_NAME)
    config = Config(token="t", workers=2, ignore=frozenset({"acme/huge"}))
    client = MagicMock()
    client.list_repositories.return_value = {"acme/widgets", "acme/huge", "me/dots"}

    mock_task_cls = mocker.patch("github_mirror.daemon.RepoSyncTask")
    mock_task_cls.return_value.run.return_value = SyncOutcome.SYNCED

    outcomes = daemon.main(config, client=client)

    synced = sorted(c.args[0] for c in mock_task_cls.call_args_list)
    assert synced == ["acme/widgets", "me/dots"]
    for c in mock_task_cls.call_args_list:
        assert c.args[1] is config
    assert outcomes[SyncOutcome.SYNCED] == 2
    assert "Synced 2, cloned 0, skipped 0, failed 0" in caplog.text
