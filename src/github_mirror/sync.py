"""Per-repository synchronization: clone or open, fetch, diff, and run hooks."""

import enum
import logging
import time
from collections.abc import Callable, MutableMapping
from typing import Any

from .config import Config
from .constants import APP_NAME, GITHUB_URL, REF_RETRY_DELAY
from .git_wrapper import (
    ConcurrentRefUpdateError,
    EmptyRemoteError,
    GitError,
    GitMirror,
    MirrorNotFoundError,
    ReferenceReadError,
)
from .hooks import HookError, find_hook, run_hook
from .refs import ChangeKind, DiffError, ReferenceSnapshot, diff_refs

logger = logging.getLogger(APP_NAME)


class SyncOutcome(enum.Enum):
    """The result of one repository's sync, tallied for the run summary."""

    SYNCED = "synced"
    CLONED = "cloned"
    SKIPPED = "skipped"
    FAILED = "failed"


class RepoLogger(logging.LoggerAdapter):
    """Prefixes every message with the repository identifier."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['repo']}] {msg}", kwargs


class RepoSyncTask:
    """Synchronizes a single repository mirror and fires hooks for changed refs.

    The steps always run in this order: open (or clone) the mirror, snapshot
    its references, fetch from the remote, snapshot again, diff the two
    snapshots, then route and run one hook per changed reference.

    Attributes:
        identifier (str): The 'owner/name' of the repository.
        config (Config): The run configuration snapshot.
    """

    def __init__(
        self,
        identifier: str,
        config: Config,
        remote_url: str = GITHUB_URL,
        hook_runner: Callable[[str, str, str], None] = run_hook,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = REF_RETRY_DELAY,
    ):
        """Initializes the task.

        Args:
            identifier (str): The 'owner/name' of the repository.
            config (Config): The run configuration snapshot.
            remote_url (str): Base URL the identifier is appended to.
            hook_runner (Callable): Executes a hook as (identifier, ref, command).
            sleep (Callable[[float], None]): Delay used between reference reads.
            retry_delay (float): Seconds between reference read attempts.
        """
        self.identifier = identifier
        self.config = config
        self.remote_url = remote_url.rstrip("/")
        self.hook_runner = hook_runner
        self.sleep = sleep
        self.retry_delay = retry_delay
        self.log = RepoLogger(logger, {"repo": identifier})

    def run(self) -> SyncOutcome:
        """Runs the full sync for this repository.

        Returns:
            SyncOutcome: SYNCED or CLONED on success, SKIPPED for an empty
            remote or a concurrent ref update, FAILED otherwise.

        Raises:
            DiffError: If the reference delta cannot be computed.
        """
        self.log.debug("Starting")
        path = self.config.mirror_path(self.identifier)
        cloned = False

        # 1. Resolve, or clone on first sight.
        try:
            mirror = GitMirror.open(path)
        except MirrorNotFoundError:
            try:
                mirror = self._clone()
            except EmptyRemoteError:
                self.log.info("Remote repository is empty, skipping")
                return SyncOutcome.SKIPPED
            except GitError as e:
                self.log.error(f"Error opening repo: {e}")
                return SyncOutcome.FAILED
            cloned = True

        # 2. Snapshot, fetch, snapshot.
        before = self._snapshot(mirror)
        try:
            mirror.fetch_all(self.config.credentials)
        except EmptyRemoteError as e:
            self.log.info(f"Error fetching repo: {e}")
            return SyncOutcome.SKIPPED
        except ConcurrentRefUpdateError as e:
            # TODO: retry a bounded number of times instead of dropping the cycle.
            self.log.info(f"Reference changed concurrently, skipping: {e}")
            return SyncOutcome.SKIPPED
        except GitError as e:
            self.log.error(f"Error fetching repo: {e}")
            return SyncOutcome.FAILED
        after = self._snapshot(mirror)

        # 3. Diff and dispatch.
        try:
            delta = diff_refs(before, after)
        except Exception as e:
            raise DiffError(f"Error getting differences of refs: {e}") from e

        self._dispatch(delta)
        self.log.debug("Finished")
        return SyncOutcome.CLONED if cloned else SyncOutcome.SYNCED

    def _clone(self) -> GitMirror:
        """Creates the mirror and signals it with the added-hook (no ref name)."""
        start = time.monotonic()
        mirror = GitMirror.clone(
            f"{self.remote_url}/{self.identifier}",
            self.config.mirror_path(self.identifier),
            self.config.credentials,
        )
        self.log.info(f"Cloned in {time.monotonic() - start:.1f}s")
        self._fire(ChangeKind.ADDED, "")
        return mirror

    def _snapshot(self, mirror: GitMirror) -> ReferenceSnapshot:
        """Reads all references, retrying forever on transient read errors."""
        while True:
            try:
                return mirror.list_references()
            except ReferenceReadError as e:
                self.log.debug(f"Delaying before trying to get refs again: {e}")
                self.sleep(self.retry_delay)

    def _dispatch(self, delta: dict[str, ChangeKind]) -> None:
        for ref_name, kind in delta.items():
            self.log.info(f"Ref {ref_name} {kind.value}")
            self._fire(kind, ref_name)

    def _fire(self, kind: ChangeKind, ref_name: str) -> None:
        """Routes one event to its hook and runs it. Failures are only logged."""
        command = find_hook(self.identifier, self.config.rules.for_kind(kind))
        if command is None:
            return
        try:
            self.hook_runner(self.identifier, ref_name, command)
        except HookError as e:
            self.log.error(f"Error running command {e.command}: {e.cause}")
