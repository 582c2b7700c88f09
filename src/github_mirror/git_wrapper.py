import base64
import logging
import os
import shutil
import subprocess
from pathlib import Path

from .config import Credentials
from .constants import APP_NAME, CONCURRENT_UPDATE_MARKERS, EMPTY_REMOTE_MARKERS
from .refs import ReferenceSnapshot, make_snapshot

logger = logging.getLogger(APP_NAME)

MIRROR_REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")
"""tuple[str, ...]: Forced fetch refspecs keeping local branches and tags
identical to the remote's, including tags that were moved."""


class GitError(RuntimeError):
    """Raised when a git command fails."""


class MirrorNotFoundError(GitError):
    """Raised when no local mirror exists at the requested path."""


class EmptyRemoteError(GitError):
    """Raised when the remote repository has no references yet."""


class ConcurrentRefUpdateError(GitError):
    """Raised when a reference was modified by another process mid-fetch."""


class ReferenceReadError(GitError):
    """Raised when the local reference store cannot be enumerated."""


def _classify(stderr: str) -> type[GitError]:
    """Maps git's error output onto the most specific GitError subclass."""
    text = stderr.lower()
    if any(marker in text for marker in EMPTY_REMOTE_MARKERS):
        return EmptyRemoteError
    if any(marker in text for marker in CONCURRENT_UPDATE_MARKERS):
        return ConcurrentRefUpdateError
    return GitError


def auth_env(credentials: Credentials | None) -> dict[str, str]:
    """Builds a subprocess environment that authenticates HTTPS git traffic.

    The token travels in an ``http.extraHeader`` set through ``GIT_CONFIG_*``
    variables, so it is neither visible in the process list nor written to
    the mirror's config file.

    Args:
        credentials (Credentials | None): The remote credentials, if any.

    Returns:
        dict[str, str]: A copy of the current environment with auth applied.
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    if credentials and credentials.token:
        user = credentials.username or "x-access-token"
        basic = base64.b64encode(f"{user}:{credentials.token}".encode()).decode()
        env["GIT_CONFIG_COUNT"] = "1"
        env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
        env["GIT_CONFIG_VALUE_0"] = f"Authorization: Basic {basic}"
    return env


def _run_git(
    args: list[str], cwd: Path | None = None, env: dict | None = None
) -> subprocess.CompletedProcess:
    """Executes a git command, raising a classified GitError on failure.

    Args:
        args (list[str]): Arguments passed to the git executable.
        cwd (Path | None): Working directory for the command.
        env (dict | None): Environment for the subprocess.

    Returns:
        subprocess.CompletedProcess: The finished process with captured output.

    Raises:
        GitError: Or a subclass, if git exits non-zero or cannot be started.
    """
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=env,
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise _classify(stderr)(f"Git error: {stderr or e}") from e
    except OSError as e:
        raise GitError(f"Git error: {e}") from e


def _log_output(output: str) -> None:
    """Relays git's transfer and ref-update report at debug level."""
    for line in output.splitlines():
        if line.strip():
            logger.debug(line.rstrip())


class GitMirror:
    """A wrapper around the git command-line interface for one bare mirror.

    Attributes:
        path (Path): The file system path of the bare repository.
    """

    def __init__(self, path: Path):
        """Initializes the GitMirror instance.

        Args:
            path (Path): The path of an existing bare repository.

        Raises:
            MirrorNotFoundError: If no bare repository exists at the path.
        """
        self.path = path
        if not (self.path / "HEAD").is_file():
            raise MirrorNotFoundError(f"Not a git mirror: {self.path}")

    @classmethod
    def open(cls, path: Path) -> "GitMirror":
        """Opens an existing local mirror.

        Raises:
            MirrorNotFoundError: If the mirror has not been cloned yet.
        """
        return cls(path)

    @classmethod
    def clone(
        cls, url: str, path: Path, credentials: Credentials | None = None
    ) -> "GitMirror":
        """Creates a new bare mirror of a remote repository.

        No working tree is checked out. The mirror is configured so that later
        fetches keep every branch and tag identical to the remote.

        Args:
            url (str): The remote repository URL.
            path (Path): Where the bare repository is created.
            credentials (Credentials | None): HTTPS credentials for the remote.

        Returns:
            GitMirror: A handle on the new mirror.

        Raises:
            EmptyRemoteError: If the remote has no references. Nothing is left
                on disk so the next run clones again.
            GitError: If the clone fails for any other reason.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        res = _run_git(["clone", "--bare", url, str(path)], env=auth_env(credentials))

        if _classify(res.stderr) is EmptyRemoteError:
            shutil.rmtree(path, ignore_errors=True)
            raise EmptyRemoteError(f"Git error: {res.stderr.strip()}")

        _log_output(res.stderr)
        _run_git(["config", "remote.origin.fetch", MIRROR_REFSPECS[0]], cwd=path)
        for refspec in MIRROR_REFSPECS[1:]:
            _run_git(["config", "--add", "remote.origin.fetch", refspec], cwd=path)
        return cls(path)

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a git command inside the mirror and returns its stdout."""
        return _run_git(args, cwd=self.path, env=env).stdout.strip()

    def list_references(self) -> ReferenceSnapshot:
        """Captures every branch and tag together with the object it points to.

        Symbolic references such as HEAD are not included.

        Returns:
            ReferenceSnapshot: Reference name to object hash.

        Raises:
            ReferenceReadError: If the reference store cannot be read.
        """
        try:
            output = self._run(["for-each-ref", "--format=%(objectname) %(refname)"])
        except GitError as e:
            raise ReferenceReadError(str(e)) from e

        pairs = []
        for line in output.splitlines():
            oid, _, name = line.partition(" ")
            if name:
                pairs.append((name, oid))
        return make_snapshot(pairs)

    def fetch_all(self, credentials: Credentials | None = None) -> None:
        """Fetches all branches and tags from origin, pruning deleted ones.

        The remote is listed first: an empty remote would otherwise prune
        every local reference. The fetch is atomic and forced, so a moved tag
        is taken over and a rejected update leaves every ref untouched. Being
        already up to date is not an error.

        Args:
            credentials (Credentials | None): HTTPS credentials for the remote.

        Raises:
            EmptyRemoteError: If the remote has no references.
            ConcurrentRefUpdateError: If a local ref moved during the fetch.
            GitError: On any other failure.
        """
        env = auth_env(credentials)
        listing = _run_git(["ls-remote", "origin"], cwd=self.path, env=env).stdout
        advertised = [line.partition("\t")[2] for line in listing.splitlines()]
        if not any(r.startswith(("refs/heads/", "refs/tags/")) for r in advertised):
            raise EmptyRemoteError("Git error: remote repository is empty")

        res = _run_git(
            ["fetch", "--prune", "--atomic", "--no-tags", "origin", *MIRROR_REFSPECS],
            cwd=self.path,
            env=env,
        )
        _log_output(res.stderr)
