import logging
import queue
import sys
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable

from .config import Config
from .constants import APP_NAME
from .github import GitHubClient
from .refs import DiffError
from .sync import RepoSyncTask, SyncOutcome

logger = logging.getLogger(APP_NAME)

TRACE = 5
"""int: Log level below DEBUG, used for per-repository discovery listings."""

logging.addLevelName(TRACE, "TRACE")

VERBOSITY = {0: logging.ERROR, 1: logging.INFO, 2: logging.DEBUG, 3: TRACE}
"""dict[int, int]: Maps the configured loglevel (0-3) to a logging threshold."""

_CLOSED = object()


def setup_logging(loglevel: int) -> None:
    """Configures the application logger for the requested verbosity.

    Args:
        loglevel (int): 0 shows only errors, 3 shows everything. Values out of
            range are clamped.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    logger.setLevel(VERBOSITY[min(max(loglevel, 0), 3)])


def run_pool(
    identifiers: Iterable[str],
    worker_count: int,
    run_task: Callable[[str], SyncOutcome],
    ignore: Iterable[str] = (),
) -> Counter:
    """Runs one task per identifier on a fixed number of worker threads.

    The queue is filled with every identifier that is not ignored and then
    closed with one sentinel per worker, before any worker starts. Each worker
    finishes a task before taking the next identifier. Returns only after every
    worker has exited.

    Args:
        identifiers (Iterable[str]): Repository identifiers to process.
        worker_count (int): Maximum number of concurrent tasks.
        run_task (Callable[[str], SyncOutcome]): Syncs one repository.
        ignore (Iterable[str]): Identifiers that are skipped entirely.

    Returns:
        Counter: Number of tasks per SyncOutcome.

    Raises:
        DiffError: If any task hit a diff failure. Remaining queued work is
            abandoned once this happens.
    """
    skipped = set(ignore)
    work: queue.Queue = queue.Queue()
    queued = 0
    for identifier in sorted(set(identifiers)):
        if identifier in skipped:
            logger.debug(f"Ignoring repo: {identifier}")
            continue
        logger.debug(f"Adding {identifier}")
        work.put(identifier)
        queued += 1

    if not queued:
        return Counter()

    worker_count = min(max(worker_count, 1), queued)
    for _ in range(worker_count):
        work.put(_CLOSED)

    outcomes: Counter = Counter()
    fatal: list[DiffError] = []
    lock = threading.Lock()
    abort = threading.Event()

    def worker() -> None:
        while True:
            identifier = work.get()
            if identifier is _CLOSED:
                return
            if abort.is_set():
                continue
            try:
                outcome = run_task(identifier)
            except DiffError as e:
                with lock:
                    fatal.append(e)
                abort.set()
                continue
            except Exception:
                logger.exception(f"LOOP ERROR {identifier}")
                outcome = SyncOutcome.FAILED
            with lock:
                outcomes[outcome] += 1

    threads = [
        threading.Thread(target=worker, name=f"{APP_NAME}-worker-{i}", daemon=True)
        for i in range(worker_count)
    ]
    for thread in threads:
        thread.start()
    logger.debug("Waiting for everything to finish")
    for thread in threads:
        thread.join()

    if fatal:
        raise fatal[0]
    return outcomes


def main(config: Config, client: GitHubClient | None = None) -> Counter:
    """Discovers the watch-list and synchronizes every repository once.

    Args:
        config (Config): The run configuration.
        client (GitHubClient | None): Discovery client. Built from the
            configured token when omitted.

    Returns:
        Counter: Number of repositories per SyncOutcome.

    Raises:
        ConfigError: If no token is configured.
        DiscoveryError: If the repository list cannot be retrieved.
        DiffError: If a reference delta could not be computed.
    """
    config.require_token()
    start = time.monotonic()

    client = client or GitHubClient(config.token)
    repos = client.list_repositories()
    for repo in sorted(repos):
        logger.log(TRACE, f"Repo: {repo}")

    outcomes = run_pool(
        repos,
        config.workers,
        lambda identifier: RepoSyncTask(identifier, config).run(),
        config.ignore,
    )

    logger.info(
        f"Synced {outcomes[SyncOutcome.SYNCED]}, "
        f"cloned {outcomes[SyncOutcome.CLONED]}, "
        f"skipped {outcomes[SyncOutcome.SKIPPED]}, "
        f"failed {outcomes[SyncOutcome.FAILED]} "
        f"in {time.monotonic() - start:.1f}s"
    )
    return outcomes
