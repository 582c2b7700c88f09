"""GitHub Mirror: Keep local mirrors of GitHub repositories and react to ref changes.

This package provides the command-line interface, the worker pool that syncs
every watched repository, and the per-repository engine that detects added,
removed, and moved references and runs the configured hook commands.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    git_wrapper,
    github,
    hooks,
    refs,
    sync,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "git_wrapper",
    "github",
    "hooks",
    "refs",
    "sync",
]
