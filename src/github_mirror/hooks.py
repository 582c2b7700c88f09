import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .constants import APP_NAME, HOOK_REF_VAR, HOOK_REPO_VAR
from .refs import ChangeKind

logger = logging.getLogger(APP_NAME)


class HookError(RuntimeError):
    """Raised when a hook command cannot be spawned or exits non-zero.

    Attributes:
        command (str): The command path that failed.
        cause (Exception): The underlying spawn or exit error.
    """

    def __init__(self, command: str, cause: Exception):
        super().__init__(f"Hook {command} failed: {cause}")
        self.command = command
        self.cause = cause


def _freeze(rules: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in (rules or {}).items()})


@dataclass(frozen=True)
class HookRules:
    """Prefix-to-command rule sets, one per kind of reference change.

    Each mapping is keyed by an identifier prefix. The empty prefix matches
    every repository and so acts as the default command for its rule set.

    Attributes:
        added (Mapping[str, str]): Rules for new references and fresh clones.
        removed (Mapping[str, str]): Rules for deleted references.
        changed (Mapping[str, str]): Rules for references that moved.
    """

    added: Mapping[str, str] = field(default_factory=dict)
    removed: Mapping[str, str] = field(default_factory=dict)
    changed: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for kind in ChangeKind:
            object.__setattr__(self, kind.value, _freeze(getattr(self, kind.value)))

    def for_kind(self, kind: ChangeKind) -> Mapping[str, str]:
        """Returns the rule set that handles the given kind of change."""
        return getattr(self, kind.value)


def find_hook(identifier: str, rules: Mapping[str, str]) -> str | None:
    """Selects the command whose prefix is the longest match for an identifier.

    Args:
        identifier (str): The 'owner/name' repository identifier.
        rules (Mapping[str, str]): Prefix to command path mapping.

    Returns:
        str | None: The command path, or None if no prefix matches.
    """
    best_len = -1
    command = None
    for prefix, candidate in rules.items():
        if identifier.startswith(prefix) and len(prefix) > best_len:
            best_len = len(prefix)
            command = candidate
    return command


def run_hook(identifier: str, ref_name: str, command: str) -> None:
    """Runs a hook command and waits for it to exit.

    The child inherits the current environment plus the repository identifier
    and the full reference name (empty when signalling a fresh clone).

    Args:
        identifier (str): The 'owner/name' repository identifier.
        ref_name (str): The full reference name, or "" for a new mirror.
        command (str): Path of the executable to run.

    Raises:
        HookError: If the command cannot be started or exits non-zero.
    """
    env = os.environ.copy()
    env[HOOK_REPO_VAR] = identifier
    env[HOOK_REF_VAR] = ref_name

    logger.debug(f"Running hook {command} for {identifier} {ref_name}".rstrip())
    try:
        subprocess.run([command], env=env, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise HookError(command, e) from e
