import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_LOGLEVEL,
    DEFAULT_WORKERS,
    ENV_PREFIX,
)
from .hooks import HookRules
from .refs import ChangeKind

logger = logging.getLogger(APP_NAME)

SCALAR_KEYS = ("token", "username", "basepath", "workers", "loglevel", "ignore")
"""tuple[str, ...]: Keys that may also be set from the environment or flags."""

RULE_KEYS = tuple(kind.value for kind in ChangeKind)
"""tuple[str, ...]: Tables holding prefix-to-command hook rules."""


class ConfigError(ValueError):
    """Raised when the configuration prevents any work from starting."""


def parse_int(value: int | str) -> int:
    """Converts an integer-like value (e.g. '5' from the environment) to int."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid integer '{value}'")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not re.fullmatch(r"-?\d+", text):
        raise ValueError(f"Invalid integer '{value}'")
    return int(text)


def parse_list(value: list | str) -> frozenset[str]:
    """Accepts a TOML array or a comma/whitespace separated string."""
    if isinstance(value, str):
        return frozenset(item for item in re.split(r"[,\s]+", value) if item)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return frozenset(value)
    raise ValueError(f"Expected a list of strings, got '{value}'")


@dataclass(frozen=True)
class Credentials:
    """HTTPS credentials for the remote.

    Attributes:
        username (str): Account name sent with the token. May be empty.
        token (str): Personal access token.
    """

    username: str = ""
    token: str = field(default="", repr=False)


@dataclass(frozen=True)
class Config:
    """An immutable snapshot of the run configuration.

    One instance is loaded per run and handed to every sync task, so all
    workers observe the same rule sets for the whole run.

    Attributes:
        token (str): GitHub personal access token.
        username (str): GitHub account name used with the token.
        basepath (Path): Root directory holding the local mirrors.
        workers (int): Number of repositories synchronized concurrently.
        loglevel (int): Verbosity from 0 (errors only) to 3 (trace).
        ignore (frozenset[str]): Repository identifiers that are never synced.
        rules (HookRules): Hook commands for added, removed, and changed refs.
    """

    token: str = field(default="", repr=False)
    username: str = ""
    basepath: Path = Path(".")
    workers: int = DEFAULT_WORKERS
    loglevel: int = DEFAULT_LOGLEVEL
    ignore: frozenset[str] = frozenset()
    rules: HookRules = field(default_factory=HookRules)

    @property
    def credentials(self) -> Credentials:
        return Credentials(username=self.username, token=self.token)

    def mirror_path(self, identifier: str) -> Path:
        """Returns the local mirror directory for an 'owner/name' identifier."""
        return self.basepath / identifier

    def require_token(self) -> None:
        """Raises ConfigError if no token is configured."""
        if not self.token:
            raise ConfigError("Token must be set")

    @classmethod
    def load(
        cls, path: Path | None = None, overrides: dict[str, Any] | None = None
    ) -> "Config":
        """Loads configuration from defaults, file, environment, and flags.

        Later sources take precedence: the TOML file overrides defaults,
        ``GITHUB_MIRROR_*`` environment variables override the file, and
        non-None ``overrides`` (command-line flags) override everything.

        Args:
            path (Path | None): Explicit config file. Falls back to
                ``GITHUB_MIRROR_CONFIG`` and then the default location.
            overrides (dict[str, Any] | None): Values from command-line flags.

        Returns:
            Config: The merged, validated configuration.

        Raises:
            ConfigError: If the config file is not valid TOML.
        """
        values: dict[str, Any] = {}

        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        config_path = path or (Path(env_path) if env_path else CONFIG_FILE)
        if config_path.exists():
            values.update(cls._read_file(config_path))
        elif path or env_path:
            logger.warning(f"Config file {config_path} not found. Using defaults.")

        values.update(cls._read_env())
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})

        return cls._build(values)

    @staticmethod
    def _read_file(path: Path) -> dict[str, Any]:
        """Parses a TOML config file, warning on unknown keys."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}

        invalid_keys = set(data) - set(SCALAR_KEYS) - set(RULE_KEYS)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in {path.name}: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )
            data = {k: v for k, v in data.items() if k not in invalid_keys}
        return data

    @staticmethod
    def _read_env() -> dict[str, str]:
        """Collects ``GITHUB_MIRROR_<KEY>`` overrides from the environment."""
        values = {}
        for key in SCALAR_KEYS:
            value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
            if value is not None:
                values[key] = value
        return values

    @classmethod
    def _build(cls, values: dict[str, Any]) -> "Config":
        """Validates raw values, falling back to defaults on bad input."""
        kwargs: dict[str, Any] = {}
        rules: dict[str, dict[str, str]] = {}

        for k, v in values.items():
            try:
                if k in ("token", "username"):
                    kwargs[k] = str(v)
                elif k == "basepath":
                    kwargs[k] = Path(str(v)).expanduser()
                elif k == "workers":
                    workers = parse_int(v)
                    if workers < 1:
                        raise ValueError(f"Worker count must be positive, got {v}")
                    kwargs[k] = workers
                elif k == "loglevel":
                    kwargs[k] = min(max(parse_int(v), 0), 3)
                elif k == "ignore":
                    kwargs[k] = parse_list(v)
                elif k in RULE_KEYS:
                    if not isinstance(v, dict):
                        raise ValueError(
                            f"Expected a table of prefix = command, got '{v}'"
                        )
                    rules[k] = {str(prefix): str(cmd) for prefix, cmd in v.items()}
            except ValueError as e:
                logger.warning(f"Config error in {k}: {e}. Falling back to default.")

        return cls(**kwargs, rules=HookRules(**rules))
