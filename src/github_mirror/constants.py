"""Global constants and default path definitions for GitHub Mirror.

This module defines the application identifiers, the configuration file
location, the environment variable contract shared with hook commands, and the
tunables used by the synchronization engine.
"""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "github-mirror"
"""str: The human-readable application name (also the logger name)."""

ENV_PREFIX = "GITHUB_MIRROR_"
"""str: Prefix for environment variables that override configuration keys."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
_BASE_CONFIG = Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"

CONFIG_DIR: Path = _BASE_CONFIG / "github-mirror"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default configuration file path."""

# --- Remote Endpoints ---
GITHUB_URL = "https://github.com"
"""str: Base URL that repository identifiers are appended to for cloning."""

GITHUB_API_URL = "https://api.github.com"
"""str: Base URL of the GitHub REST API used for repository discovery."""

API_PAGE_SIZE = 100
"""int: Page size requested from paginated API endpoints (GitHub's maximum)."""

API_TIMEOUT = 30
"""int: Seconds before a single discovery request is abandoned."""

# --- Hook Contract ---
HOOK_REPO_VAR = "REPO"
"""str: Environment variable carrying the 'owner/name' identifier to hooks."""

HOOK_REF_VAR = "BRANCH"
"""str: Environment variable carrying the full reference name to hooks."""

# --- Engine Tunables ---
DEFAULT_WORKERS = 5
"""int: Number of repositories synchronized concurrently."""

DEFAULT_LOGLEVEL = 1
"""int: Default verbosity (0 is silent, 3 is verbose)."""

REF_RETRY_DELAY = 1.0
"""float: Seconds to wait before re-reading references after a read error."""

EMPTY_REMOTE_MARKERS = (
    "remote repository is empty",
    "appear to have cloned an empty repository",
)
"""tuple[str, ...]: git stderr fragments reporting an empty remote."""

CONCURRENT_UPDATE_MARKERS = (
    "reference has changed concurrently",
    "cannot lock ref",
)
"""tuple[str, ...]: git stderr fragments reporting a ref moved under us."""
