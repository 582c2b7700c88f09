"""GitHub REST API client used to discover which repositories to mirror."""

import logging
from collections.abc import Iterator
from typing import Any

import requests

from .constants import API_PAGE_SIZE, API_TIMEOUT, APP_NAME, GITHUB_API_URL

logger = logging.getLogger(APP_NAME)


class DiscoveryError(RuntimeError):
    """Raised when the repository list cannot be retrieved."""


class GitHubClient:
    """Lists the authenticated user's own and starred repositories.

    Example:
        client = GitHubClient(token)
        for identifier in sorted(client.list_repositories()):
            print(identifier)
    """

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API_URL,
        session: requests.Session | None = None,
    ):
        """Initializes the client and its HTTP session.

        Args:
            token (str): GitHub personal access token.
            api_url (str): Base URL of the REST API.
            session (requests.Session | None): A pre-configured session. A new
                one is created when omitted.
        """
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"token {token}",
                "User-Agent": APP_NAME,
            }
        )

    def _paginate(self, endpoint: str) -> Iterator[dict[str, Any]]:
        """Yields every item of a paginated endpoint, following Link headers."""
        url: str | None = f"{self.api_url}/{endpoint}"
        params: dict[str, Any] | None = {"per_page": API_PAGE_SIZE}

        while url:
            try:
                response = self.session.get(url, params=params, timeout=API_TIMEOUT)
                response.raise_for_status()
                items = response.json()
            except (requests.RequestException, ValueError) as e:
                raise DiscoveryError(f"Unable to list {endpoint}: {e}") from e

            if not isinstance(items, list):
                raise DiscoveryError(f"Unexpected response from {endpoint}: {items}")
            yield from items

            # The next link already carries the query string.
            url = response.links.get("next", {}).get("url")
            params = None

    def list_owned_repositories(self) -> set[str]:
        """Returns 'owner/name' for every repository the user can access."""
        repos = set()
        for repo in self._paginate("user/repos"):
            owner = repo.get("owner") or {}
            if owner.get("login") and repo.get("name"):
                repos.add(f"{owner['login']}/{repo['name']}")
        return repos

    def list_starred_repositories(self) -> set[str]:
        """Returns 'owner/name' for every repository the user starred.

        Entries without an owner (e.g. repositories that have since been
        deleted) are skipped.
        """
        repos = set()
        for repo in self._paginate("user/starred"):
            owner = repo.get("owner")
            if not owner or not owner.get("login") or not repo.get("name"):
                continue
            repos.add(f"{owner['login']}/{repo['name']}")
        return repos

    def list_repositories(self) -> set[str]:
        """Returns the union of owned and starred repositories.

        Raises:
            DiscoveryError: If either listing fails.
        """
        logger.debug("Getting self repos")
        owned = self.list_owned_repositories()
        logger.debug("Getting starred repos")
        starred = self.list_starred_repositories()
        logger.debug(f"Self Repos: {len(owned)}, Starred Repos: {len(starred)}")
        return owned | starred
