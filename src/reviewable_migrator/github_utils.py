from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Final

from github import Auth, Github, GithubException, UnknownObjectException

from .exceptions import ConfigurationError, MigrationError

if TYPE_CHECKING:
    from github.Repository import Repository

    from .config import Settings
    from .protocols import DataStore

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_PUBLIC_GITHUB_URL: Final[str] = "https://github.com"
_ENCRYPTED_TOKEN: Final[re.Pattern[str]] = re.compile(r"^rsa\d*:")


def api_url(github_url: str) -> str:
    """Return the REST API base for github.com or a GitHub Enterprise host."""
    github_url = github_url.rstrip("/")
    if github_url == _PUBLIC_GITHUB_URL:
        return "https://api.github.com"
    return f"{github_url}/api/v3"


def get_client(token: str, github_url: str = _PUBLIC_GITHUB_URL) -> Github:
    """Get a GitHub client using the token."""
    return Github(base_url=api_url(github_url), auth=Auth.Token(token))


async def get_token(settings: Settings, store: DataStore, user_key: str) -> str:
    """Get a GitHub token from REVIEWABLE_GITHUB_TOKEN or the admin user's stored token."""
    if settings.github_token:
        return settings.github_token

    token = await store.get("users/:userKey/core/gitHubToken", {"userKey": user_key})
    if not token:
        msg = f"User {user_key} not signed in to Reviewable and no REVIEWABLE_GITHUB_TOKEN given"
        raise ConfigurationError(msg)
    if _ENCRYPTED_TOKEN.match(token):
        msg = f"Stored token for user {user_key} is encrypted; set REVIEWABLE_GITHUB_TOKEN instead"
        raise ConfigurationError(msg)
    return token


class GitHubMarkdownRenderer:
    """MarkdownRenderer backed by the GitHub markdown API."""

    _client: Github
    _repos: dict[str, Repository | None]

    def __init__(self, client: Github) -> None:
        self._client = client
        self._repos = {}

    def _get_repo(self, repo_full_name: str) -> Repository | None:
        if repo_full_name not in self._repos:
            try:
                self._repos[repo_full_name] = self._client.get_repo(repo_full_name)
            except UnknownObjectException:
                logger.warning(f"Repository {repo_full_name} not found; rendering without repository context")
                self._repos[repo_full_name] = None
        return self._repos[repo_full_name]

    def _render(self, markdown: str, repo_full_name: str) -> str:
        try:
            repo = self._get_repo(repo_full_name)
            if repo is None:
                return self._client.render_markdown(markdown)
            return self._client.render_markdown(markdown, repo)
        except GithubException as e:
            msg = f"Failed to render markdown for {repo_full_name}: {e}"
            raise MigrationError(msg) from e

    async def render(self, markdown: str, repo_full_name: str) -> str:
        return await asyncio.to_thread(self._render, markdown, repo_full_name)
