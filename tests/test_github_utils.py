"""Tests for GitHub utilities."""

import asyncio
from unittest.mock import Mock, patch

import pytest
from github import GithubException, UnknownObjectException

from reviewable_migrator.config import FirebaseCredentials, Settings
from reviewable_migrator.exceptions import ConfigurationError, MigrationError
from reviewable_migrator.github_utils import GitHubMarkdownRenderer, api_url, get_client, get_token


def make_settings(token: str | None = None) -> Settings:
    return Settings(
        firebase_url="https://x.firebaseio.com",
        credentials=FirebaseCredentials(),
        uploaded_files_url=None,
        encryption_enabled=False,
        github_token=token,
    )


@pytest.mark.unit
class TestGitHubUtils:
    @pytest.mark.parametrize(
        ("github_url", "expected"),
        [
            ("https://github.com", "https://api.github.com"),
            ("https://github.com/", "https://api.github.com"),
            ("https://ghe.example.com", "https://ghe.example.com/api/v3"),
        ],
    )
    def test_api_url(self, github_url: str, expected: str) -> None:
        assert api_url(github_url) == expected

    @patch("reviewable_migrator.github_utils.Github")
    def test_get_client(self, mock_github_class) -> None:
        mock_client = Mock()
        mock_github_class.return_value = mock_client

        client = get_client("test_token", "https://ghe.example.com")

        assert client == mock_client
        assert mock_github_class.call_args.kwargs["base_url"] == "https://ghe.example.com/api/v3"


@pytest.mark.unit
class TestGetToken:
    def test_environment_token_wins(self, make_store) -> None:
        store = make_store({"users": {"github:9": {"core": {"gitHubToken": "stored"}}}})
        assert asyncio.run(get_token(make_settings("env"), store, "github:9")) == "env"
        assert store.calls == []

    def test_stored_token(self, make_store) -> None:
        store = make_store({"users": {"github:9": {"core": {"gitHubToken": "stored"}}}})
        assert asyncio.run(get_token(make_settings(), store, "github:9")) == "stored"

    def test_missing_token(self, make_store) -> None:
        with pytest.raises(ConfigurationError, match="not signed in"):
            asyncio.run(get_token(make_settings(), make_store(), "github:9"))

    def test_encrypted_token(self, make_store) -> None:
        store = make_store({"users": {"github:9": {"core": {"gitHubToken": "rsa2:abc"}}}})
        with pytest.raises(ConfigurationError, match="encrypted"):
            asyncio.run(get_token(make_settings(), store, "github:9"))


@pytest.mark.unit
class TestMarkdownRenderer:
    def test_renders_in_repository_context(self) -> None:
        client = Mock()
        repo = Mock()
        client.get_repo.return_value = repo
        client.render_markdown.return_value = "<p>hi</p>"
        renderer = GitHubMarkdownRenderer(client)

        assert asyncio.run(renderer.render("hi", "acme/widgets")) == "<p>hi</p>"
        asyncio.run(renderer.render("again", "acme/widgets"))

        client.render_markdown.assert_called_with("again", repo)
        client.get_repo.assert_called_once_with("acme/widgets")

    def test_missing_repository_renders_without_context(self) -> None:
        client = Mock()
        client.get_repo.side_effect = UnknownObjectException(404, {"message": "Not Found"}, None)
        client.render_markdown.return_value = "<p>hi</p>"

        asyncio.run(GitHubMarkdownRenderer(client).render("hi", "acme/gone"))

        client.render_markdown.assert_called_once_with("hi")

    def test_api_errors_are_wrapped(self) -> None:
        client = Mock()
        client.render_markdown.side_effect = GithubException(500, {"message": "boom"}, None)

        with pytest.raises(MigrationError, match="Failed to render"):
            asyncio.run(GitHubMarkdownRenderer(client).render("hi", "acme/widgets"))
