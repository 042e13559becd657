"""Tests for environment-derived settings."""

from pathlib import Path

import pytest

from reviewable_migrator.config import Settings, derive_uploaded_files_url
from reviewable_migrator.exceptions import ConfigurationError

CREDENTIAL_ENV = {
    "REVIEWABLE_FIREBASE_PROJECT_ID": "proj",
    "REVIEWABLE_FIREBASE_CLIENT_EMAIL": "sa@proj.iam.gserviceaccount.com",
    "REVIEWABLE_FIREBASE_PRIVATE_KEY": "-----BEGIN-----\\nabc\\n-----END-----",
}


@pytest.mark.unit
class TestSettingsFromEnv:
    def test_full_environment(self) -> None:
        env = {
            "REVIEWABLE_FIREBASE_URL": "https://example.firebaseio.com",
            "REVIEWABLE_ENCRYPTION_AES_KEY": "key",
            "REVIEWABLE_GITHUB_URL": "https://github.example.com/",
            "REVIEWABLE_GITHUB_TOKEN": "ghp_x",
            **CREDENTIAL_ENV,
        }

        settings = Settings.from_env(env)

        assert settings.firebase_url == "https://example.firebaseio.com"
        assert settings.encryption_enabled is True
        assert settings.github_url == "https://github.example.com"
        assert settings.github_token == "ghp_x"
        assert settings.uploaded_files_url is None
        assert settings.credentials.private_key == "-----BEGIN-----\nabc\n-----END-----"

    def test_firebase_url_from_project_name(self) -> None:
        settings = Settings.from_env({"REVIEWABLE_FIREBASE": "my-app", **CREDENTIAL_ENV})

        assert settings.firebase_url == "https://my-app.firebaseio.com"
        assert settings.github_url == "https://github.com"
        assert settings.encryption_enabled is False

    def test_missing_firebase_url(self) -> None:
        with pytest.raises(ConfigurationError, match="REVIEWABLE_FIREBASE_URL"):
            Settings.from_env(CREDENTIAL_ENV)

    def test_missing_credentials(self) -> None:
        with pytest.raises(ConfigurationError, match="Unable to authenticate"):
            Settings.from_env({"REVIEWABLE_FIREBASE_URL": "https://x.firebaseio.com"})

    def test_credentials_file(self, tmp_path: Path) -> None:
        key_file = tmp_path / "key.json"
        key_file.write_text("{}")

        settings = Settings.from_env(
            {"REVIEWABLE_FIREBASE_URL": "https://x", "REVIEWABLE_FIREBASE_CREDENTIALS_FILE": str(key_file)}
        )

        assert settings.credentials.as_certificate() == str(key_file)

    @pytest.mark.parametrize(
        ("make_path", "issue"),
        [(lambda p: p / "nope.json", "does not exist"), (lambda p: p, "is a directory")],
    )
    def test_bad_credentials_file(self, tmp_path: Path, make_path, issue: str) -> None:
        env = {"REVIEWABLE_FIREBASE_URL": "https://x", "REVIEWABLE_FIREBASE_CREDENTIALS_FILE": str(make_path(tmp_path))}

        with pytest.raises(ConfigurationError, match=issue):
            Settings.from_env(env)


@pytest.mark.unit
class TestUploadedFilesUrl:
    @pytest.mark.parametrize(
        ("env", "expected"),
        [
            ({}, None),
            ({"REVIEWABLE_UPLOADED_FILES_URL": "https://files.example.com/"}, "https://files.example.com"),
            (
                {"REVIEWABLE_UPLOADS_PROVIDER": "local", "REVIEWABLE_HOST_URL": "https://reviewable.example.com"},
                "https://reviewable.example.com/usercontent",
            ),
            ({"REVIEWABLE_UPLOADS_PROVIDER": "s3", "REVIEWABLE_S3_BUCKET": "b"}, "https://s3.amazonaws.com/b"),
            (
                {"REVIEWABLE_UPLOADS_PROVIDER": "s3", "REVIEWABLE_S3_BUCKET": "b", "AWS_REGION": "eu-west-1"},
                "https://s3-eu-west-1.amazonaws.com/b",
            ),
            (
                {"REVIEWABLE_UPLOADS_PROVIDER": "gcs", "REVIEWABLE_GCS_BUCKET": "g"},
                "https://storage.googleapis.com/g",
            ),
        ],
    )
    def test_derivation(self, env: dict[str, str], expected: str | None) -> None:
        assert derive_uploaded_files_url(env) == expected

    def test_unknown_provider(self) -> None:
        with pytest.raises(ConfigurationError, match="ftp"):
            derive_uploaded_files_url({"REVIEWABLE_UPLOADS_PROVIDER": "ftp"})
