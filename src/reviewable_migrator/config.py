"""Environment-derived settings for talking to a Reviewable datastore."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .exceptions import ConfigurationError

logger: logging.Logger = logging.getLogger(__name__)

_ADMIN_SDK_URL: Final[str] = "https://console.firebase.google.com/u/0/project/_/settings/serviceaccounts/adminsdk"
_DEFAULT_GITHUB_URL: Final[str] = "https://github.com"


@dataclass(frozen=True)
class FirebaseCredentials:
    """Service account credentials, either as a key file or as discrete fields."""

    credentials_file: Path | None = None
    project_id: str | None = None
    client_email: str | None = None
    private_key: str | None = None

    def as_certificate(self) -> str | dict[str, str]:
        """Return the argument expected by ``firebase_admin.credentials.Certificate``."""
        if self.credentials_file is not None:
            return str(self.credentials_file)
        return {
            "type": "service_account",
            "project_id": self.project_id or "",
            "client_email": self.client_email or "",
            "private_key": self.private_key or "",
            "token_uri": "https://oauth2.googleapis.com/token",
        }


@dataclass(frozen=True)
class Settings:
    firebase_url: str
    credentials: FirebaseCredentials
    uploaded_files_url: str | None
    encryption_enabled: bool
    github_url: str = _DEFAULT_GITHUB_URL
    github_token: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            firebase_url=_firebase_url(env),
            credentials=_firebase_credentials(env),
            uploaded_files_url=derive_uploaded_files_url(env),
            encryption_enabled=bool(env.get("REVIEWABLE_ENCRYPTION_AES_KEY")),
            github_url=(env.get("REVIEWABLE_GITHUB_URL") or _DEFAULT_GITHUB_URL).rstrip("/"),
            github_token=env.get("REVIEWABLE_GITHUB_TOKEN") or None,
        )


def _firebase_url(env: Mapping[str, str]) -> str:
    url = env.get("REVIEWABLE_FIREBASE_URL")
    if not url and env.get("REVIEWABLE_FIREBASE"):
        url = f"https://{env['REVIEWABLE_FIREBASE']}.firebaseio.com"
    if not url:
        msg = "Missing required environment variable: REVIEWABLE_FIREBASE_URL"
        raise ConfigurationError(msg)
    return url


def _firebase_credentials(env: Mapping[str, str]) -> FirebaseCredentials:
    credentials_file = env.get("REVIEWABLE_FIREBASE_CREDENTIALS_FILE")
    if credentials_file:
        path = Path(credentials_file)
        issue = None
        if not path.exists():
            issue = "does not exist"
        elif path.is_dir():
            issue = "is a directory, not a file"
        if issue:
            msg = (
                "Unable to authenticate the Firebase Admin SDK. The path to a Firebase service account key "
                f"JSON file specified via REVIEWABLE_FIREBASE_CREDENTIALS_FILE ({credentials_file}) {issue}. "
                f"Navigate to {_ADMIN_SDK_URL} to generate that file and make sure the specified path is correct."
            )
            raise ConfigurationError(msg)
        return FirebaseCredentials(credentials_file=path)

    project_id = env.get("REVIEWABLE_FIREBASE_PROJECT_ID")
    client_email = env.get("REVIEWABLE_FIREBASE_CLIENT_EMAIL")
    private_key = env.get("REVIEWABLE_FIREBASE_PRIVATE_KEY")
    if project_id and client_email and private_key:
        return FirebaseCredentials(
            project_id=project_id,
            client_email=client_email,
            private_key=private_key.replace("\\n", "\n"),
        )

    msg = (
        "Unable to authenticate the Firebase Admin SDK. Either REVIEWABLE_FIREBASE_CREDENTIALS_FILE must point "
        "to a service account key JSON file, or REVIEWABLE_FIREBASE_PROJECT_ID, REVIEWABLE_FIREBASE_CLIENT_EMAIL "
        f"and REVIEWABLE_FIREBASE_PRIVATE_KEY must all be set. Navigate to {_ADMIN_SDK_URL} to generate a key."
    )
    raise ConfigurationError(msg)


def derive_uploaded_files_url(env: Mapping[str, str]) -> str | None:
    """Work out the base URL under which comment attachments are served."""
    explicit = env.get("REVIEWABLE_UPLOADED_FILES_URL")
    if explicit:
        return explicit.rstrip("/")

    provider = env.get("REVIEWABLE_UPLOADS_PROVIDER")
    if not provider:
        return None
    if provider == "local":
        return f"{env.get('REVIEWABLE_HOST_URL', '')}/usercontent"
    if provider == "s3":
        bucket_url = f"https://s3.amazonaws.com/{env.get('REVIEWABLE_S3_BUCKET', '')}"
        region = env.get("AWS_REGION")
        if region and region != "us-east-1":
            bucket_url = bucket_url.replace("//s3.", f"//s3-{region}.", 1)
        return bucket_url
    if provider == "gcs":
        return f"https://storage.googleapis.com/{env.get('REVIEWABLE_GCS_BUCKET', '')}"

    msg = f"Unknown REVIEWABLE_UPLOADS_PROVIDER: {provider}"
    raise ConfigurationError(msg)
