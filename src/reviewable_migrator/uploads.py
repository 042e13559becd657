"""Uploaded attachment links inside review comments.

Comment markdown can link files uploaded to the source instance's storage.
Extraction swaps that storage prefix for a fixed placeholder (and can download
the files for re-upload by the operator); load swaps the placeholder for the
destination's own prefix.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final
from urllib.parse import unquote, urlparse

import requests

logger: logging.Logger = logging.getLogger(__name__)

PLACEHOLDER_URL: Final[str] = "https://REVIEWABLE_UPLOADED_FILES.URL"
DOWNLOAD_TIMEOUT: Final[float] = 60.0


@dataclass(frozen=True)
class PendingDownload:
    url: str
    relative_path: str  # path under the uploads base URL, with leading slash
    context: str


class UploadRewriter:
    """Replaces uploaded-file URLs with the placeholder and tracks downloads."""

    _pattern: re.Pattern[str]
    download_dir: Path | None
    scheduled: set[str]
    broken_files: list[str]
    _pending: list[PendingDownload]

    def __init__(self, uploaded_files_url: str, *, download_dir: str | Path | None = None) -> None:
        # A URL runs until whitespace or a closing paren, allowing "(1)"-style
        # suffixes that browsers add to duplicate file names.
        self._pattern = re.compile(f"({re.escape(uploaded_files_url.rstrip('/'))})((?:[^()\\s]|\\(\\d+\\))*)")
        self.download_dir = Path(download_dir) if download_dir else None
        self.scheduled = set()
        self.broken_files = []
        self._pending = []

    @property
    def downloaded_count(self) -> int:
        return len(self.scheduled) - len(self.broken_files)

    def rewrite(self, markdown: str, context: str = "") -> str:
        """Return ``markdown`` with every uploaded-file URL pointing at the placeholder."""

        def replace(match: re.Match[str]) -> str:
            host, rest = match.group(1), match.group(2)
            url = host + rest
            if self.download_dir is not None and url not in self.scheduled:
                self.scheduled.add(url)
                self._pending.append(PendingDownload(url=url, relative_path=rest, context=context))
            return PLACEHOLDER_URL + rest

        return self._pattern.sub(replace, markdown)

    async def download_pending(self) -> None:
        """Download everything scheduled so far; failures are recorded, not raised."""
        pending, self._pending = self._pending, []
        if not pending or self.download_dir is None:
            return
        await asyncio.gather(*(self._download(item) for item in pending))

    async def _download(self, item: PendingDownload) -> None:
        assert self.download_dir is not None
        dest_dir = self.download_dir / PurePosixPath(item.relative_path.lstrip("/")).parent
        try:
            await asyncio.to_thread(download_file, item.url, dest_dir)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"File download failed: {item.url}: {e}")
            suffix = f" ({item.context})" if item.context else ""
            self.broken_files.append(f"{item.url}{suffix}")


def download_file(url: str, dest_dir: Path) -> Path:
    """Download ``url`` into ``dest_dir``, keeping the file name from the URL."""
    filename = unquote(PurePosixPath(urlparse(url).path).name) or "download"
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / filename

    with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
        response.raise_for_status()
        with dest.open("wb") as f:
            for chunk in response.iter_content(chunk_size=65536):
                f.write(chunk)

    logger.debug(f"Downloaded {url} to {dest}")
    return dest


def restore_uploaded_urls(markdown: str, uploaded_files_url: str) -> str:
    """Point placeholder links at the destination's uploaded files location."""
    return markdown.replace(PLACEHOLDER_URL, uploaded_files_url.rstrip("/"))
