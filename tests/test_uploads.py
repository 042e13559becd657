"""Tests for uploaded-file link rewriting and downloads."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from reviewable_migrator.uploads import PLACEHOLDER_URL, UploadRewriter, download_file, restore_uploaded_urls

BASE = "https://uploads.example.com"


@pytest.mark.unit
class TestRewrite:
    def test_links_point_at_placeholder(self) -> None:
        rewriter = UploadRewriter(BASE)

        result = rewriter.rewrite(f"![img]({BASE}/a/b.png) and {BASE}/c/d(1).txt.")

        assert result == f"![img]({PLACEHOLDER_URL}/a/b.png) and {PLACEHOLDER_URL}/c/d(1).txt."
        assert rewriter.scheduled == set()

    def test_other_links_untouched(self) -> None:
        markdown = "see https://example.com/a.png"
        assert UploadRewriter(BASE).rewrite(markdown) == markdown

    def test_each_url_scheduled_once(self, tmp_path: Path) -> None:
        rewriter = UploadRewriter(BASE, download_dir=tmp_path)

        rewriter.rewrite(f"{BASE}/a/b.png {BASE}/a/b.png", "acme/widgets#1")
        rewriter.rewrite(f"{BASE}/a/b.png", "acme/widgets#2")

        assert rewriter.scheduled == {f"{BASE}/a/b.png"}

    def test_restore(self) -> None:
        markdown = f"![x]({PLACEHOLDER_URL}/a/b.png)"
        assert restore_uploaded_urls(markdown, "https://files.new/") == "![x](https://files.new/a/b.png)"


@pytest.mark.unit
class TestDownloads:
    def test_downloads_into_mirrored_directories(self, tmp_path: Path) -> None:
        rewriter = UploadRewriter(BASE, download_dir=tmp_path)
        rewriter.rewrite(f"{BASE}/a/b.png")

        with patch("reviewable_migrator.uploads.download_file") as mock_download:
            asyncio.run(rewriter.download_pending())

        mock_download.assert_called_once_with(f"{BASE}/a/b.png", tmp_path / "a")
        assert rewriter.downloaded_count == 1

    def test_failures_are_recorded(self, tmp_path: Path) -> None:
        rewriter = UploadRewriter(BASE, download_dir=tmp_path)
        rewriter.rewrite(f"{BASE}/a/b.png", "acme/widgets#1")
        rewriter.rewrite(f"{BASE}/a/c.png", "acme/widgets#1")

        def fake_download(url: str, dest_dir: Path) -> Path:
            if url.endswith("b.png"):
                raise requests.HTTPError("404 Not Found")
            return dest_dir / "c.png"

        with patch("reviewable_migrator.uploads.download_file", side_effect=fake_download):
            asyncio.run(rewriter.download_pending())

        assert rewriter.broken_files == [f"{BASE}/a/b.png (acme/widgets#1)"]
        assert rewriter.downloaded_count == 1

    def test_pending_drained(self, tmp_path: Path) -> None:
        rewriter = UploadRewriter(BASE, download_dir=tmp_path)
        rewriter.rewrite(f"{BASE}/a/b.png")

        with patch("reviewable_migrator.uploads.download_file") as mock_download:
            asyncio.run(rewriter.download_pending())
            asyncio.run(rewriter.download_pending())

        assert mock_download.call_count == 1

    def test_download_file_writes_stream(self, tmp_path: Path) -> None:
        response = MagicMock()
        response.__enter__.return_value = response
        response.iter_content.return_value = [b"abc", b"def"]

        with patch("reviewable_migrator.uploads.requests.get", return_value=response) as mock_get:
            dest = download_file(f"{BASE}/a/my%20file.txt", tmp_path / "a")

        assert dest == tmp_path / "a" / "my file.txt"
        assert dest.read_bytes() == b"abcdef"
        mock_get.assert_called_once()
        response.raise_for_status.assert_called_once()
