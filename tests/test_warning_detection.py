"""
Tests to demonstrate and verify conftest.py warning detection functionality.

These tests verify that:
1. Integration tests fail when the migrator logs a warning
2. Unit tests allow warnings without failing
"""

import asyncio
import logging
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from reviewable_migrator.loader import Loader
from reviewable_migrator.records import Record


@pytest.mark.unit
class TestUnitTestWarningBehavior:
    """Verify that unit tests allow warnings without failing."""

    def test_unit_test_allows_loader_warnings(self, make_store, caplog: pytest.LogCaptureFixture) -> None:
        """A review record without core data logs a warning; the unit test still passes."""
        loader = Loader(make_store(), admin_user_key="github:9")

        asyncio.run(loader.load([Record("reviews/r1", {"discussions": {"d1": {"x": 1}}})]))

        assert any(record.levelno == logging.WARNING for record in caplog.records)


@pytest.mark.integration
class TestIntegrationTestWarningBehavior:
    """Verify that integration tests fail when warnings are detected."""

    def test_integration_test_without_warnings_passes(self) -> None:
        """Integration test with no warnings should pass normally."""
        logger = logging.getLogger("reviewable_migrator.loader")
        logger.info("This is just an info log - should not fail")
        logger.debug("This is a debug log - should not fail")

    def test_integration_test_with_warning_fails(self, tmp_path: Path) -> None:
        """Run a throwaway integration test that triggers a loader warning and check that it fails."""
        tests_dir = Path(__file__).parent
        shutil.copy(tests_dir / "conftest.py", tmp_path / "conftest.py")

        test_file = tmp_path / "test_temp_warning.py"
        test_file.write_text("""
import asyncio

import pytest

from reviewable_migrator.loader import Loader
from reviewable_migrator.records import Record


@pytest.mark.integration
def test_warning(make_store):
    loader = Loader(make_store(), admin_user_key="github:9")
    asyncio.run(loader.load([Record("reviews/r1", {"discussions": {"d1": {"x": 1}}})]))
""")

        result = subprocess.run(  # noqa: S603
            [sys.executable, "-m", "pytest", str(test_file), "-v", "--tb=short", "-p", "no:cacheprovider"],
            capture_output=True,
            text=True,
            cwd=str(tmp_path),
            check=False,
        )

        assert result.returncode != 0, f"Expected test to fail but it passed:\n{result.stdout}"
        assert "warning(s) detected" in result.stdout or "warning(s) detected" in result.stderr, (
            f"Expected 'warning(s) detected' in output:\nstdout: {result.stdout}\nstderr: {result.stderr}"
        )
