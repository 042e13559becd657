"""
Pytest configuration and fixtures.

This module configures pytest behavior for different test types:
- Integration tests: Fail on any warnings from the code under test
- Unit tests: Allow warnings, and run against the in-memory FakeStore below
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from typing_extensions import override

import pytest

from reviewable_migrator.firebase_utils import interpolate

if TYPE_CHECKING:
    from collections.abc import Generator

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class FakeStore:
    """In-memory DataStore holding a plain nested dict.

    Every call yields to the event loop once so concurrent callers interleave
    the way they would against a real network store.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = copy.deepcopy(data) if data else {}
        self.calls: list[tuple[str, str]] = []
        self._push_counter = 0

    def _segments(self, path: str, params: Mapping[str, Any] | None) -> list[str]:
        return [segment for segment in interpolate(path, params).split("/") if segment]

    def read(self, path: str) -> Any:
        node: Any = self.data
        for segment in self._segments(path, None):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    def _write(self, segments: list[str], value: Any) -> None:
        node = self.data
        for segment in segments[:-1]:
            node = node.setdefault(segment, {})
        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = copy.deepcopy(value)

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        self.calls.append(("get", interpolate(path, params)))
        await asyncio.sleep(0)
        node: Any = self.data
        for segment in self._segments(path, params):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node)

    async def set(self, path: str, value: Any, params: Mapping[str, Any] | None = None) -> None:
        self.calls.append(("set", interpolate(path, params)))
        await asyncio.sleep(0)
        self._write(self._segments(path, params), value)

    async def update(self, path: str, value: Mapping[str, Any], params: Mapping[str, Any] | None = None) -> None:
        self.calls.append(("update", interpolate(path, params)))
        await asyncio.sleep(0)
        segments = self._segments(path, params)
        for key, child in value.items():
            self._write([*segments, key], child)

    async def transaction(
        self, path: str, update_fn: Callable[[Any], Any], params: Mapping[str, Any] | None = None
    ) -> Any:
        self.calls.append(("transaction", interpolate(path, params)))
        await asyncio.sleep(0)
        segments = self._segments(path, params)
        new_value = update_fn(self.read("/".join(segments)))
        self._write(segments, new_value)
        return new_value

    async def push(self, path: str, value: Any, params: Mapping[str, Any] | None = None) -> str:
        self.calls.append(("push", interpolate(path, params)))
        await asyncio.sleep(0)
        self._push_counter += 1
        key = f"-push{self._push_counter:04d}"
        self._write([*self._segments(path, params), key], value)
        return key


@pytest.fixture
def make_store() -> Callable[..., FakeStore]:
    """Factory for FakeStore instances seeded with a data tree."""
    return FakeStore


class IntegrationTestWarningHandler(logging.Handler):
    """Custom logging handler to capture warnings during integration tests."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        """Capture WARNING and above level logs."""
        if self.test_nodeid not in _integration_test_warnings:
            _integration_test_warnings[self.test_nodeid] = []
        _integration_test_warnings[self.test_nodeid].append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(
    request: pytest.FixtureRequest,
) -> Generator[None]:
    """
    Automatically fail integration tests if any WARNING level logs are emitted from the code under test.

    Warnings are acceptable when running the tool as an operator (missing reviews,
    broken downloads), but an integration run against a prepared datastore is
    expected to be clean.
    """
    is_integration_test = request.node.get_closest_marker("integration") is not None

    if not is_integration_test:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []

    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None]:  # type: ignore[misc]
    """
    Hook to check for warnings after test execution and mark test as failed if warnings were detected.
    """
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        test_nodeid = item.nodeid
        warning_records = _integration_test_warnings.get(test_nodeid, [])

        if warning_records:
            warning_messages = [
                f"{record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            ]

            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {msg}" for msg in warning_messages
            )

        _integration_test_warnings.pop(test_nodeid, None)
