"""Protocols describing the collaborators the migration pipeline talks to.

The pipeline is split into three concerns:

1. DataStore: the hierarchical JSON tree (a Firebase Realtime Database)
2. MarkdownRenderer: turns comment markdown into HTML on the destination side
3. Extractor / Loader: walk, sanitize, stream and replay the data

Keeping the first two behind protocols lets the pipeline run against an
in-memory tree in tests and against the Firebase Admin SDK in production.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol


class DataStore(Protocol):
    """Tree-addressed access to a Firebase-style datastore.

    Paths are slash-delimited. A segment of the form ``:name`` is replaced by
    ``params["name"]`` after escaping, so callers never escape values
    themselves. Paths without params are used verbatim and must already be
    escaped (record keys are written that way).

    Every method is a suspension point; an absent path reads as ``None``
    rather than raising.
    """

    async def get(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        """Return the value at the path, or None if nothing is stored there."""
        ...

    async def set(self, path: str, value: Any, params: Mapping[str, str] | None = None) -> None:
        """Overwrite the value at the path; None deletes it."""
        ...

    async def update(self, path: str, value: Mapping[str, Any], params: Mapping[str, str] | None = None) -> None:
        """Merge the given children into the value at the path."""
        ...

    async def transaction(
        self,
        path: str,
        update_fn: Callable[[Any], Any],
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Atomically replace the value with ``update_fn(current)`` and return it."""
        ...

    async def push(self, path: str, value: Any, params: Mapping[str, str] | None = None) -> str:
        """Append a child with a generated key and return that key."""
        ...


class MarkdownRenderer(Protocol):
    """Renders comment markdown the way the code host would."""

    async def render(self, markdown: str, repo_full_name: str) -> str:
        """Return HTML for the markdown, resolving references against the repo."""
        ...
