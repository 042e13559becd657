from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Final

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from .exceptions import StoreError

if TYPE_CHECKING:
    from .config import Settings

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

SERVER_TIMESTAMP: Final[dict[str, str]] = {".sv": "timestamp"}
DEFAULT_HTTP_TIMEOUT: Final[float] = 30.0

_ESCAPED_CHARACTERS: Final[re.Pattern[str]] = re.compile(r"[\\.$#\[\]/]")
_PLACEHOLDER: Final[re.Pattern[str]] = re.compile(r"(^|\|):(\w+)")


def escape(value: str) -> str:
    """Escape a string so it can be used as a single key in the tree."""
    return _ESCAPED_CHARACTERS.sub(lambda m: f"\\{ord(m.group(0)):02x}", str(value))


def interpolate(path: str, params: Mapping[str, Any] | None = None) -> str:
    """Substitute ``:name`` placeholders in a path with escaped parameter values.

    Placeholders may start a segment or follow a ``|`` inside one, so composite
    keys like ``:owner|:repo`` work. Without params the path is returned as-is.
    """
    path = path.strip("/")
    if not params:
        return path

    def substitute(match: re.Match[str]) -> str:
        name = match.group(2)
        if name not in params:
            msg = f"No value for placeholder :{name} in path {path}"
            raise ValueError(msg)
        return match.group(1) + escape(str(params[name]))

    return "/".join(_PLACEHOLDER.sub(substitute, segment) for segment in path.split("/"))


class FirebaseStore:
    """DataStore backed by the Firebase Admin SDK's Realtime Database client.

    The SDK is blocking, so each call runs in a worker thread and the event
    loop only ever sees one suspension per request.
    """

    _app: firebase_admin.App

    def __init__(self, app: firebase_admin.App) -> None:
        self._app = app

    def _ref(self, path: str, params: Mapping[str, Any] | None) -> db.Reference:
        return db.reference(f"/{interpolate(path, params)}", app=self._app)

    async def _call(self, description: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except FirebaseError as e:
            msg = f"Firebase {description} failed: {e}"
            raise StoreError(msg) from e

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        ref = self._ref(path, params)
        logger.debug(f"GET {ref.path}")
        return await self._call(f"read of {ref.path}", ref.get)

    async def set(self, path: str, value: Any, params: Mapping[str, Any] | None = None) -> None:
        ref = self._ref(path, params)
        logger.debug(f"SET {ref.path}")
        if value is None:
            await self._call(f"delete of {ref.path}", ref.delete)
        else:
            await self._call(f"write to {ref.path}", lambda: ref.set(value))

    async def update(self, path: str, value: Mapping[str, Any], params: Mapping[str, Any] | None = None) -> None:
        ref = self._ref(path, params)
        logger.debug(f"UPDATE {ref.path}")
        await self._call(f"update of {ref.path}", lambda: ref.update(dict(value)))

    async def transaction(
        self,
        path: str,
        update_fn: Callable[[Any], Any],
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        ref = self._ref(path, params)
        logger.debug(f"TRANSACTION {ref.path}")
        return await self._call(f"transaction on {ref.path}", lambda: ref.transaction(update_fn))

    async def push(self, path: str, value: Any, params: Mapping[str, Any] | None = None) -> str:
        ref = self._ref(path, params)
        logger.debug(f"PUSH {ref.path}")
        child = await self._call(f"push to {ref.path}", lambda: ref.push(value))
        return child.key


def connect(settings: Settings, *, name: str = "[DEFAULT]", timeout: float = DEFAULT_HTTP_TIMEOUT) -> FirebaseStore:
    """Initialize the Firebase Admin SDK for the configured database and wrap it."""
    cred = credentials.Certificate(settings.credentials.as_certificate())
    app = firebase_admin.initialize_app(
        cred,
        {
            "databaseURL": settings.firebase_url,
            "databaseAuthVariableOverride": {"uid": "server"},
            "httpTimeout": timeout,
        },
        name=name,
    )
    logger.info(f"Connected to {settings.firebase_url}")
    return FirebaseStore(app)
