"""Rewriting of user ids embedded anywhere in a JSON value.

User ids look like ``github:1234``. They show up as plain string values, as
comma-separated lists of ids, as the last ``|``-separated part of composite
keys, and as object keys. ``rewrite_user_keys`` walks a value of unknown shape
and passes every id it finds through a mapping function, pruning objects that
end up empty so that no ``{}`` is ever written out.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any, Final

# (old user key, context path) -> new user key
UserKeyMapper = Callable[[str, str], str]

KEY_CONTEXT: Final[str] = "$key"

_USER_KEY: Final[re.Pattern[str]] = re.compile(r"^github:\d+$")
_USER_KEY_LIST: Final[re.Pattern[str]] = re.compile(r"^github:\d+(?:\s*,\s*github:\d+)*$")
_USER_KEY_LIST_SEPARATOR: Final[re.Pattern[str]] = re.compile(r"\s*,\s*")
_USER_KEY_SUFFIX: Final[re.Pattern[str]] = re.compile(r"\|(github:\d+)$")


def _is_emptied(value: Any) -> bool:
    return isinstance(value, (dict, list)) and not value


def _rewrite_string(value: str, context: str, map_user_key: UserKeyMapper) -> str:
    if _USER_KEY.match(value):
        return map_user_key(value, context)
    if _USER_KEY_LIST.match(value):
        mapped: list[str] = []
        for user_key in _USER_KEY_LIST_SEPARATOR.split(value):
            new_user_key = map_user_key(user_key, context)
            if new_user_key not in mapped:
                mapped.append(new_user_key)
        return ",".join(mapped)
    return _USER_KEY_SUFFIX.sub(lambda m: f"|{map_user_key(m.group(1), context)}", value)


def rewrite_user_keys(value: Any, context: str, map_user_key: UserKeyMapper) -> Any:
    """Map every user id inside ``value``, returning the rewritten value.

    Dicts and lists are rewritten in place and returned; callers that need the
    original intact must pass a copy. ``context`` is the slash-delimited path
    of ``value`` and is extended per child so that mapping failures can say
    where an id was found. Object keys are mapped under a ``$key`` context.
    """
    if isinstance(value, str):
        return _rewrite_string(value, context, map_user_key)

    if isinstance(value, dict):
        # A renamed key must not overwrite a sibling that is still to be visited.
        rewritten: dict[str, Any] = {}
        for key, child in value.items():
            new_value = rewrite_user_keys(child, f"{context}/{key}", map_user_key)
            new_key = _rewrite_string(key, f"{context}/{KEY_CONTEXT}", map_user_key)
            if not _is_emptied(new_value):
                rewritten[new_key] = new_value
        value.clear()
        value.update(rewritten)
        return value

    if isinstance(value, list):
        rewritten = (
            rewrite_user_keys(item, f"{context}/{index}", map_user_key) for index, item in enumerate(value)
        )
        value[:] = [item for item in rewritten if not _is_emptied(item)]
        return value

    return value
