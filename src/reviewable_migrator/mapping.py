"""User id and organization name mapping with ghosting.

A ``UserMapper`` translates source user ids (``github:NNNN``) to destination
ids. Without an explicit map it runs in identity mode and learns every id it
sees, which is also how extraction discovers the set of users to copy. Ids
missing from an explicit map are replaced by the ghost user and logged, or
abort the run when ghosting is disabled.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from .exceptions import MappingError, MigrationError

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_GHOST_USER_KEY: Final[str] = "github:1"


@dataclass(frozen=True)
class GhostedUser:
    """A user id that had no mapping and was replaced by the ghost user."""

    user_key: str
    context: str


class UserMapper:
    """Maps user ids for the reference rewriter."""

    identity: bool
    ghost_user_key: str | None
    user_map: dict[str, str]
    ghosted: list[GhostedUser]
    on_new_user: Callable[[str], None] | None

    def __init__(
        self,
        user_map: Mapping[str, str] | None = None,
        *,
        ghost_user_key: str | None = DEFAULT_GHOST_USER_KEY,
        on_new_user: Callable[[str], None] | None = None,
    ) -> None:
        self.identity = user_map is None
        self.user_map = dict(user_map or {})
        self.ghost_user_key = ghost_user_key
        self.ghosted = []
        self.on_new_user = on_new_user

    def __call__(self, user_key: str, context: str) -> str:
        return self.map(user_key, context)

    def is_mapped(self, user_key: str) -> bool:
        return bool(self.user_map.get(user_key))

    def map(self, user_key: str, context: str) -> str:
        """Return the destination id for ``user_key`` found at ``context``."""
        if self.identity and not self.user_map.get(user_key):
            self.user_map[user_key] = user_key
            logger.debug(f"Discovered user {user_key} at {context}")
            if self.on_new_user is not None:
                self.on_new_user(user_key)

        new_user_key = self.user_map.get(user_key)
        if new_user_key:
            return new_user_key

        if self.ghost_user_key is None:
            raise MappingError(user_key, context)
        if user_key != self.ghost_user_key:
            self.ghosted.append(GhostedUser(user_key=user_key, context=context))
        return self.ghost_user_key

    def unique_ghosted(self) -> list[GhostedUser]:
        """Ghosted users with only the first context kept for each id."""
        seen: dict[str, GhostedUser] = {}
        for ghost in self.ghosted:
            seen.setdefault(ghost.user_key, ghost)
        return list(seen.values())


class OrgMapper:
    """Maps organization (owner) names; unmapped names pass through unchanged."""

    org_map: dict[str, str] | None
    missing: set[str]

    def __init__(self, org_map: Mapping[str, str] | None = None) -> None:
        self.org_map = {key.lower(): value for key, value in org_map.items()} if org_map is not None else None
        self.missing = set()

    def __call__(self, org: str) -> str:
        return self.map(org)

    def map(self, org: str) -> str:
        if not org:
            msg = "internal error: missing org argument"
            raise MigrationError(msg)
        if self.org_map is None:
            return org
        mapped = self.org_map.get(org.lower())
        if mapped:
            return mapped
        self.missing.add(org.lower())
        return org
