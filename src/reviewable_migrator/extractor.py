"""Extraction of everything reachable from a list of repositories.

Extraction Flow
---------------
The walk proceeds in strictly ordered phases. Each phase fans out over its
items with a bounded number of concurrent requests, but a phase only starts
once the previous one has fully completed, because later phases consume what
earlier ones discovered:

Phase 1: System
    - Read /system, check the encryption markers, emit the two build watermarks

Phase 2: Organizations
    - One record per owner of a seed repository (owners/coverage dropped)
    - Queue a membership resync for organizations with autoConnect set

Phase 3: Repositories
    - Sanitize each repository
    - Collect review keys from pullRequests and oldPullRequests; these maps
      are the only way to reach reviews
    - Remember "owner/repo#N" per review key for diagnostics

Phase 4: Rules
    - Always emitted, a null value meaning "no rule configured"

Phase 5: Reviews
    - Deduplicate the collected review keys into the reachable set
    - Live review, else archived review (decompress, sanitize, recompress),
      else report the key as missing

Phase 6: Linemaps, filemaps, basemaps
    - Copied verbatim when present

Phase 7: Users
    - Every user in the id map. In identity mode the map has been growing
      with each id the rewriter met in phases 1-6.
    - ``state`` restricted to the reachable reviews

Every value passes through the reference rewriter as it is written, so a
record on disk never carries a source user id.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Final

from tqdm import tqdm

from .archives import compress_payload, decompress_payload
from .exceptions import ConfigurationError
from .firebase_utils import escape
from .models import ExtractionResult, ExtractionState, ExtractionStats
from .rewriter import rewrite_user_keys
from .sanitizers import (
    DEFAULT_EXCLUSIONS,
    ExclusionConfig,
    pull_request_review_keys,
    sanitize_organization,
    sanitize_repository,
    sanitize_review,
    sanitize_user,
    split_user_for_merge,
)
from .scheduler import for_each_limit, map_limit
from .utils import is_empty

if TYPE_CHECKING:
    from .mapping import OrgMapper, UserMapper
    from .protocols import DataStore
    from .records import RecordWriter
    from .uploads import UploadRewriter

logger: logging.Logger = logging.getLogger(__name__)

ORGANIZATION_CONCURRENCY: Final[int] = 5
REPOSITORY_CONCURRENCY: Final[int] = 10
REVIEW_CONCURRENCY: Final[int] = 25
USER_CONCURRENCY: Final[int] = 25
USERNAME_LOOKUP_CONCURRENCY: Final[int] = 5

REVIEW_MAP_KINDS: Final[tuple[str, ...]] = ("linemaps", "filemaps", "basemaps")


def normalize_repo_names(repo_names: Sequence[str]) -> list[str]:
    """Lowercase and deduplicate "owner/repo" names, keeping their order."""
    names: list[str] = []
    for name in repo_names:
        lowered = name.lower()
        if "/" not in lowered:
            msg = f"Invalid repository name '{name}'. Expected format: 'owner/repo'"
            raise ConfigurationError(msg)
        if lowered not in names:
            names.append(lowered)
    return names


class Extractor:
    """Walks the source datastore and writes one record per entity."""

    _store: DataStore
    _writer: RecordWriter
    repo_names: list[str]
    org_names: list[str]
    user_mapper: UserMapper
    org_mapper: OrgMapper
    uploads: UploadRewriter | None
    merge: bool
    exclusions: ExclusionConfig
    state: ExtractionState
    stats: ExtractionStats
    progress: tqdm

    def __init__(
        self,
        store: DataStore,
        writer: RecordWriter,
        *,
        repo_names: Sequence[str],
        user_mapper: UserMapper,
        org_mapper: OrgMapper,
        uploads: UploadRewriter | None = None,
        merge: bool = False,
        exclusions: ExclusionConfig = DEFAULT_EXCLUSIONS,
        progress: tqdm | None = None,
    ) -> None:
        self._store = store
        self._writer = writer
        self.repo_names = normalize_repo_names(repo_names)
        self.org_names = list(dict.fromkeys(name.split("/", 1)[0] for name in self.repo_names))
        self.user_mapper = user_mapper
        self.org_mapper = org_mapper
        self.uploads = uploads
        self.merge = merge
        self.exclusions = exclusions
        self.state = ExtractionState()
        self.stats = ExtractionStats()
        self.progress = progress if progress is not None else tqdm(total=0, disable=True)
        if user_mapper.identity:
            user_mapper.on_new_user = lambda _user_key: self._grow_progress(1)

    def _grow_progress(self, amount: int) -> None:
        self.progress.total = (self.progress.total or 0) + amount
        self.progress.refresh()

    def _tick(self) -> None:
        self.progress.update(1)

    def write_item(
        self,
        key: str,
        value: Any,
        flags: dict[str, Any] | None = None,
        *,
        keep_empty: bool = False,
    ) -> bool:
        """Rewrite user ids in ``value`` and append it as a record.

        Empty values are skipped unless ``keep_empty`` is set, in which case a
        null record is written so the loader can clear the destination path.
        """
        if value is not None:
            value = rewrite_user_keys(value, key, self.user_mapper)
        if is_empty(value) and not isinstance(value, str):
            if not keep_empty:
                return False
            value = None
        self._writer.write(key, value, flags)
        self.stats.records += 1
        return True

    async def extract(self) -> ExtractionResult:
        """Run all phases in order and return the counts and diagnostics."""
        self._grow_progress(1 + 2 + len(self.org_names) + 2 * len(self.repo_names) + len(self.user_mapper.user_map))

        await self.extract_system()
        await self.extract_organizations()
        await self.extract_repositories()
        await self.extract_rules()

        self.state.review_keys = list(dict.fromkeys(self.state.review_keys))
        self._grow_progress(4 * len(self.state.review_keys))
        logger.info(f"Found {len(self.state.review_keys)} reachable reviews")

        await self.extract_reviews()
        for kind in REVIEW_MAP_KINDS:
            await self.extract_review_maps(kind)
        await self.extract_users()
        self._tick()

        return ExtractionResult(
            stats=self.stats,
            organization_count=len(self.org_names),
            repository_count=len(self.repo_names),
            review_count=len(self.state.review_keys),
            user_count=len(self.user_mapper.user_map),
            downloaded_files=self.uploads.downloaded_count
            if self.uploads is not None and self.uploads.download_dir is not None
            else None,
            ghosted_users=await self.describe_ghosted_users(),
            missing_reviews=self.describe_missing_reviews(),
            missing_orgs=sorted(self.org_mapper.missing),
            unknown_users=list(self.state.unknown_users),
            broken_files=list(self.uploads.broken_files) if self.uploads is not None else [],
        )

    async def extract_system(self) -> None:
        logger.info("Extracting /system")
        system = await self._store.get("system") or {}
        if (system.get("star") and system["star"] != "*") or (system.get("bang") and system["bang"] != "!"):
            msg = "Bad or missing REVIEWABLE_ENCRYPTION_AES_KEY"
            raise ConfigurationError(msg)
        for name in ("oldestUsedClientBuild", "oldestUsedServerBuild"):
            self.write_item(f"system/{name}", system.get(name))
            self._tick()

    async def extract_organizations(self) -> None:
        if not self.org_names:
            return
        logger.info("Extracting organizations")

        async def extract_one(org: str) -> None:
            try:
                organization = sanitize_organization(
                    await self._store.get("organizations/:org", {"org": org}), self.exclusions
                )
                if organization is None:
                    return
                mapped_org = self.org_mapper(org)
                if self.write_item(f"organizations/{escape(mapped_org)}", organization):
                    self.stats.organizations += 1
                if organization.get("autoConnect"):
                    # Keeps the recurring membership sync alive in the destination.
                    self.write_item(f"queues/memberships/{escape(mapped_org)}/organization", mapped_org)
            finally:
                self._tick()

        await for_each_limit(self.org_names, ORGANIZATION_CONCURRENCY, extract_one)

    async def extract_repositories(self) -> None:
        if not self.repo_names:
            return
        logger.info("Extracting repositories")

        async def extract_one(repo_name: str) -> None:
            try:
                owner, repo = repo_name.split("/", 1)
                raw = await self._store.get("repositories/:owner/:repo", {"owner": owner, "repo": repo})
                repository = sanitize_repository(raw, self.org_mapper, self.exclusions)
                if repository is None:
                    logger.debug(f"Repository {repo_name} not found")
                    return
                for pr_number, review_key in pull_request_review_keys(repository):
                    self.state.review_keys.append(review_key)
                    self.state.reverse_pull_requests[review_key] = f"{repo_name}#{pr_number}"
                key = f"repositories/{escape(self.org_mapper(owner))}/{escape(repo)}"
                if self.write_item(key, repository):
                    self.stats.repositories += 1
            finally:
                self._tick()

        await for_each_limit(self.repo_names, REPOSITORY_CONCURRENCY, extract_one)

    async def extract_rules(self) -> None:
        if not self.repo_names:
            return
        logger.info("Extracting rules")

        async def extract_one(repo_name: str) -> None:
            try:
                owner, repo = repo_name.split("/", 1)
                rule = await self._store.get("rules/:owner/:repo", {"owner": owner, "repo": repo})
                key = f"rules/{escape(self.org_mapper(owner))}/{escape(repo)}"
                self.write_item(key, rule, keep_empty=True)
                if rule is not None:
                    self.stats.rules += 1
            finally:
                self._tick()

        await for_each_limit(self.repo_names, REPOSITORY_CONCURRENCY, extract_one)

    async def extract_reviews(self) -> None:
        if not self.state.review_keys:
            return
        logger.info("Extracting reviews")

        async def extract_one(review_key: str) -> None:
            try:
                await self._extract_review(review_key)
            finally:
                self._tick()

        await for_each_limit(self.state.review_keys, REVIEW_CONCURRENCY, extract_one)
        if self.uploads is not None:
            await self.uploads.download_pending()

    async def _extract_review(self, review_key: str) -> None:
        context = self.state.reverse_pull_requests.get(review_key, review_key)

        review = await self._store.get("reviews/:reviewKey", {"reviewKey": review_key})
        if review:
            review, placeholders = self._sanitize_review(review, context)
            flags = {"placeholdersPresent": True} if placeholders else None
            if self.uploads is not None:
                await self.uploads.download_pending()
            if self.write_item(f"reviews/{review_key}", review, flags):
                self.stats.reviews += 1
            return

        archive = await self._store.get("archivedReviews/:reviewKey", {"reviewKey": review_key})
        if not archive or not archive.get("payload"):
            logger.debug(f"Review {review_key} ({context}) not found")
            self.state.missing_review_keys.append(review_key)
            return

        review, placeholders = self._sanitize_review(decompress_payload(archive["payload"]), context)
        review = rewrite_user_keys(review, f"reviews/{review_key}", self.user_mapper)
        archive["payload"] = compress_payload(review)
        if self.uploads is not None:
            await self.uploads.download_pending()
        flags = {"placeholdersPresent": True} if placeholders else None
        if self.write_item(f"archivedReviews/{review_key}", archive, flags):
            self.stats.archived_reviews += 1

    def _sanitize_review(self, review: dict[str, Any], context: str) -> tuple[dict[str, Any], bool]:
        return sanitize_review(
            review,
            map_org=self.org_mapper,
            user_mapper=self.user_mapper,
            uploads=self.uploads,
            context=context,
            exclusions=self.exclusions,
        )

    async def extract_review_maps(self, kind: str) -> None:
        if not self.state.review_keys:
            return
        logger.info(f"Extracting {kind}")

        async def extract_one(review_key: str) -> None:
            try:
                value = await self._store.get(f"{kind}/:reviewKey", {"reviewKey": review_key})
                if self.write_item(f"{kind}/{review_key}", value):
                    setattr(self.stats, kind, getattr(self.stats, kind) + 1)
            finally:
                self._tick()

        await for_each_limit(self.state.review_keys, REVIEW_CONCURRENCY, extract_one)

    async def extract_users(self) -> None:
        # Snapshot: in identity mode the map keeps growing while users are written.
        users = list(self.user_mapper.user_map.items())
        if not users:
            return
        logger.info("Extracting users")
        review_keys = set(self.state.review_keys)
        repo_names = set(self.repo_names)

        async def extract_one(entry: tuple[str, str]) -> None:
            old_user_key, new_user_key = entry
            try:
                if new_user_key == self.user_mapper.ghost_user_key:
                    return
                raw = await self._store.get("users/:userKey", {"userKey": old_user_key})
                if raw is None:
                    self.state.unknown_users.append(old_user_key)
                    return
                user = sanitize_user(
                    raw,
                    map_org=self.org_mapper,
                    repo_names=repo_names,
                    review_keys=review_keys,
                    exclusions=self.exclusions,
                )
                if user is None:
                    return
                written = False
                if self.merge:
                    for relative_path, value in split_user_for_merge(user):
                        suffix = f"/{relative_path}" if relative_path else ""
                        written = self.write_item(f"users/{new_user_key}{suffix}", value) or written
                else:
                    written = self.write_item(f"users/{new_user_key}", user)
                if written:
                    self.stats.users += 1
            finally:
                self._tick()

        await for_each_limit(users, USER_CONCURRENCY, extract_one)

    async def describe_ghosted_users(self) -> list[str]:
        """Return "username @ context" lines for every ghosted user, sorted by username."""
        ghosted = self.user_mapper.unique_ghosted()
        if not ghosted:
            return []

        async def describe(user_key: str) -> str:
            public = await self._store.get("users/:userKey/core/public", {"userKey": user_key})
            if isinstance(public, dict) and public.get("username"):
                return public["username"]
            return f"user {user_key.removeprefix('github:')}"

        usernames = await map_limit(
            [ghost.user_key for ghost in ghosted], USERNAME_LOOKUP_CONCURRENCY, describe
        )
        entries = sorted(zip(usernames, ghosted, strict=True), key=lambda entry: entry[0].lower())
        return [f"{username} @ {ghost.context}" for username, ghost in entries]

    def describe_missing_reviews(self) -> list[str]:
        return sorted(
            self.state.reverse_pull_requests.get(review_key, review_key)
            for review_key in self.state.missing_review_keys
        )
