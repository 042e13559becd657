"""Replay of a record file into a destination datastore.

Every record is merged rather than overwritten, so sibling data already in
the destination survives and a partially loaded file can simply be loaded
again. The build watermarks under ``system/oldestUsed*`` only ever move down.
Loading a review queues a GitHub pull request sync, and loading a user queues
a profile refill, both authored by the admin user given on the command line.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterable, Iterable
from typing import TYPE_CHECKING, Any, Final

from .archives import compress_payload, decompress_payload
from .exceptions import ConfigurationError
from .firebase_utils import SERVER_TIMESTAMP
from .mapping import UserMapper
from .models import LoadStats
from .rewriter import rewrite_user_keys
from .scheduler import for_each_limit
from .uploads import PLACEHOLDER_URL, restore_uploaded_urls
from .utils import is_empty

if TYPE_CHECKING:
    from .protocols import DataStore, MarkdownRenderer
    from .records import Record

logger: logging.Logger = logging.getLogger(__name__)

LOAD_CONCURRENCY: Final[int] = 10
WATERMARK_PREFIX: Final[str] = "system/oldestUsed"
PULL_REQUEST_SYNC_PATH: Final[str] = "queues/githubPullRequestSync/:owner|:repo|:prNumber|:userKey"
REQUESTS_QUEUE_PATH: Final[str] = "queues/requests"

_USER_RECORD_KEY: Final[re.Pattern[str]] = re.compile(r"^users/github:(\d+)")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _keep_lowest(new_value: Any) -> Any:
    def update(current: Any) -> Any:
        if _is_number(current) and _is_number(new_value):
            return min(current, new_value)
        return new_value

    return update


class Loader:
    """Applies records to the destination store and queues follow-up sync jobs."""

    _store: DataStore
    admin_user_key: str
    user_mapper: UserMapper
    renderer: MarkdownRenderer | None
    uploaded_files_url: str | None
    stats: LoadStats
    _requested_user_ids: set[str]

    def __init__(
        self,
        store: DataStore,
        *,
        admin_user_key: str,
        user_mapper: UserMapper | None = None,
        renderer: MarkdownRenderer | None = None,
        uploaded_files_url: str | None = None,
    ) -> None:
        self._store = store
        self.admin_user_key = admin_user_key
        self.user_mapper = user_mapper if user_mapper is not None else UserMapper()
        self.renderer = renderer
        self.uploaded_files_url = uploaded_files_url
        self.stats = LoadStats()
        self._requested_user_ids = set()

    async def load(
        self,
        records: Iterable[Record] | AsyncIterable[Record],
        *,
        concurrency: int = LOAD_CONCURRENCY,
    ) -> LoadStats:
        await for_each_limit(records, concurrency, self.process_record)
        logger.info(f"Loaded {self.stats.records} records")
        return self.stats

    async def process_record(self, record: Record) -> None:
        key, value, flags = record.key, record.value, record.flags or {}
        self.stats.records += 1

        if not is_empty(value):
            value = rewrite_user_keys(value, key, self.user_mapper)
        if flags.get("placeholdersPresent") and isinstance(value, dict):
            value = await self._restore_placeholders(key, value)

        if is_empty(value):
            if value is None and key.startswith("rules/"):
                logger.debug(f"Clearing {key}")
                await self._store.set(key, None)
                self.stats.deletions += 1
        elif key.startswith(WATERMARK_PREFIX):
            await self._store.transaction(key, _keep_lowest(value))
            self.stats.watermarks += 1
        elif isinstance(value, dict):
            await self._store.update(key, value)
            self.stats.updates += 1
        else:
            await self._store.set(key, value)
            self.stats.sets += 1

        if key.startswith("reviews/"):
            await self._queue_review_sync(key, value)
        elif key.startswith("users/"):
            await self._queue_profile_fill(key)

    async def _queue_review_sync(self, key: str, review: Any) -> None:
        core = review.get("core") if isinstance(review, dict) else None
        if not core or not core.get("ownerName") or not core.get("repoName"):
            logger.warning(f"Not queueing a pull request sync for {key}: review has no core data")
            return
        sync_options = {
            "userKey": self.admin_user_key,
            "prNumber": core.get("pullRequestId"),
            "owner": core["ownerName"].lower(),
            "repo": core["repoName"].lower(),
            "updateReview": True,
            "syncComments": True,
            "syncStatus": True,
            "mustSucceed": True,
            "overrideBadge": True,
            "timestamp": SERVER_TIMESTAMP,
        }
        await self._store.update(PULL_REQUEST_SYNC_PATH, sync_options, sync_options)
        self.stats.review_syncs += 1

    async def _queue_profile_fill(self, key: str) -> None:
        match = _USER_RECORD_KEY.match(key)
        if not match:
            logger.warning(f"Not queueing a profile fill for unrecognized user key {key}")
            return
        user_id = match.group(1)
        # Merge-mode files carry several records per user; one request is enough.
        if user_id in self._requested_user_ids:
            return
        self._requested_user_ids.add(user_id)
        await self._store.push(
            REQUESTS_QUEUE_PATH,
            {"action": "fillUserProfile", "userKey": self.admin_user_key, "userId": user_id},
        )
        self.stats.profile_requests += 1

    async def _restore_placeholders(self, key: str, value: dict[str, Any]) -> dict[str, Any]:
        if key.startswith("archivedReviews/") and value.get("payload"):
            review = decompress_payload(value["payload"])
            await self._restore_review_uploads(key, review)
            return {**value, "payload": compress_payload(review)}
        if key.startswith("reviews/"):
            await self._restore_review_uploads(key, value)
        return value

    async def _restore_review_uploads(self, key: str, review: dict[str, Any]) -> None:
        """Point placeholder links at the destination and re-render the changed comments."""
        if not self.uploaded_files_url:
            msg = f"Record {key} has uploaded file placeholders but no uploaded files URL is configured"
            raise ConfigurationError(msg)
        if self.renderer is None:
            msg = f"Record {key} has uploaded file placeholders but no markdown renderer is configured"
            raise ConfigurationError(msg)

        core = review.get("core") or {}
        repo_full_name = f"{core.get('ownerName', '')}/{core.get('repoName', '')}"
        for discussion in (review.get("discussions") or {}).values():
            for comment in (discussion.get("comments") or {}).values():
                body = comment.get("markdownBody")
                if not body or PLACEHOLDER_URL not in body:
                    continue
                comment["markdownBody"] = restore_uploaded_urls(body, self.uploaded_files_url)
                comment["htmlBody"] = await self.renderer.render(comment["markdownBody"], repo_full_name)
                self.stats.rendered_comments += 1
