"""Per-entity cleanup applied to every value before it is written out.

Each ``sanitize_*`` function takes a freshly fetched value (which it may
modify) and returns what should be persisted, or None when nothing is left.
The field lists live in ``ExclusionConfig`` because they track the
destination schema and are the part most likely to change between versions.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from .exceptions import ConfigurationError
from .utils import load_json_file

if TYPE_CHECKING:
    from .mapping import UserMapper
    from .uploads import UploadRewriter

logger: logging.Logger = logging.getLogger(__name__)

OrgNameMapper = Callable[[str], str]

_INTEGRATION_COMMENT: Final[re.Pattern[str]] = re.compile(r"^gh-")
MERGED_USER_SECTIONS: Final[tuple[str, ...]] = ("onboarding", "settings", "state")


@dataclass(frozen=True)
class ExclusionConfig:
    """Fields dropped from each entity kind. Dotted names reach into sub-objects."""

    organization: tuple[str, ...] = ("owners", "coverage")
    repository: tuple[str, ...] = (
        "adminUserKeys",
        "adminUserKeysLastUpdateTimestamp",
        "pushUserKeys",
        "current",
        "issues",
        "protection",
    )
    repository_core: tuple[str, ...] = (
        "id",
        "connection",
        "connector",
        "reviewableBadge",
        "errorCode",
        "error",
        "hookEvents",
    )
    review: tuple[str, ...] = ("lastWebhook", "requestedTeams", "gitHubComments")
    review_core: tuple[str, ...] = ("lastSweepTimestamp", "lastReconciliationTimestamp")
    user: tuple[str, ...] = (
        "lastUpdateTimestamp",
        "lastSeatAllocationTimestamp",
        "lastOwnershipsSyncTimestamp",
        "enterpriseLicenseAdmin",
        "core",
        "dashboardCache",
        "stripe",
        "enrollments",
        "notifications",
        "settings.dismissals",
        "index.subscriptions",
        "index.memberships",
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExclusionConfig:
        """Override the default lists with the ones given; other kinds keep their defaults."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            msg = f"Unknown entity kinds in exclusion config: {', '.join(sorted(unknown))}"
            raise ConfigurationError(msg)
        overrides: dict[str, tuple[str, ...]] = {}
        for kind, names in data.items():
            if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
                msg = f"Exclusion list for {kind} must be a list of field names"
                raise ConfigurationError(msg)
            overrides[kind] = tuple(names)
        return replace(cls(), **overrides)

    @classmethod
    def from_file(cls, path: str | Path) -> ExclusionConfig:
        data = load_json_file(path, description="exclusions")
        if not isinstance(data, dict):
            msg = f"Exclusions file {path} must contain a JSON object"
            raise ConfigurationError(msg)
        return cls.from_dict(data)


DEFAULT_EXCLUSIONS: Final[ExclusionConfig] = ExclusionConfig()


def omit(value: dict[str, Any], names: Iterable[str]) -> dict[str, Any]:
    """Return a copy of ``value`` without the named (possibly dotted) fields."""
    result = dict(value)
    for name in names:
        head, _, rest = name.partition(".")
        if not rest:
            result.pop(head, None)
        elif isinstance(result.get(head), dict):
            result[head] = omit(result[head], [rest])
    return result


def _drop_integration_comments(threads: Any) -> dict[str, Any] | None:
    """Drop ``gh-`` comments from each thread and threads left with no comments."""
    if not isinstance(threads, dict):
        return None
    kept: dict[str, Any] = {}
    for thread_key, thread in threads.items():
        if not isinstance(thread, dict):
            continue
        comments = {
            comment_key: comment
            for comment_key, comment in (thread.get("comments") or {}).items()
            if not _INTEGRATION_COMMENT.match(comment_key)
        }
        if comments:
            kept[thread_key] = {**thread, "comments": comments}
    return kept or None


def sanitize_organization(
    organization: dict[str, Any] | None, exclusions: ExclusionConfig = DEFAULT_EXCLUSIONS
) -> dict[str, Any] | None:
    if not organization:
        return None
    return omit(organization, exclusions.organization) or None


def sanitize_repository(
    repository: dict[str, Any] | None,
    map_org: OrgNameMapper,
    exclusions: ExclusionConfig = DEFAULT_EXCLUSIONS,
) -> dict[str, Any] | None:
    if not repository:
        return None
    core = omit(repository.get("core") or {}, exclusions.repository_core)
    renamed = core.get("renamed")
    if isinstance(renamed, dict) and renamed.get("ownerName"):
        core["renamed"] = {**renamed, "ownerName": map_org(renamed["ownerName"])}
    result = omit(repository, exclusions.repository)
    if core:
        result["core"] = core
    else:
        result.pop("core", None)
    return result or None


def pull_request_review_keys(repository: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Return ``(pr_number, review_key)`` pairs from both pull request maps, duplicates kept."""
    pairs: list[tuple[str, str]] = []
    for field_name in ("pullRequests", "oldPullRequests"):
        for pr_number, review_key in (repository.get(field_name) or {}).items():
            pairs.append((str(pr_number), review_key))
    return pairs


def sanitize_review(
    review: dict[str, Any],
    *,
    map_org: OrgNameMapper,
    user_mapper: UserMapper,
    uploads: UploadRewriter | None = None,
    context: str = "",
    exclusions: ExclusionConfig = DEFAULT_EXCLUSIONS,
) -> tuple[dict[str, Any], bool]:
    """Clean up a review in place.

    Returns the review and whether any uploaded-file placeholder was inserted
    into a comment body, which the loader needs to know to undo it.
    """
    for name in exclusions.review:
        review.pop(name, None)

    core = omit(review.get("core") or {}, exclusions.review_core)
    if core.get("ownerName"):
        core["ownerName"] = map_org(core["ownerName"])
    review["core"] = core
    security = review.get("security")
    if isinstance(security, dict) and security.get("lowerCaseOwnerName"):
        security["lowerCaseOwnerName"] = map_org(security["lowerCaseOwnerName"]).lower()

    placeholders_added = False
    discussions = _drop_integration_comments(review.get("discussions"))
    if discussions is None:
        review.pop("discussions", None)
    else:
        if uploads is not None:
            for discussion in discussions.values():
                for comment in discussion["comments"].values():
                    body = comment.get("markdownBody") if isinstance(comment, dict) else None
                    if not body:
                        continue
                    new_body = uploads.rewrite(body, context)
                    if new_body != body:
                        placeholders_added = True
                        comment["markdownBody"] = new_body
        review["discussions"] = discussions

    for tracker in (review.get("tracker") or {}).values():
        if not isinstance(tracker, dict) or not isinstance(tracker.get("participants"), dict):
            continue
        tracker["participants"] = {
            user_key: participant
            for user_key, participant in tracker["participants"].items()
            if not _is_unmapped_mention(user_key, participant, user_mapper)
        }

    sentiments = _drop_integration_comments(review.get("sentiments"))
    if sentiments is None:
        review.pop("sentiments", None)
    else:
        review["sentiments"] = sentiments

    return review, placeholders_added


def _is_unmapped_mention(user_key: str, participant: Any, user_mapper: UserMapper) -> bool:
    if user_mapper.identity or user_mapper.is_mapped(user_key):
        return False
    return isinstance(participant, dict) and participant.get("role") == "mentioned"


def sanitize_user(
    user: dict[str, Any] | None,
    *,
    map_org: OrgNameMapper,
    repo_names: Collection[str],
    review_keys: Collection[str],
    exclusions: ExclusionConfig = DEFAULT_EXCLUSIONS,
) -> dict[str, Any] | None:
    if not user:
        return None
    result = omit(user, exclusions.user)

    index = result.get("index")
    if isinstance(index, dict) and index.get("extraMentions"):
        mentions: dict[str, Any] = {}
        for key, mention in index["extraMentions"].items():
            if not isinstance(mention, dict) or f"{mention.get('owner')}/{mention.get('repo')}" not in repo_names:
                continue
            parts = key.split("|")
            parts[0] = map_org(parts[0])
            mentions["|".join(parts)] = {**mention, "owner": map_org(mention["owner"])}
        index = {**index, "extraMentions": mentions} if mentions else omit(index, ["extraMentions"])
    if isinstance(index, dict):
        if index:
            result["index"] = index
        else:
            result.pop("index", None)

    settings = result.get("settings")
    if isinstance(settings, dict) and settings.get("lastDashboardOrganization"):
        result["settings"] = {
            **settings,
            "lastDashboardOrganization": map_org(settings["lastDashboardOrganization"]),
        }

    if isinstance(result.get("state"), dict):
        state = {key: value for key, value in result["state"].items() if key in review_keys}
        if state:
            result["state"] = state
        else:
            del result["state"]

    return result or None


def split_user_for_merge(user: dict[str, Any]) -> list[tuple[str, Any]]:
    """Break a user into sub-records that merge into an existing destination user.

    Returns ``(relative_path, value)`` pairs; ``""`` is the bare user record.
    """
    parts: list[tuple[str, Any]] = []
    bare = omit(user, [*MERGED_USER_SECTIONS, "index"])
    if bare:
        parts.append(("", bare))
    for section in MERGED_USER_SECTIONS:
        if user.get(section):
            parts.append((section, copy.deepcopy(user[section])))
    extra_mentions = (user.get("index") or {}).get("extraMentions")
    if extra_mentions:
        parts.append(("index/extraMentions", extra_mentions))
    return parts
