"""Data models shared by the extraction and load sides of a migration.

These are plain containers: the extractor and loader fill them in as they
go and the CLI turns them into the end-of-run report.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ExtractionState:
    """Mutable state threaded through the extraction phases.

    ``review_keys`` accumulates with duplicates while repositories are read
    and is deduplicated once, between the rules and reviews phases; from then
    on it is the fixed set of reachable reviews.
    """

    review_keys: list[str] = field(default_factory=list)
    reverse_pull_requests: dict[str, str] = field(default_factory=dict)  # review key -> "owner/repo#N"
    missing_review_keys: list[str] = field(default_factory=list)
    unknown_users: list[str] = field(default_factory=list)


@dataclass
class ExtractionStats:
    """Counts of records written per entity kind."""

    organizations: int = 0
    repositories: int = 0
    rules: int = 0
    reviews: int = 0
    archived_reviews: int = 0
    linemaps: int = 0
    filemaps: int = 0
    basemaps: int = 0
    users: int = 0
    records: int = 0


@dataclass
class ExtractionResult:
    """Result of an extraction run, including the operator diagnostics."""

    stats: ExtractionStats
    organization_count: int
    repository_count: int
    review_count: int
    user_count: int
    downloaded_files: int | None = None  # None when downloads were not requested
    ghosted_users: list[str] = field(default_factory=list)  # "username @ context"
    missing_reviews: list[str] = field(default_factory=list)
    missing_orgs: list[str] = field(default_factory=list)
    unknown_users: list[str] = field(default_factory=list)
    broken_files: list[str] = field(default_factory=list)


@dataclass
class LoadStats:
    """Counts collected while replaying a record file."""

    records: int = 0
    updates: int = 0
    sets: int = 0
    deletions: int = 0
    watermarks: int = 0
    review_syncs: int = 0
    profile_requests: int = 0
    rendered_comments: int = 0
