"""
Command-line interface for the Reviewable data migration tool.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tqdm import tqdm

from . import firebase_utils as fbu
from . import github_utils as ghu
from .archives import decompress_payload
from .config import Settings
from .exceptions import ConfigurationError
from .extractor import Extractor
from .loader import Loader
from .mapping import DEFAULT_GHOST_USER_KEY, OrgMapper, UserMapper
from .records import DEFAULT_READ_RATE, RecordWriter, stream_records
from .sanitizers import DEFAULT_EXCLUSIONS, ExclusionConfig
from .uploads import UploadRewriter
from .utils import load_json_file, setup_logging

if TYPE_CHECKING:
    from .models import ExtractionResult, LoadStats
    from .protocols import MarkdownRenderer

logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Move the data for a set of repositories between Reviewable datastores"
    )
    _ = parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase verbosity (-v, -vv)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser(
        "extract",
        help="Extract all data related to a set of repos into a record file",
    )
    _ = extract.add_argument("--repos", "-r", required=True, help='JSON file with an array of "owner/repo" names')
    _ = extract.add_argument("--output", "-o", required=True, help="Output record file (ndjson)")
    _ = extract.add_argument(
        "--users",
        "-u",
        help='JSON file mapping {"github:MMMM": "github:NNNN"} user ids (default: identity mapping)',
    )
    _ = extract.add_argument(
        "--orgs",
        "-g",
        help='JSON file mapping {"source-org": "target-org"} (default: identity mapping for missing orgs)',
    )
    _ = extract.add_argument(
        "--merge",
        "-m",
        action="store_true",
        help="Split user records so they merge into users that already exist in the destination",
    )
    _ = extract.add_argument("--download", "-d", help="Directory to download uploaded attachments into")
    _ = extract.add_argument(
        "--ghost",
        default=DEFAULT_GHOST_USER_KEY,
        help=f"User id substituted for unmapped users (default: {DEFAULT_GHOST_USER_KEY})",
    )
    _ = extract.add_argument(
        "--no-ghost",
        action="store_true",
        help="Abort instead of substituting the ghost user for unmapped users",
    )
    _ = extract.add_argument("--exclusions", help="JSON file overriding the per-entity field exclusion lists")

    load = subparsers.add_parser("load", help="Load a record file and resync it with GitHub")
    _ = load.add_argument("--input", "-i", required=True, help="Record file produced by extract")
    _ = load.add_argument(
        "--admin",
        "-a",
        required=True,
        help="User id (github:NNNN) of a user with valid GitHub credentials in Reviewable",
    )
    _ = load.add_argument("--users", "-u", help="JSON file with a user id mapping to apply again while loading")
    _ = load.add_argument(
        "--rate",
        type=int,
        default=DEFAULT_READ_RATE,
        help=f"Maximum bytes per second read from the input (default: {DEFAULT_READ_RATE})",
    )

    read = subparsers.add_parser("read", help="Print the value at a datastore path")
    _ = read.add_argument("path", help="Datastore path; the leading slash may be omitted")

    write = subparsers.add_parser("write", help="Overwrite a datastore path with the contents of a JSON file")
    _ = write.add_argument("path", help="Datastore path; the leading slash may be omitted")
    _ = write.add_argument("file", help="JSON file with the value to write")

    return parser.parse_args(argv)


def _load_mapping(path: str | None, description: str) -> dict[str, str] | None:
    if not path:
        return None
    data = load_json_file(path, description=description)
    if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
        msg = f"The {description} file {path} must contain a JSON object of string values"
        raise ConfigurationError(msg)
    return data


def _load_repo_names(path: str) -> list[str]:
    data = load_json_file(path, description="repos")
    if not isinstance(data, list) or not all(isinstance(name, str) for name in data):
        msg = f'The repos file {path} must contain a JSON array of "owner/repo" strings'
        raise ConfigurationError(msg)
    return data


def _print_extraction_report(result: ExtractionResult) -> None:
    """Print the end-of-run summary and the operator diagnostic lists."""
    summary = (
        f"Extracted {result.organization_count} organizations, {result.repository_count} repositories, "
        f"{result.review_count} reviews, "
    )
    if result.downloaded_files is None:
        summary += f"and {result.user_count} users"
    else:
        summary += f"{result.user_count} users, and {result.downloaded_files} files"
    print(summary)

    sections: list[tuple[str, list[str]]] = [
        ("reviews could not be found", result.missing_reviews),
        ("owners could not be mapped over", result.missing_orgs),
        ("users could not be mapped over", result.ghosted_users),
    ]
    for title, lines in sections:
        if lines:
            print(f"\n{len(lines)} {title}:")
            print("\n".join(lines))

    if result.unknown_users:
        print(f"\n{len(result.unknown_users)} users from map have no record in Reviewable:")
        print(", ".join(key.removeprefix("github:") for key in result.unknown_users))

    if result.broken_files:
        print(f"\n{len(result.broken_files)} files could not be downloaded:")
        print("\n".join(result.broken_files))


def _print_load_report(stats: LoadStats) -> None:
    print(
        f"Loaded {stats.records} records: {stats.updates} merged, {stats.sets} set, "
        f"{stats.deletions} cleared, {stats.watermarks} watermarks; "
        f"queued {stats.review_syncs} pull request syncs and {stats.profile_requests} profile fills"
    )


async def run_extract(args: argparse.Namespace, settings: Settings) -> ExtractionResult:
    repo_names = _load_repo_names(args.repos)
    user_map = _load_mapping(args.users, "users")
    org_map = _load_mapping(args.orgs, "orgs")
    exclusions = ExclusionConfig.from_file(args.exclusions) if args.exclusions else DEFAULT_EXCLUSIONS

    uploads = None
    if settings.uploaded_files_url:
        uploads = UploadRewriter(settings.uploaded_files_url, download_dir=args.download)
    else:
        logger.warning(
            "No REVIEWABLE_UPLOADS_PROVIDER or REVIEWABLE_UPLOADED_FILES_URL specified, "
            "so not rewriting uploaded image URLs in comments."
        )

    user_mapper = UserMapper(user_map, ghost_user_key=None if args.no_ghost else args.ghost)
    store = fbu.connect(settings)

    with (
        RecordWriter.open(args.output) as writer,
        tqdm(total=0, unit="item", disable=args.verbose >= 2) as progress,
    ):
        extractor = Extractor(
            store,
            writer,
            repo_names=repo_names,
            user_mapper=user_mapper,
            org_mapper=OrgMapper(org_map),
            uploads=uploads,
            merge=args.merge,
            exclusions=exclusions,
            progress=progress,
        )
        return await extractor.extract()


async def _get_renderer(settings: Settings, store: Any, admin_user_key: str) -> MarkdownRenderer | None:
    try:
        token = await ghu.get_token(settings, store, admin_user_key)
    except ConfigurationError as e:
        logger.warning(f"Comment re-rendering unavailable: {e}")
        return None
    return ghu.GitHubMarkdownRenderer(ghu.get_client(token, settings.github_url))


async def run_load(args: argparse.Namespace, settings: Settings) -> LoadStats:
    input_path = Path(args.input)
    if not input_path.is_file():
        msg = f"Input file {input_path} does not exist"
        raise ConfigurationError(msg)
    user_map = _load_mapping(args.users, "users")
    if not settings.encryption_enabled:
        logger.warning("Not encrypting uploaded data as REVIEWABLE_ENCRYPTION_AES_KEY not given")

    store = fbu.connect(settings)
    loader = Loader(
        store,
        admin_user_key=args.admin,
        user_mapper=UserMapper(user_map),
        renderer=await _get_renderer(settings, store, args.admin),
        uploaded_files_url=settings.uploaded_files_url,
    )
    with tqdm(
        total=input_path.stat().st_size, unit="B", unit_scale=True, disable=args.verbose >= 2
    ) as progress:
        return await loader.load(stream_records(input_path, rate=args.rate, on_progress=progress.update))


async def run_read(args: argparse.Namespace, settings: Settings) -> Any:
    store = fbu.connect(settings)
    path = args.path.lstrip("/")
    value = await store.get(path)
    if value is None and path.startswith("reviews/"):
        archive = await store.get(path.replace("reviews/", "archivedReviews/", 1))
        if archive and archive.get("payload"):
            value = decompress_payload(archive["payload"])
    return value


async def run_write(args: argparse.Namespace, settings: Settings) -> None:
    value = load_json_file(args.file, description="value")
    store = fbu.connect(settings)
    await store.set(args.path.lstrip("/"), value)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbosity=args.verbose)

    try:
        settings = Settings.from_env()
        if args.command == "extract":
            _print_extraction_report(asyncio.run(run_extract(args, settings)))
        elif args.command == "load":
            _print_load_report(asyncio.run(run_load(args, settings)))
        elif args.command == "read":
            print(json.dumps(asyncio.run(run_read(args, settings)), indent=2, ensure_ascii=False))
        elif args.command == "write":
            asyncio.run(run_write(args, settings))
            print("Done")
    except ConfigurationError as e:
        logger.error(str(e))  # noqa: TRY400
        sys.exit(1)
    except Exception:
        logger.exception(f"{args.command.capitalize()} failed")
        sys.exit(1)

    sys.exit(0)
