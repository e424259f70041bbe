"""Command-line entry point for the index backup/restore job.

Example usage:

    azsearch-backup \
        --source-service contoso-prod --source-key "$SOURCE_KEY" --source-index hotels \
        --target-service contoso-dr --target-key "$TARGET_KEY" --target-index hotels-copy \
        --connection-string "$AZURE_STORAGE_CONNECTION_STRING" --container index-copies

Values not given on the command line come from the environment and
``config/settings*.toml`` (see :mod:`azsearch_backup.settings`). The process
exits 0 when every batch transferred and the counts match, 1 when the run
finished incomplete, 2 on configuration errors and 3 when a fatal step
failed.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

from pydantic import ValidationError

from azsearch_backup.observability import configure_logging, get_observability
from azsearch_backup.services.factories import (
    build_blob_store,
    build_retry_policy,
    build_schema_service,
    build_search_gateway,
)
from azsearch_backup.settings import ConfigurationError, Settings, get_settings
from azsearch_backup.storage import StoreUnavailableError
from azsearch_backup.worker.jobs.backup_restore import MODES, BackupRestoreJob, JobFailedError, RunReport

LOGGER = logging.getLogger("azsearch_backup.cli")

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_CONFIG = 2
EXIT_FATAL = 3

# argparse dest -> (settings section, field)
_OVERRIDES = {
    "source_service": ("source", "service_name"),
    "source_key": ("source", "api_key"),
    "source_index": ("source", "index_name"),
    "target_service": ("target", "service_name"),
    "target_key": ("target", "api_key"),
    "target_index": ("target", "index_name"),
    "storage_backend": ("storage", "backend"),
    "connection_string": ("storage", "connection_string"),
    "container": ("storage", "container"),
    "container_sas_url": ("storage", "container_sas_url"),
    "local_dir": ("storage", "local_dir"),
    "page_size": ("transfer", "page_size"),
    "parallelism": ("transfer", "parallelism"),
    "max_attempts": ("transfer", "max_attempts"),
    "log_level": ("runtime", "log_level"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="azsearch-backup",
        description="Back up a search index to blob storage and restore it into a new index",
    )
    parser.add_argument("--mode", choices=MODES, default="full", help="full (default), backup only, or restore only.")
    parser.add_argument("--source-service", help="Source search service name or endpoint URL.")
    parser.add_argument("--source-key", help="Source search service admin key.")
    parser.add_argument("--source-index", help="Index to back up; also the batch file name prefix.")
    parser.add_argument("--target-service", help="Target search service name or endpoint URL.")
    parser.add_argument("--target-key", help="Target search service admin key.")
    parser.add_argument("--target-index", help="Index to (re)create and fill.")
    parser.add_argument("--storage-backend", choices=["azure_blob", "local"], help="Where batch files are kept.")
    parser.add_argument("--connection-string", help="Azure Storage connection string.")
    parser.add_argument("--container", help="Blob container for batch files.")
    parser.add_argument("--container-sas-url", help="Container URL with a SAS token (alternative to a connection string).")
    parser.add_argument("--local-dir", type=Path, help="Directory used by the local storage backend.")
    parser.add_argument("--page-size", type=int, help="Documents per batch file (max 1000).")
    parser.add_argument("--parallelism", type=int, help="Concurrent export workers.")
    parser.add_argument("--max-attempts", type=int, help="Attempts per remote call before a batch is marked failed.")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument("--report", type=Path, help="Optional path to write the run report as JSON.")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return ``settings`` with every command-line value that was given applied."""

    updates: Dict[str, Dict[str, object]] = {}
    for dest, (section, field) in _OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is not None:
            updates.setdefault(section, {})[field] = value
    if "local_dir" in updates.get("storage", {}):
        # Same anchor as a local_dir read from config files.
        updates["storage"]["local_dir"] = settings.resolve_path(updates["storage"]["local_dir"])
    if not updates:
        return settings
    sections = {}
    for section, values in updates.items():
        current = getattr(settings, section)
        # Round-trip through validation so bad values fail like config-file values do.
        sections[section] = type(current).model_validate({**current.model_dump(), **values})
    return settings.model_copy(update=sections)


def build_job(settings: Settings, mode: str) -> BackupRestoreJob:
    observability = get_observability(component="backup_restore", settings=settings)
    needs_source = mode in {"full", "backup"}
    needs_target = mode in {"full", "restore"}
    # A restore-only run can still fall back to the live source schema when credentials are present.
    source_reachable = bool(settings.source.service_name and settings.source.api_key)
    return BackupRestoreJob(
        settings=settings,
        store=build_blob_store(settings=settings),
        source_schema=build_schema_service("source", settings=settings) if needs_source or source_reachable else None,
        source_gateway=build_search_gateway("source", settings=settings) if needs_source else None,
        target_schema=build_schema_service("target", settings=settings) if needs_target else None,
        target_gateway=build_search_gateway("target", settings=settings) if needs_target else None,
        retry_policy=build_retry_policy(settings=settings),
        observability=observability,
    )


def write_report(path: Path, report: RunReport) -> None:
    LOGGER.info("Writing report to %s", path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(report.as_dict(), fh, indent=2)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = apply_overrides(get_settings(), args)
    except ValidationError as exc:
        configure_logging(args.log_level)
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG
    configure_logging(settings.log_level)

    try:
        settings.validate_required(mode=args.mode)
        job = build_job(settings, args.mode)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return EXIT_CONFIG
    except StoreUnavailableError as exc:
        LOGGER.error("Batch file store unavailable: %s", exc)
        return EXIT_FATAL

    try:
        report = job.run(args.mode)
    except (JobFailedError, StoreUnavailableError) as exc:
        LOGGER.error("Backup/restore aborted: %s", exc)
        return EXIT_FATAL

    for line in report.summary_lines():
        print(line)
    if args.report:
        write_report(args.report, report)
    return EXIT_OK if report.succeeded else EXIT_INCOMPLETE


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
