#!/usr/bin/env python3
"""
Remove abandoned upload state from a Docker registry S3 bucket.

Two kinds of leftovers are cleaned under docker/registry/v2/repositories/:
- multipart uploads that were started but never completed or aborted
- upload session folders (``_uploads/<session-id>/``) whose ``startedat``
  marker is older than the threshold

Usage examples:
  # See what would be removed
  python clean_uploads.py --endpoint https://s3.example.com --bucket registry --dry-run

  # Clean, accepting a self-signed certificate
  python clean_uploads.py --endpoint https://minio.local:9000 --bucket registry --skip-tls-verify

  # Use a 24 hour threshold and keep a JSON summary
  python clean_uploads.py --endpoint https://s3.example.com --bucket registry \\
      --stale-after-hours 24 --summary-file upload-cleanup.json

Credentials are read from AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY, falling
back to the shared credentials file and the instance role.
"""

import argparse
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from botocore.exceptions import BotoCoreError

from reapers.multipart_reaper import MultipartUploadReaper
from reapers.orchestrator import RegistryUploadCleaner
from reapers.upload_folder_reaper import UploadFolderReaper
from utils.config_manager import ConfigManager, ConfigValidationError
from utils.error_utils import CleanupError
from utils.logging_utils import get_logger, log_exception, setup_logging
from utils.report_utils import RunSummary, format_summary_table, save_json
from utils.s3_client import ObjectStoreClient, create_s3_client

logger = get_logger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Abort stale multipart uploads and remove stale upload folders from a Docker registry bucket",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--endpoint", help="Address of the S3 endpoint (default: S3_ENDPOINT or s3.endpoint)")
    parser.add_argument("--bucket", help="Bucket to use (default: S3_BUCKET or s3.bucket)")
    parser.add_argument("--dry-run", action="store_true", help="Just print what would be removed")
    parser.add_argument(
        "--skip-tls-verify", action="store_true", default=None, help="Skip TLS certificate verification"
    )
    parser.add_argument("--region", help="Signing region (default: us-west-1)")
    parser.add_argument(
        "--stale-after-hours",
        type=int,
        help="Remove uploads older than this many hours (default: 12)",
    )
    parser.add_argument("--config", help="Path to config.yaml (default: CONFIG_FILE or config.yaml)")
    parser.add_argument(
        "--summary-file",
        help="Write a JSON run summary to this file (bare file names go under reports.output_dir)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ConfigManager:
    """Load config.yaml, apply command-line overrides and validate"""
    config = ConfigManager(config_file=args.config, validate=False)
    config.apply_overrides(
        endpoint=args.endpoint,
        bucket=args.bucket,
        region=args.region,
        skip_tls_verify=args.skip_tls_verify,
        stale_after_hours=args.stale_after_hours,
        dry_run=args.dry_run or None,
    )
    config.validate_config()
    return config


def resolve_summary_path(config: ConfigManager, path: str) -> str:
    """Place bare file names under the configured output directory"""
    if os.path.isabs(path) or os.path.basename(path) != path:
        return path
    return os.path.join(config.get_output_dir(), path)


def collect_summary(
    summary: RunSummary,
    cleaner: RegistryUploadCleaner,
    multipart_reaper: MultipartUploadReaper,
    folder_reaper: UploadFolderReaper,
) -> RunSummary:
    summary.finished_at = datetime.now(timezone.utc)
    summary.repositories_scanned = cleaner.repositories_scanned

    mpu = multipart_reaper.stats
    summary.multipart_uploads_examined = mpu.examined
    summary.multipart_uploads_stale = mpu.stale
    summary.multipart_uploads_removed = mpu.removed
    summary.multipart_uploads_would_remove = mpu.would_remove
    summary.multipart_abort_failures = mpu.failed

    folders = folder_reaper.stats
    summary.upload_markers_found = folders.markers
    summary.upload_folders_removed = folders.removed
    summary.upload_folders_would_remove = folders.would_remove
    summary.upload_folders_skipped = folders.skipped
    summary.upload_markers_unreadable = folders.unreadable
    summary.objects_deleted = folders.objects_deleted
    return summary


def run(config: ConfigManager, client: ObjectStoreClient, summary_file: Optional[str] = None) -> int:
    """Clean the bucket described by ``config`` through ``client``.

    Returns:
        Total number of multipart uploads removed

    Raises:
        CleanupError: If the run fails
    """
    policy = config.get_cleanup_policy()
    dry_run = config.is_dry_run()

    multipart_reaper = MultipartUploadReaper(
        client, policy, dry_run=dry_run, page_size=config.get_multipart_page_size()
    )
    folder_reaper = UploadFolderReaper(
        client,
        policy,
        dry_run=dry_run,
        page_size=config.get_object_page_size(),
        folder_page_size=config.get_folder_page_size(),
    )
    cleaner = RegistryUploadCleaner(
        client,
        multipart_reaper,
        folder_reaper,
        repositories_prefix=config.get_repositories_prefix(),
        page_size=config.get_repository_page_size(),
    )

    if dry_run:
        logger.info("DRY RUN mode - nothing will be aborted or deleted")

    summary = RunSummary(
        endpoint=config.get_endpoint(),
        bucket=config.get_bucket(),
        dry_run=dry_run,
        stale_after_hours=policy.stale_after_hours,
        started_at=datetime.now(timezone.utc),
    )

    try:
        total_removed = cleaner.run()
        summary.succeeded = True
        return total_removed
    except CleanupError as e:
        summary.error = str(e)
        raise
    finally:
        collect_summary(summary, cleaner, multipart_reaper, folder_reaper)
        logger.info("Cleanup summary:\n%s", format_summary_table(summary))
        if summary_file:
            summary_path = resolve_summary_path(config, summary_file)
            try:
                save_json(summary_path, summary.to_dict())
            except OSError as e:
                logger.error(f"Failed to write summary file {summary_path}: {e}")


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_arguments(argv)
    setup_logging(args.log_level)

    try:
        config = build_config(args)
        config.print_config()
        try:
            s3 = create_s3_client(
                config.get_endpoint(),
                region=config.get_region(),
                skip_tls_verify=config.get_skip_tls_verify(),
            )
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Failed to create S3 client for {config.get_endpoint()}: {e}")
            sys.exit(1)
        client = ObjectStoreClient(s3, config.get_bucket())
        total_removed = run(config, client, summary_file=args.summary_file)
    except ConfigValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except CleanupError as e:
        log_exception(logger, f"failed to clean multipart uploads: {e}", e)
        sys.exit(1)

    logger.info(f"Done. Total multipart uploads removed: {total_removed}")


if __name__ == "__main__":
    main()
