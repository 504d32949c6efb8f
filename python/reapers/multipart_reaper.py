"""Abort multipart uploads that were started but never completed."""

from dataclasses import dataclass
from typing import Optional

from utils.config_manager import CleanupPolicy
from utils.error_utils import CleanupError, ObjectStoreError
from utils.logging_utils import get_logger
from utils.s3_client import MultipartUploadRecord, ObjectStoreClient
from utils.time_utils import Clock, hours_since, utc_now

logger = get_logger(__name__)


@dataclass
class MultipartStats:
    examined: int = 0
    stale: int = 0
    removed: int = 0
    would_remove: int = 0
    failed: int = 0


class MultipartUploadReaper:
    """Lists in-flight multipart uploads under a prefix and aborts the stale ones.

    An abort failure only affects that upload: it is logged, counted in
    ``stats.failed`` and the page carries on. Listing failures stop the reaper.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        policy: CleanupPolicy,
        dry_run: bool = False,
        clock: Clock = utc_now,
        page_size: int = 1000,
    ):
        self.client = client
        self.policy = policy
        self.dry_run = dry_run
        self.clock = clock
        self.page_size = page_size
        self.stats = MultipartStats()

    def reap(self, prefix: str) -> int:
        """Abort stale multipart uploads under ``prefix``.

        Returns:
            Number of uploads actually aborted (always 0 in dry-run mode)
        """
        removed = 0
        key_marker: Optional[str] = None
        upload_id_marker: Optional[str] = None

        while True:
            try:
                page = self.client.list_multipart_uploads(
                    prefix,
                    key_marker=key_marker,
                    upload_id_marker=upload_id_marker,
                    max_uploads=self.page_size,
                )
            except ObjectStoreError as e:
                raise CleanupError("failed to list multipart uploads", e) from e

            logger.info(f" # of MPUs found for prefix {prefix}: {len(page.uploads)}")

            for i, upload in enumerate(page.uploads):
                if self._reap_upload(i, upload):
                    removed += 1

            if not page.is_truncated or not page.uploads:
                return removed

            # A key can carry several uploads; both markers move together
            last = page.uploads[-1]
            key_marker, upload_id_marker = last.key, last.upload_id

    def _reap_upload(self, index: int, upload: MultipartUploadRecord) -> bool:
        self.stats.examined += 1
        age = hours_since(upload.initiated_at, self.clock())
        logger.info(f"  Upload {index}: {upload.key} started {age} hours ago")

        if age <= self.policy.stale_after_hours:
            return False

        self.stats.stale += 1
        if self.dry_run:
            self.stats.would_remove += 1
            logger.info(f"   DRY RUN: would abort upload {upload.upload_id} of {upload.key}")
            return False

        try:
            self.client.abort_multipart_upload(upload.key, upload.upload_id)
        except ObjectStoreError as e:
            self.stats.failed += 1
            logger.error(f"   Failed to abort upload {upload.upload_id} of {upload.key}: {e}")
            return False

        self.stats.removed += 1
        logger.info("   Removed!")
        return True
