"""
Remove upload session folders left behind by interrupted blob uploads.

The registry stages every blob upload under
``<repository>/_uploads/<session-id>/`` and writes a ``startedat`` object
holding the session start time. When a client gives up before the blob is
committed, the folder stays behind forever. This reaper finds those markers,
and deletes every object in a folder whose marker is older than the policy
threshold. The marker's age stands for the whole folder; sibling objects'
own timestamps are not consulted.
"""

from dataclasses import dataclass
from typing import List, Optional, Set

from utils.config_manager import CleanupPolicy
from utils.error_utils import CleanupError, FolderDeletionError, MarkerParseError, ObjectStoreError
from utils.logging_utils import get_logger
from utils.s3_client import ObjectStoreClient
from utils.time_utils import Clock, hours_since, parse_started_at, utc_now

logger = get_logger(__name__)

UPLOADS_SEGMENT = "/_uploads/"
MARKER_SUFFIX = "/startedat"


@dataclass
class FolderStats:
    markers: int = 0
    removed: int = 0
    would_remove: int = 0
    skipped: int = 0
    unreadable: int = 0
    objects_deleted: int = 0


def is_upload_marker(key: str) -> bool:
    """True for ``.../_uploads/<session-id>/startedat`` keys"""
    return UPLOADS_SEGMENT in key and key.endswith(MARKER_SUFFIX)


def folder_prefix(marker_key: str) -> str:
    """Folder holding a marker: ``a/b/_uploads/s1/startedat`` -> ``a/b/_uploads/s1/``"""
    return "/".join(marker_key.split("/")[:-1]) + "/"


class UploadFolderReaper:
    """Finds stale ``startedat`` markers under a prefix and deletes their folders.

    Unreadable or malformed markers are logged and skipped. A failed delete
    inside a folder raises ``FolderDeletionError`` and no further objects of
    that folder are deleted.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        policy: CleanupPolicy,
        dry_run: bool = False,
        clock: Clock = utc_now,
        page_size: int = 100,
        folder_page_size: int = 1000,
    ):
        self.client = client
        self.policy = policy
        self.dry_run = dry_run
        self.clock = clock
        self.page_size = page_size
        self.folder_page_size = folder_page_size
        self.stats = FolderStats()
        # Markers already evaluated this run; the same root is scanned once per repository page
        self.evaluated: Set[str] = set()

    def reap(self, prefix: str) -> None:
        """Scan every key under ``prefix`` and remove stale upload folders"""
        continuation_token: Optional[str] = None

        while True:
            try:
                page = self.client.list_objects(prefix, continuation_token=continuation_token, max_keys=self.page_size)
            except ObjectStoreError as e:
                raise CleanupError(f"failed to list objects for prefix {prefix}", e) from e

            for key in page.keys:
                if is_upload_marker(key) and key not in self.evaluated:
                    self.evaluated.add(key)
                    self._reap_marker(key)

            if not page.is_truncated:
                return
            if not page.next_continuation_token:
                logger.warning(f"Listing of {prefix} reported truncation without a continuation token; stopping")
                return
            continuation_token = page.next_continuation_token

    def _reap_marker(self, key: str) -> None:
        self.stats.markers += 1
        try:
            age = self.hours_since_upload_started(key)
        except (ObjectStoreError, MarkerParseError) as e:
            self.stats.unreadable += 1
            logger.error(f"  Skipping folder {key}: {e}")
            return

        if age > self.policy.stale_after_hours:
            logger.info(f"  Removing folder {key} ({age} hours)")
            self.delete_folder(key)
            if self.dry_run:
                self.stats.would_remove += 1
            else:
                self.stats.removed += 1
        else:
            self.stats.skipped += 1
            logger.info(f"  Skipping folder {key} ({age} hours)")

    def hours_since_upload_started(self, marker_key: str) -> int:
        """Read a marker and return its age in whole hours.

        Raises:
            ObjectStoreError: If the marker cannot be read
            MarkerParseError: If the marker body is not a valid timestamp
        """
        body = self.client.get_object(marker_key)
        started_at = parse_started_at(body, self.policy.started_at_format, key=marker_key)
        return hours_since(started_at, self.clock())

    def list_folder(self, prefix: str) -> List[str]:
        """Every key under ``prefix``, across as many listing pages as needed"""
        keys: List[str] = []
        continuation_token: Optional[str] = None
        while True:
            try:
                page = self.client.list_objects(
                    prefix, continuation_token=continuation_token, max_keys=self.folder_page_size
                )
            except ObjectStoreError as e:
                raise CleanupError(f"failed to list objects for prefix {prefix}", e) from e
            keys.extend(page.keys)
            if not page.is_truncated:
                return keys
            if not page.next_continuation_token:
                raise CleanupError(
                    f"listing of {prefix} reported truncation without a continuation token; refusing a partial delete"
                )
            continuation_token = page.next_continuation_token

    def delete_folder(self, marker_key: str) -> None:
        """Delete every object in the folder holding ``marker_key``, marker included.

        The folder is fully enumerated before the first delete. The first
        failed delete stops the folder and raises ``FolderDeletionError``.
        """
        prefix = folder_prefix(marker_key)
        keys = self.list_folder(prefix)

        for key in keys:
            if self.dry_run:
                logger.info(f"    DRY RUN: would remove {key}")
                continue

            try:
                self.client.delete_object(key)
            except ObjectStoreError as e:
                raise FolderDeletionError(prefix, key, e) from e

            self.stats.objects_deleted += 1
            logger.info(f"    Removing {key}")
