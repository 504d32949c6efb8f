"""Walk the repositories of a registry bucket and drive both reapers."""

from typing import Optional

from utils.config_manager import DEFAULT_REPOSITORIES_PREFIX
from utils.error_utils import CleanupError, ObjectStoreError
from utils.logging_utils import get_logger
from utils.s3_client import ObjectStoreClient, PrefixListing
from reapers.multipart_reaper import MultipartUploadReaper
from reapers.upload_folder_reaper import UploadFolderReaper

logger = get_logger(__name__)


def next_listing_marker(page: PrefixListing) -> Optional[str]:
    """Marker resuming right after the last item (key or common prefix) of ``page``"""
    if page.next_marker:
        return page.next_marker
    candidates = []
    if page.keys:
        candidates.append(page.keys[-1])
    if page.common_prefixes:
        candidates.append(page.common_prefixes[-1])
    return max(candidates) if candidates else None


class RegistryUploadCleaner:
    """Runs the multipart and upload folder reapers over every repository prefix"""

    def __init__(
        self,
        client: ObjectStoreClient,
        multipart_reaper: MultipartUploadReaper,
        folder_reaper: UploadFolderReaper,
        repositories_prefix: str = DEFAULT_REPOSITORIES_PREFIX,
        page_size: int = 100,
    ):
        self.client = client
        self.multipart_reaper = multipart_reaper
        self.folder_reaper = folder_reaper
        self.repositories_prefix = repositories_prefix
        self.page_size = page_size
        self.repositories_scanned = 0

    def run(self) -> int:
        """Clean the bucket.

        Returns:
            Total number of multipart uploads aborted

        Raises:
            CleanupError: On any listing failure, reaper failure or folder deletion failure
        """
        total_removed = 0
        marker: Optional[str] = None

        logger.info(f"Endpoint: {self.client.endpoint}")
        logger.info(f"Bucket: {self.client.bucket}")

        while True:
            try:
                page = self.client.list_common_prefixes(
                    self.repositories_prefix,
                    delimiter="/",
                    marker=marker,
                    max_keys=self.page_size,
                )
            except ObjectStoreError as e:
                raise CleanupError("failed to list objects", e) from e

            for i, prefix in enumerate(page.common_prefixes):
                logger.info(f"Prefix {i}: {prefix}")
                try:
                    removed = self.multipart_reaper.reap(prefix)
                except CleanupError as e:
                    raise CleanupError(f"failed to remove multipart uploads for prefix {prefix}", e) from e

                self.repositories_scanned += 1
                total_removed += removed
                logger.info(f"  Total MPUs removed: {total_removed}")

            logger.info("Removing upload folders:")
            try:
                self.folder_reaper.reap(page.prefix)
            except CleanupError as e:
                raise CleanupError(f"failed to clean upload folders for prefix {page.prefix}", e) from e

            if not page.is_truncated:
                break
            marker = next_listing_marker(page)
            if marker is None:
                logger.warning("Listing reported truncation but returned no items; stopping")
                break

        return total_removed
