"""
Reapers for abandoned upload state in a Docker registry bucket.

- MultipartUploadReaper: aborts stale multipart uploads under a repository prefix
- UploadFolderReaper: deletes stale ``_uploads/<session-id>/`` folders
- RegistryUploadCleaner: walks the repositories root and drives both
"""

from reapers.multipart_reaper import MultipartUploadReaper
from reapers.orchestrator import RegistryUploadCleaner
from reapers.upload_folder_reaper import UploadFolderReaper

__all__ = [
    "MultipartUploadReaper",
    "RegistryUploadCleaner",
    "UploadFolderReaper",
]
