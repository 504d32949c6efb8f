"""
Run summary reporting for the upload cleaner.

This module provides functions to:
- Collect the counters of a cleanup run into a ``RunSummary``
- Render the summary as a table
- Save the summary as JSON
"""
import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from tabulate import tabulate

from utils.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class RunSummary:
    endpoint: str
    bucket: str
    dry_run: bool
    stale_after_hours: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    succeeded: bool = False
    error: Optional[str] = None
    repositories_scanned: int = 0
    multipart_uploads_examined: int = 0
    multipart_uploads_stale: int = 0
    multipart_uploads_removed: int = 0
    multipart_uploads_would_remove: int = 0
    multipart_abort_failures: int = 0
    upload_markers_found: int = 0
    upload_folders_removed: int = 0
    upload_folders_would_remove: int = 0
    upload_folders_skipped: int = 0
    upload_markers_unreadable: int = 0
    objects_deleted: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def format_summary_table(summary: RunSummary) -> str:
    """Render the summary counters as a grid table"""
    mode = "DRY RUN" if summary.dry_run else "LIVE"
    rows = [
        ["Mode", mode],
        ["Bucket", summary.bucket],
        ["Stale after (hours)", summary.stale_after_hours],
        ["Repositories scanned", summary.repositories_scanned],
        ["Multipart uploads examined", summary.multipart_uploads_examined],
        ["Multipart uploads stale", summary.multipart_uploads_stale],
        ["Multipart uploads removed", summary.multipart_uploads_removed],
        ["Multipart abort failures", summary.multipart_abort_failures],
        ["Upload markers found", summary.upload_markers_found],
        ["Upload markers unreadable", summary.upload_markers_unreadable],
        ["Upload folders skipped (fresh)", summary.upload_folders_skipped],
        ["Upload folders removed", summary.upload_folders_removed],
        ["Objects deleted", summary.objects_deleted],
    ]
    if summary.dry_run:
        rows.insert(7, ["Multipart uploads (would remove)", summary.multipart_uploads_would_remove])
        rows.append(["Upload folders (would remove)", summary.upload_folders_would_remove])
    return tabulate(rows, headers=["Metric", "Value"], tablefmt="grid")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_json(path: str, data: Any) -> str:
    """
    Write JSON data to a file with indentation.

    datetime/date values are written as ISO strings. Parent directories are
    created as needed.

    Args:
        path: Path to save the JSON file
        data: Data to save

    Returns:
        Path to the saved file
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w") as f:
        json.dump(data, f, indent=2, default=_json_default)
    logger.info(f"Summary written to {p}")
    return str(p)
