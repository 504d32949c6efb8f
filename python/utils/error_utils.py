"""
Error types and actionable error messages for the upload cleaner.

Errors fall into two groups:
- Per-item failures the reapers log and skip (an aborted multipart upload
  that could not be aborted, an unreadable or malformed ``startedat`` marker).
- Run-level failures that stop the cleaner (listing failures, a failed delete
  inside an upload folder). These surface as ``CleanupError``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.message)

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [self.message]

        if self.suggestions:
            lines.append("Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ObjectStoreError(ActionableError):
    """A single object-store call failed"""

    def __init__(self, message: str, operation: str, bucket: str, key: Optional[str] = None,
                 category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.bucket = bucket
        self.key = key
        super().__init__(message, category=category, suggestions=suggestions, details=details)


class MarkerParseError(ValueError):
    """Raised when an upload session ``startedat`` body is not a valid timestamp"""

    def __init__(self, body: str, expected_format: str, key: Optional[str] = None):
        self.body = body
        self.expected_format = expected_format
        self.key = key
        where = f" in {key}" if key else ""
        super().__init__(f"invalid startedat timestamp {body!r}{where} (expected format {expected_format})")


class CleanupError(Exception):
    """Run-level failure, carrying the context it happened in"""

    def __init__(self, context: str, cause: Optional[BaseException] = None):
        self.context = context
        self.cause = cause
        message = f"{context}: {cause}" if cause is not None else context
        super().__init__(message)


class FolderDeletionError(CleanupError):
    """A delete inside an upload session folder failed; the folder is left partially removed"""

    def __init__(self, folder: str, key: str, cause: Optional[BaseException] = None):
        self.folder = folder
        self.key = key
        super().__init__(f"failed to delete object {key}", cause)


def create_s3_error(operation: str, bucket: str, error: Exception, key: Optional[str] = None) -> ObjectStoreError:
    """Create actionable error for S3 operation failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify S3 bucket '{bucket}' exists and is accessible",
        "Check the object-store endpoint URL is reachable",
        "Verify the credentials allow this operation on the bucket",
    ]
    category = ErrorCategory.RESOURCE

    if "credentials" in error_str:
        category = ErrorCategory.AUTHENTICATION
        suggestions.insert(0, "Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables")
        suggestions.insert(1, "Or configure a shared credentials file / instance role")

    if "403" in error_str or "forbidden" in error_str or "accessdenied" in error_str:
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, "Check the bucket policy allows list, read, delete and multipart abort")

    if "404" in error_str or "nosuchbucket" in error_str:
        suggestions.insert(0, f"Verify bucket '{bucket}' exists on this endpoint")
        suggestions.insert(1, "Check bucket name spelling")

    if "ssl" in error_str or "certificate" in error_str:
        category = ErrorCategory.CONNECTION
        suggestions.insert(0, "Use --skip-tls-verify for endpoints with self-signed certificates")

    if "could not connect" in error_str or "endpoint" in error_str or "timed out" in error_str:
        category = ErrorCategory.CONNECTION
        suggestions.insert(0, "Check network connectivity to the object-store endpoint")

    details = {
        "operation": operation,
        "bucket": bucket,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if key is not None:
        details["key"] = key

    target = f"{bucket}/{key}" if key else bucket
    return ObjectStoreError(
        message=f"S3 operation failed: {operation} on {target}: {error}",
        operation=operation,
        bucket=bucket,
        key=key,
        category=category,
        suggestions=suggestions,
        details=details,
    )
