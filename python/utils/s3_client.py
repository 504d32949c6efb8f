"""
S3-compatible object store client used by the reapers.

Wraps a boto3 S3 client bound to a single bucket and exposes the handful of
calls the cleaner needs: delimited and flat listings, multipart upload
listing/abort, object read and object delete. Every botocore failure is
converted to an ``ObjectStoreError`` carrying the operation and key.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from utils.error_utils import create_s3_error
from utils.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class PrefixListing:
    """One page of a delimited ListObjects call"""

    prefix: str
    common_prefixes: List[str] = field(default_factory=list)
    keys: List[str] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: Optional[str] = None


@dataclass
class MultipartUploadRecord:
    """An in-flight multipart upload"""

    key: str
    upload_id: str
    initiated_at: datetime


@dataclass
class MultipartUploadListing:
    """One page of a ListMultipartUploads call"""

    uploads: List[MultipartUploadRecord] = field(default_factory=list)
    is_truncated: bool = False


@dataclass
class ObjectListing:
    """One page of a ListObjectsV2 call"""

    keys: List[str] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: Optional[str] = None


def create_s3_client(
    endpoint: str,
    region: str = "us-west-1",
    skip_tls_verify: bool = False,
    max_pool_connections: int = 10,
):
    """
    Create a boto3 S3 client for an S3-compatible endpoint.

    Path-style addressing is forced so that endpoints without wildcard DNS
    (MinIO, Ceph RGW and similar) resolve bucket names correctly.

    Credentials come from ``AWS_ACCESS_KEY_ID``/``AWS_SECRET_ACCESS_KEY`` when
    both are set; otherwise boto3's default provider chain is used
    (environment, shared credentials file, instance role).

    Parameters
    ----------
    endpoint : str
        Endpoint URL of the object store.
    region : str
        Signing region.
    skip_tls_verify : bool
        Disable TLS certificate verification.
    max_pool_connections : int
        Size of the urllib3 connection pool.

    Returns
    -------
    botocore.client.S3
    """
    session_kwargs: Dict[str, Any] = {"region_name": region}
    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if access_key and secret_key:
        session_kwargs["aws_access_key_id"] = access_key
        session_kwargs["aws_secret_access_key"] = secret_key
        session_token = os.environ.get("AWS_SESSION_TOKEN")
        if session_token:
            session_kwargs["aws_session_token"] = session_token
    else:
        logger.debug("Static credentials not set; using the default credential provider chain")

    config = Config(
        max_pool_connections=max_pool_connections,
        signature_version="s3v4",
        s3={"addressing_style": "path"},
    )
    session = boto3.session.Session(**session_kwargs)
    return session.client(
        "s3",
        endpoint_url=endpoint,
        config=config,
        verify=not skip_tls_verify,
    )


class ObjectStoreClient:
    """Bucket-bound wrapper around a boto3 S3 client"""

    def __init__(self, s3_client, bucket: str):
        self.s3 = s3_client
        self.bucket = bucket

    @property
    def endpoint(self) -> str:
        return getattr(self.s3.meta, "endpoint_url", "") or ""

    def _call(self, operation: str, key: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        # boto3 rejects explicit None parameters
        params = {k: v for k, v in kwargs.items() if v is not None}
        try:
            return getattr(self.s3, operation)(Bucket=self.bucket, **params)
        except (ClientError, BotoCoreError) as e:
            raise create_s3_error(operation, self.bucket, e, key=key) from e

    def list_common_prefixes(
        self,
        prefix: str,
        delimiter: str = "/",
        marker: Optional[str] = None,
        max_keys: int = 100,
    ) -> PrefixListing:
        """List one page of keys and common prefixes under ``prefix``"""
        resp = self._call(
            "list_objects",
            Prefix=prefix,
            Delimiter=delimiter,
            Marker=marker,
            MaxKeys=max_keys,
        )
        return PrefixListing(
            prefix=resp.get("Prefix", prefix),
            common_prefixes=[cp["Prefix"] for cp in resp.get("CommonPrefixes", [])],
            keys=[obj["Key"] for obj in resp.get("Contents", [])],
            is_truncated=bool(resp.get("IsTruncated", False)),
            next_marker=resp.get("NextMarker"),
        )

    def list_multipart_uploads(
        self,
        prefix: str,
        key_marker: Optional[str] = None,
        upload_id_marker: Optional[str] = None,
        max_uploads: int = 1000,
    ) -> MultipartUploadListing:
        """List one page of in-flight multipart uploads under ``prefix``"""
        resp = self._call(
            "list_multipart_uploads",
            Prefix=prefix,
            KeyMarker=key_marker,
            UploadIdMarker=upload_id_marker,
            MaxUploads=max_uploads,
        )
        uploads = [
            MultipartUploadRecord(key=u["Key"], upload_id=u["UploadId"], initiated_at=u["Initiated"])
            for u in resp.get("Uploads", [])
        ]
        return MultipartUploadListing(uploads=uploads, is_truncated=bool(resp.get("IsTruncated", False)))

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._call("abort_multipart_upload", key=key, Key=key, UploadId=upload_id)

    def list_objects(
        self,
        prefix: str,
        continuation_token: Optional[str] = None,
        max_keys: int = 100,
    ) -> ObjectListing:
        """List one page of keys under ``prefix`` without a delimiter"""
        resp = self._call(
            "list_objects_v2",
            Prefix=prefix,
            ContinuationToken=continuation_token,
            MaxKeys=max_keys,
        )
        return ObjectListing(
            keys=[obj["Key"] for obj in resp.get("Contents", [])],
            is_truncated=bool(resp.get("IsTruncated", False)),
            next_continuation_token=resp.get("NextContinuationToken"),
        )

    def get_object(self, key: str) -> bytes:
        """Read an object's full body"""
        resp = self._call("get_object", key=key, Key=key)
        body = resp["Body"]
        try:
            return body.read()
        except (ClientError, BotoCoreError) as e:
            raise create_s3_error("get_object", self.bucket, e, key=key) from e
        finally:
            body.close()

    def delete_object(self, key: str) -> None:
        self._call("delete_object", key=key, Key=key)

