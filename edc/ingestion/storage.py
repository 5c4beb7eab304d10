"""
Blob storage for uploaded source documents.

S3BlobStorage is used when a bucket is configured; InMemoryBlobStorage
backs local development and tests. Both return blob URIs of the form
``s3://<bucket>/<key>`` so stored study records look the same either way.
"""

import logging
import threading
import time
from datetime import datetime, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from edc.core.schema import EDCModel

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_PREFIX = "clinical-edc/input"


class StorageError(Exception):
    """Raised when a blob cannot be written or located."""


class StoredBlob(EDCModel):
    uri: str
    key: str
    file_name: str
    file_size: int
    content_type: str


def build_object_key(file_name: str, prefix: str = DEFAULT_UPLOAD_PREFIX) -> str:
    """Build a unique object key: ``<prefix>/<epoch-ms>-<file name>``."""
    return f"{prefix.rstrip('/')}/{int(time.time() * 1000)}-{file_name}"


class BlobStorage:
    """Interface for blob stores holding uploaded documents."""

    bucket: str

    def upload(self, data: bytes, file_name: str, content_type: str) -> StoredBlob:
        raise NotImplementedError

    def download_url(self, uri: str, expires_in: int = 3600) -> str:
        raise NotImplementedError

    def key_from_uri(self, uri: str) -> str:
        prefix = f"s3://{self.bucket}/"
        if not uri.startswith(prefix):
            raise StorageError(f"URI '{uri}' is not in bucket '{self.bucket}'")
        return uri[len(prefix):]


class S3BlobStorage(BlobStorage):
    """Stores uploads in an S3 bucket.

    Args:
        bucket: Target bucket name.
        region: AWS region of the bucket.
        prefix: Key prefix for uploaded files.
        client: Optional pre-built boto3 S3 client.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = DEFAULT_UPLOAD_PREFIX,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self._client = client or boto3.client("s3", region_name=region)

    def upload(self, data: bytes, file_name: str, content_type: str) -> StoredBlob:
        key = build_object_key(file_name, self.prefix)
        logger.info("Uploading %s (%d bytes) to s3://%s/%s", file_name, len(data), self.bucket, key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={
                    "originalName": file_name,
                    "uploadedAt": datetime.now(timezone.utc).isoformat(),
                },
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload of %s failed: %s", file_name, e)
            raise StorageError(str(e)) from e

        return StoredBlob(
            uri=f"s3://{self.bucket}/{key}",
            key=key,
            file_name=file_name,
            file_size=len(data),
            content_type=content_type,
        )

    def download_url(self, uri: str, expires_in: int = 3600) -> str:
        key = self.key_from_uri(uri)
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to generate download URL: {e}") from e


class InMemoryBlobStorage(BlobStorage):
    """Keeps uploads in process memory."""

    def __init__(self, bucket: str = "local", prefix: str = DEFAULT_UPLOAD_PREFIX):
        self.bucket = bucket
        self.prefix = prefix
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def upload(self, data: bytes, file_name: str, content_type: str) -> StoredBlob:
        key = build_object_key(file_name, self.prefix)
        with self._lock:
            self._blobs[key] = bytes(data)
        return StoredBlob(
            uri=f"s3://{self.bucket}/{key}",
            key=key,
            file_name=file_name,
            file_size=len(data),
            content_type=content_type,
        )

    def download_url(self, uri: str, expires_in: int = 3600) -> str:
        key = self.key_from_uri(uri)
        with self._lock:
            if key not in self._blobs:
                raise StorageError(f"No blob stored at '{uri}'")
        return f"memory://{self.bucket}/{key}"

    def get(self, uri: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(self.key_from_uri(uri))
