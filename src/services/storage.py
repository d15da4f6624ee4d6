"""Object storage service for credential files (certificates, transcripts)."""

import logging
from typing import Iterable, Optional
from urllib.parse import quote, unquote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# S3 DeleteObjects accepts at most 1000 keys
DELETE_BATCH_SIZE = 1000


class StorageError(Exception):
    """Storage operation failed."""


class StorageConflict(StorageError):
    """Object already exists and overwriting was not allowed."""


class StorageService:
    """Service for managing object storage (MinIO/S3)."""

    def __init__(self, bucket: Optional[str] = None, public_base_url: Optional[str] = None):
        self._client = None
        self._bucket = bucket or settings.storage_bucket
        self._public_base_url = (public_base_url or settings.storage_public_url).rstrip("/")

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            endpoint_url = f"{'https' if settings.storage_use_ssl else 'http'}://{settings.storage_endpoint}"
            self._client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.storage_access_key,
                aws_secret_access_key=settings.storage_secret_key,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=settings.outbound_timeout_seconds,
                    read_timeout=settings.outbound_timeout_seconds,
                    retries={"max_attempts": 2},
                ),
            )
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError:
            self._client.create_bucket(Bucket=self._bucket)

    def upload(self, path: str, content: bytes, content_type: str, upsert: bool = False) -> str:
        """
        Upload bytes to ``path``.

        With ``upsert=False`` the write is conditional and an existing object
        is never replaced. Returns the storage path.
        """
        extra = {} if upsert else {"IfNoneMatch": "*"}
        try:
            self.client.put_object(
                Bucket=self._bucket,
                Key=path,
                Body=content,
                ContentType=content_type,
                **extra,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "412"):
                raise StorageConflict(f"Object already exists: {path}") from e
            raise StorageError(f"Upload failed for {path}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Upload failed for {path}: {e}") from e
        return path

    def download(self, path: str) -> bytes:
        """Download a file from storage."""
        try:
            response = self.client.get_object(Bucket=self._bucket, Key=path)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Download failed for {path}: {e}") from e

    def remove(self, paths: Iterable[str]) -> None:
        """
        Delete objects, at most ``DELETE_BATCH_SIZE`` keys per request.

        Every batch is attempted; raises afterwards if any key could not be
        removed.
        """
        keys = list(paths)
        failures = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self._bucket, Delete={"Objects": [{"Key": k} for k in batch]}
                )
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"Batch delete of {len(batch)} objects failed: {e}")
                failures.extend(batch)
                continue
            failures.extend(err.get("Key", "?") for err in response.get("Errors") or [])
        if failures:
            raise StorageError(f"Remove failed for {len(failures)} object(s): {', '.join(failures[:10])}")

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{self._bucket}/{quote(path)}"

    def signed_url(self, path: str, expires_in: int = 3600) -> str:
        """Generate a presigned URL for downloading a file."""
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not sign URL for {path}: {e}") from e

    def path_from_url(self, url: str) -> str:
        """
        Recover the storage path from a stored file URL.

        Everything after the bucket segment is the path. If the bucket
        segment is absent, the last path segment is used.
        """
        segments = [unquote(s) for s in urlparse(url).path.split("/") if s]
        if self._bucket in segments:
            rest = segments[segments.index(self._bucket) + 1:]
            if rest:
                return "/".join(rest)
        return segments[-1] if segments else url

    def health_check(self) -> bool:
        """Check if storage is accessible."""
        try:
            self.client.head_bucket(Bucket=self._bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False


# Singleton instance
storage_service = StorageService()


def get_storage() -> StorageService:
    """FastAPI dependency returning the shared storage service."""
    return storage_service
