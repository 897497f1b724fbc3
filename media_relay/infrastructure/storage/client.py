"""
Object storage client for relayed media.

Supports any S3-compatible backend (AWS S3, Cloudflare R2, MinIO) with a
mock mode for local development.

Uploads are streamed with the multipart API: the decrypted stream is
read one part at a time and each part is sent before the next is read,
so memory use is bounded by the part size no matter how large the video.
S3 only makes a multipart object visible on CompleteMultipartUpload, and
every failure path calls AbortMultipartUpload, so a failed relay never
leaves a readable partial object behind.

Mock mode stores objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ...core.relay.errors import SigningFailed, UploadFailed
from ...core.relay.pipeline import MediaStream

logger = logging.getLogger(__name__)

# S3 rejects non-final parts smaller than 5 MiB.
MIN_PART_SIZE_BYTES = 5 * 1024 * 1024
DEFAULT_PART_SIZE_BYTES = 8 * 1024 * 1024


class StorageError(Exception):
    """Raised when bucket-level storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for S3-compatible storage.

    endpoint_url is only set for non-AWS backends (R2, MinIO); those get
    path-style addressing since they rarely serve virtual-host buckets.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    part_size_bytes: int = DEFAULT_PART_SIZE_BYTES

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValueError("bucket_name is required")
        if self.part_size_bytes < 1:
            raise ValueError("part_size_bytes must be positive")


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
    """

    async def upload_stream(
        self,
        stream: MediaStream,
        storage_path: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        """Drain stream into storage_path. Raises UploadFailed."""
        ...

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        """Generate temporary download URL. Raises SigningFailed."""
        ...

    async def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist."""
        ...


async def read_part(stream: MediaStream, part_size: int) -> bytes:
    """Read up to part_size bytes, stopping early only at end of stream."""
    buffer = bytearray()
    while len(buffer) < part_size:
        chunk = await stream.read(part_size - len(buffer))
        if not chunk:
            break
        buffer += chunk
    return bytes(buffer)


class S3StorageClient:
    """
    S3-compatible object storage client.

    Uses boto3, which is synchronous; every call goes through
    asyncio.to_thread so a slow part upload does not stall the event
    loop for other requests. The boto3 client is thread-safe and is
    created once per process.
    """

    def __init__(self, config: StorageConfig, s3_client=None) -> None:
        """
        Initialize the client with boto3.

        s3_client lets tests pass a fake; normally it is built here.
        """
        self._config = config

        if s3_client is None:
            try:
                import boto3
                from botocore.config import Config
            except ImportError:
                raise ImportError(
                    "boto3 is required for S3 storage. Install with: pip install boto3"
                )

            boto_config = Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path' if config.endpoint_url else 'auto'},
            )

            s3_client = boto3.client(
                's3',
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
                config=boto_config,
            )

        self._s3_client = s3_client

        logger.info(
            "Initialized S3 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
                "part_size_bytes": config.part_size_bytes,
            }
        )

    async def upload_stream(
        self,
        stream: MediaStream,
        storage_path: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        """
        Stream media into storage with a multipart upload.

        Parts are uploaded sequentially. On any error the multipart upload
        is aborted and UploadFailed is raised, chained to the cause. On
        cancellation the upload is aborted and CancelledError propagates.
        """
        bucket = self._config.bucket_name
        part_size = self._config.part_size_bytes

        try:
            created = await asyncio.to_thread(
                self._s3_client.create_multipart_upload,
                Bucket=bucket,
                Key=storage_path,
                ContentType=content_type,
                Metadata=metadata,
            )
        except Exception as e:
            logger.error(
                "Failed to start multipart upload",
                extra={"storage_path": storage_path, "error": str(e)}
            )
            raise UploadFailed(f"Multipart upload could not start: {e}") from e

        upload_id = created['UploadId']
        parts = []
        total_bytes = 0

        try:
            while True:
                chunk = await read_part(stream, part_size)
                if not chunk:
                    break

                part_number = len(parts) + 1
                response = await asyncio.to_thread(
                    self._s3_client.upload_part,
                    Bucket=bucket,
                    Key=storage_path,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=chunk,
                )
                parts.append({'PartNumber': part_number, 'ETag': response['ETag']})
                total_bytes += len(chunk)

                logger.debug(
                    "Uploaded part",
                    extra={
                        "storage_path": storage_path,
                        "part_number": part_number,
                        "size_bytes": len(chunk),
                    }
                )

                if len(chunk) < part_size:
                    break

            if parts:
                await asyncio.to_thread(
                    self._s3_client.complete_multipart_upload,
                    Bucket=bucket,
                    Key=storage_path,
                    UploadId=upload_id,
                    MultipartUpload={'Parts': parts},
                )
            else:
                # A multipart upload needs at least one part; store empty
                # media as a plain zero-byte object instead.
                await self._abort(storage_path, upload_id)
                upload_id = None
                await asyncio.to_thread(
                    self._s3_client.put_object,
                    Bucket=bucket,
                    Key=storage_path,
                    Body=b'',
                    ContentType=content_type,
                    Metadata=metadata,
                )

        except asyncio.CancelledError:
            if upload_id is not None:
                await self._abort(storage_path, upload_id)
            logger.warning(
                "Upload cancelled",
                extra={"storage_path": storage_path, "parts_uploaded": len(parts)}
            )
            raise

        except Exception as e:
            if upload_id is not None:
                await self._abort(storage_path, upload_id)
            logger.error(
                "Failed to upload media",
                extra={
                    "storage_path": storage_path,
                    "parts_uploaded": len(parts),
                    "error": str(e),
                }
            )
            raise UploadFailed(f"Upload failed: {e}") from e

        logger.info(
            "Uploaded media",
            extra={
                "storage_path": storage_path,
                "size_bytes": total_bytes,
                "parts": len(parts),
            }
        )

    async def _abort(self, storage_path: str, upload_id: str) -> None:
        """Abort a multipart upload; failures are logged, not raised."""
        try:
            await asyncio.to_thread(
                self._s3_client.abort_multipart_upload,
                Bucket=self._config.bucket_name,
                Key=storage_path,
                UploadId=upload_id,
            )
        except Exception as e:
            # Never completed, so never visible. A lifecycle rule reclaims the parts.
            logger.warning(
                "Failed to abort multipart upload",
                extra={"storage_path": storage_path, "error": str(e)}
            )

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        """
        Generate a temporary download URL.

        Signing is local (no request to the backend), so this is fast and
        does not check that the object exists.
        """
        try:
            return self._s3_client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self._config.bucket_name,
                    'Key': storage_path,
                },
                ExpiresIn=expiry_seconds,
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned URL",
                extra={"storage_path": storage_path, "error": str(e)}
            )
            raise SigningFailed(f"Presigned URL generation failed: {e}") from e

    async def ensure_bucket(self) -> None:
        """
        Create the configured bucket if it does not exist.

        Only called once at startup when auto-creation is enabled; the
        relay path never checks the bucket.
        """
        from botocore.exceptions import ClientError

        bucket = self._config.bucket_name
        try:
            await asyncio.to_thread(self._s3_client.head_bucket, Bucket=bucket)
            logger.info("Bucket exists", extra={"bucket": bucket})
            return
        except ClientError as e:
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code not in ('404', 'NoSuchBucket', 'NotFound'):
                logger.error(
                    "Failed to check bucket",
                    extra={"bucket": bucket, "error": str(e)}
                )
                raise StorageError(f"Bucket check failed: {e}")

        params = {'Bucket': bucket, 'ObjectOwnership': 'ObjectWriter'}
        region = self._config.region
        if not self._config.endpoint_url and region not in ('us-east-1', 'auto'):
            params['CreateBucketConfiguration'] = {'LocationConstraint': region}

        try:
            await asyncio.to_thread(self._s3_client.create_bucket, **params)
        except ClientError as e:
            logger.error(
                "Failed to create bucket",
                extra={"bucket": bucket, "error": str(e)}
            )
            raise StorageError(f"Bucket creation failed: {e}")

        logger.info("Created bucket", extra={"bucket": bucket})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class StoredObject:
    """An object held by the mock client."""
    data: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)


class MockStorageClient:
    """
    In-memory storage for local development.

    Reads the stream part by part like the real client and only commits
    the object once the stream is fully drained, so failed uploads leave
    nothing behind here either. "URLs" are mock URIs.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(self, part_size_bytes: int = DEFAULT_PART_SIZE_BYTES) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._part_size = part_size_bytes
        logger.info("Initialized mock storage client (in-memory)")

    async def upload_stream(
        self,
        stream: MediaStream,
        storage_path: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        """Drain the stream into memory and commit on completion."""
        buffer = bytearray()
        try:
            while True:
                chunk = await read_part(stream, self._part_size)
                buffer += chunk
                if len(chunk) < self._part_size:
                    break
        except Exception as e:
            raise UploadFailed(f"Upload failed: {e}") from e

        self._objects[storage_path] = StoredObject(
            data=bytes(buffer),
            content_type=content_type,
            metadata=dict(metadata),
        )

        logger.debug(
            "Stored media in mock storage",
            extra={"storage_path": storage_path, "size_bytes": len(buffer)}
        )

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        """Return a mock URL for a stored object."""
        if storage_path not in self._objects:
            raise SigningFailed(f"Object not found: {storage_path}")

        return f"mock://storage/{storage_path}?expires_in={expiry_seconds}"

    async def ensure_bucket(self) -> None:
        """Nothing to provision in memory."""
        return None

    def get_object(self, storage_path: str) -> Optional[StoredObject]:
        """Return a stored object, or None if it was never committed."""
        return self._objects.get(storage_path)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (S3 or Mock)
    """
    if mock_mode:
        if config is not None:
            return MockStorageClient(part_size_bytes=config.part_size_bytes)
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return S3StorageClient(config)
