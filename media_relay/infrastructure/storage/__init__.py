"""
Object storage integration for relayed media.

Supports S3, R2 and MinIO via the S3-compatible API, with streamed
multipart uploads. Includes mock mode for local development without
credentials.
"""

from .client import (
    MockStorageClient,
    S3StorageClient,
    StorageClient,
    StorageConfig,
    StorageError,
    create_storage_client,
)

__all__ = [
    "MockStorageClient",
    "S3StorageClient",
    "StorageClient",
    "StorageConfig",
    "StorageError",
    "create_storage_client",
]
