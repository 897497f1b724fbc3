"""
Relay pipeline orchestration.

Sequences the stages for one request:

    idle -> deriving_key -> opening -> uploading -> issuing -> done
                 \\            \\           \\           \\
                  +------------+-----------+-----------+--> failed

Each stage raises a RelayError subclass; run() catches it and returns a
PipelineFailure naming the stage and kind instead of letting the
exception unwind into the caller. Nothing is retried.

Cancellation is the one thing run() does not convert. If the caller's
task is cancelled, the stream is closed, the upload aborts itself, and
CancelledError propagates.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Protocol

from .access import AccessUrlIssuer
from .errors import RelayError
from .keys import derive_key_material
from .models import (
    DerivedKeyMaterial,
    MediaRequest,
    PipelineFailure,
    PipelineResult,
    PipelineStage,
    UploadResult,
)
from .paths import Clock, build_file_name, build_object_key

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class MediaStream(Protocol):
    """
    Pull-based byte stream.

    read(size) returns up to size bytes and b"" once exhausted. The
    consumer decides when to pull, which is the backpressure. aclose()
    releases the underlying connection and is safe to call twice.
    """

    async def read(self, size: int = -1) -> bytes:
        ...

    async def aclose(self) -> None:
        ...


class MediaSource(Protocol):
    """Opens a decrypted stream for an encrypted media object."""

    async def open_stream(
        self,
        locator: str,
        material: DerivedKeyMaterial,
        mime_type: str,
        media_type: str,
    ) -> MediaStream:
        """Raises FetchFailed or DecryptionFailed."""
        ...


class ObjectStorage(Protocol):
    """The slice of the storage client the pipeline uses."""

    async def upload_stream(
        self,
        stream: MediaStream,
        storage_path: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        """Raises UploadFailed; no object is visible after a failure."""
        ...


# User-facing text per error kind. Exception messages stay in the logs.
FAILURE_MESSAGES = {
    "InvalidKeyMaterial": "Media key is invalid.",
    "InvalidSourceUrl": "Media URL is invalid.",
    "InvalidObjectKey": "Storage path could not be built from the request fields.",
    "FetchFailed": "Encrypted media could not be downloaded.",
    "DecryptionFailed": "Media could not be decrypted with the given key.",
    "UploadFailed": "Media could not be stored.",
    "InvalidTTL": "Signed URL lifetime is not configured correctly.",
    "SigningFailed": "Signed URL could not be generated.",
}
GENERIC_FAILURE_MESSAGE = "Media relay failed."


class MediaRelayPipeline:
    """
    Runs one request through derive -> open -> upload -> issue.

    Storage, media source and issuer are injected so tests can swap any
    of them. The pipeline itself keeps only per-run locals; sharing one
    instance across concurrent requests is fine.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        media_source: MediaSource,
        issuer: AccessUrlIssuer,
        clock: Clock = time.time,
    ) -> None:
        self._storage = storage
        self._media_source = media_source
        self._issuer = issuer
        self._clock = clock

    async def run(
        self,
        request: MediaRequest,
        ttl_seconds: Optional[int] = None,
    ) -> PipelineResult:
        """Relay one media object. Returns UploadResult or PipelineFailure."""
        stage = PipelineStage.IDLE
        try:
            stage = PipelineStage.DERIVING_KEY
            material = derive_key_material(request.source_url, request.media_key)
            ttl = self._issuer.resolve_ttl(ttl_seconds)
            object_key = build_object_key(
                request.folder_name,
                request.instance_id,
                request.remote_jid,
                request.media_type,
                build_file_name(request.mime_type, self._clock),
            )

            stage = PipelineStage.OPENING
            stream = await self._media_source.open_stream(
                material.direct_path,
                material,
                request.mime_type,
                request.media_type,
            )

            stage = PipelineStage.UPLOADING
            try:
                await self._storage.upload_stream(
                    stream,
                    object_key,
                    request.mime_type,
                    request.object_metadata,
                )
            finally:
                await stream.aclose()

            stage = PipelineStage.ISSUING
            signed_url = await self._issuer.issue(object_key, ttl)
            issued_at = self._clock()

        except RelayError as e:
            return self._failure(stage, e, request)

        logger.info(
            "Relayed media",
            extra={
                "object_key": object_key,
                "instance_id": request.instance_id,
                "media_type": request.media_type,
                "expires_in": ttl,
            }
        )

        return UploadResult(
            object_key=object_key,
            signed_url=signed_url,
            expires_in=ttl,
            expires_at=datetime.fromtimestamp(issued_at + ttl, tz=timezone.utc),
        )

    def _failure(
        self,
        stage: PipelineStage,
        error: RelayError,
        request: MediaRequest,
    ) -> PipelineFailure:
        cause = error.__cause__
        logger.warning(
            "Media relay failed",
            extra={
                "stage": stage.value,
                "kind": error.kind,
                "cause": type(cause).__name__ if cause else None,
                "instance_id": request.instance_id,
                "media_type": request.media_type,
                "error": str(error),
            }
        )
        return PipelineFailure(
            stage=stage,
            kind=error.kind,
            message=FAILURE_MESSAGES.get(error.kind, GENERIC_FAILURE_MESSAGE),
            cause=getattr(cause, "kind", type(cause).__name__) if cause else None,
        )
