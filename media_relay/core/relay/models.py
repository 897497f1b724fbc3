"""
Domain models for the media relay pipeline.

These models have no dependencies on HTTP, boto3, or the WhatsApp CDN.
They describe one relay request, the key material derived from it, and
the two possible outcomes of running the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


DEFAULT_FOLDER_NAME = "whatsapp-media"


class PipelineStage(Enum):
    """Where a pipeline run is (or where it stopped)."""
    IDLE = "idle"
    DERIVING_KEY = "deriving_key"
    OPENING = "opening"
    UPLOADING = "uploading"
    ISSUING = "issuing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class MediaRequest:
    """
    A validated request to relay one encrypted media object.

    Built by the HTTP boundary after field validation. The media key is
    kept as the base64 text the caller sent; decoding it is the job of
    the key deriver so that a bad key surfaces as a pipeline failure.
    """
    source_url: str
    media_key: str = field(repr=False)
    mime_type: str
    remote_jid: str
    media_type: str
    instance_id: str
    folder_name: str = DEFAULT_FOLDER_NAME

    @property
    def object_metadata(self) -> dict[str, str]:
        """Object-level tags stored alongside the uploaded media."""
        return {
            "instance-id": self.instance_id,
            "remote-jid": self.remote_jid,
            "media-type": self.media_type,
        }


@dataclass(frozen=True)
class DerivedKeyMaterial:
    """
    Key material and resource locator for one encrypted media object.

    Frozen and scoped to a single request. Key bytes are excluded from
    repr so they never end up in logs or tracebacks.
    """
    iv: bytes = field(repr=False)
    enc_iv: bytes = field(repr=False)
    key: bytes = field(repr=False)
    mac_key: bytes = field(repr=False)
    direct_path: str
    url: str


@dataclass(frozen=True)
class UploadResult:
    """Successful outcome: the stored object and a signed URL for it."""
    object_key: str
    signed_url: str
    expires_in: int
    expires_at: datetime

    success = True


@dataclass(frozen=True)
class PipelineFailure:
    """
    Failed outcome, tagged with the stage that failed and the error kind.

    message is a fixed, user-safe sentence per kind. cause names the
    underlying error class (e.g. a DecryptionFailed that aborted an
    upload) without carrying its text.
    """
    stage: PipelineStage
    kind: str
    message: str
    cause: Optional[str] = None

    success = False


PipelineResult = Union[UploadResult, PipelineFailure]
