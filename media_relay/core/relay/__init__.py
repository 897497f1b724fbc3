"""
Media relay pipeline.

Contains the domain models, object key naming, key derivation, signed
URL issuing and the orchestrator that ties them together.
"""

from .access import AccessUrlIssuer
from .errors import (
    DecryptionFailed,
    FetchFailed,
    InvalidKeyMaterial,
    InvalidObjectKey,
    InvalidSourceUrl,
    InvalidTTL,
    RelayError,
    SigningFailed,
    UploadFailed,
)
from .keys import derive_key_material
from .models import (
    DerivedKeyMaterial,
    MediaRequest,
    PipelineFailure,
    PipelineResult,
    PipelineStage,
    UploadResult,
)
from .paths import build_file_name, build_object_key
from .pipeline import MediaRelayPipeline, MediaSource, MediaStream, ObjectStorage

__all__ = [
    "AccessUrlIssuer",
    "DecryptionFailed",
    "FetchFailed",
    "InvalidKeyMaterial",
    "InvalidObjectKey",
    "InvalidSourceUrl",
    "InvalidTTL",
    "RelayError",
    "SigningFailed",
    "UploadFailed",
    "derive_key_material",
    "DerivedKeyMaterial",
    "MediaRequest",
    "PipelineFailure",
    "PipelineResult",
    "PipelineStage",
    "UploadResult",
    "build_file_name",
    "build_object_key",
    "MediaRelayPipeline",
    "MediaSource",
    "MediaStream",
    "ObjectStorage",
]
