"""
Media relay endpoint.

POST /v1/download-media takes a WhatsApp media reference, runs it
through the relay pipeline and answers with a signed download URL.

Field names are camelCase to match the payloads WhatsApp gateways
already produce (url, mediaKey, mimetype, remoteJid, ...).
"""

import logging
import re
from urllib.parse import urlsplit

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...core.relay.models import DEFAULT_FOLDER_NAME, MediaRequest, PipelineFailure
from ..dependencies import RelayPipelineDep

logger = logging.getLogger(__name__)

router = APIRouter()

# Identity tags may carry JIDs ("5511999999999@s.whatsapp.net").
TAG_PATTERN = r"^[a-zA-Z0-9\-_@.]+$"
FOLDER_PATTERN = r"^[a-zA-Z0-9\-_]+$"

_BASE64 = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_MIME = re.compile(r"^[\w.+-]+/[\w.+-]+(\s*;.*)?$")

# Client errors are the caller's input; 502 means an upstream (CDN or
# storage) let us down; the rest are server-side misconfiguration.
STATUS_BY_KIND = {
    "InvalidKeyMaterial": status.HTTP_400_BAD_REQUEST,
    "InvalidSourceUrl": status.HTTP_400_BAD_REQUEST,
    "InvalidObjectKey": status.HTTP_400_BAD_REQUEST,
    "DecryptionFailed": 422,
    "FetchFailed": status.HTTP_502_BAD_GATEWAY,
    "UploadFailed": status.HTTP_502_BAD_GATEWAY,
    "InvalidTTL": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "SigningFailed": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class DownloadMediaRequest(BaseModel):
    """Reference to one encrypted WhatsApp media object."""
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(description="Encrypted media URL on the WhatsApp CDN")
    media_key: str = Field(alias="mediaKey", description="Base64 media key from the message")
    mimetype: str = Field(description="MIME type of the decrypted media")
    remote_jid: str = Field(alias="remoteJid", min_length=1, pattern=TAG_PATTERN)
    media_type: str = Field(
        alias="mediaType",
        min_length=1,
        pattern=TAG_PATTERN,
        description="Message type, e.g. imageMessage or audioMessage",
    )
    instance_id: str = Field(alias="instanceId", min_length=1, pattern=TAG_PATTERN)
    folder_name: str = Field(
        default=DEFAULT_FOLDER_NAME,
        alias="folderName",
        pattern=FOLDER_PATTERN,
        description="Top-level storage folder",
    )

    @field_validator("url")
    @classmethod
    def url_must_be_absolute(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("media_key")
    @classmethod
    def media_key_must_be_base64(cls, value: str) -> str:
        value = value.strip()
        if len(value) % 4 or not _BASE64.match(value):
            raise ValueError("mediaKey must be base64")
        return value

    @field_validator("mimetype")
    @classmethod
    def mimetype_must_be_valid(cls, value: str) -> str:
        if not _MIME.match(value):
            raise ValueError("mimetype must look like type/subtype")
        return value

    def to_media_request(self) -> MediaRequest:
        return MediaRequest(
            source_url=self.url,
            media_key=self.media_key,
            mime_type=self.mimetype,
            remote_jid=self.remote_jid,
            media_type=self.media_type,
            instance_id=self.instance_id,
            folder_name=self.folder_name,
        )


class DownloadMediaResponse(BaseModel):
    """Successful relay: where the media went and how to fetch it."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    url: str = Field(description="Signed download URL")
    file_name: str = Field(alias="fileName", description="Object key in the bucket")
    expires_in: int = Field(alias="expiresIn", description="URL lifetime in seconds")


class RelayErrorDetail(BaseModel):
    """Which stage failed and how, without internals."""
    stage: str
    kind: str
    message: str


class RelayErrorResponse(BaseModel):
    success: bool = False
    error: RelayErrorDetail


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/download-media",
    response_model=DownloadMediaResponse,
    status_code=status.HTTP_200_OK,
    summary="Decrypt WhatsApp media into object storage",
    description="Downloads and decrypts the media, stores it, and returns a signed URL.",
    responses={
        400: {"model": RelayErrorResponse, "description": "Invalid key, URL or path fields"},
        422: {"model": RelayErrorResponse, "description": "Media could not be decrypted"},
        502: {"model": RelayErrorResponse, "description": "Media host or storage failed"},
    },
)
async def download_media(
    body: DownloadMediaRequest,
    pipeline: RelayPipelineDep,
):
    """Relay one encrypted media object into the bucket."""
    result = await pipeline.run(body.to_media_request())

    if isinstance(result, PipelineFailure):
        error = RelayErrorResponse(
            error=RelayErrorDetail(
                stage=result.stage.value,
                kind=result.kind,
                message=result.message,
            )
        )
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(result.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content=error.model_dump(),
        )

    return DownloadMediaResponse(
        url=result.signed_url,
        file_name=result.object_key,
        expires_in=result.expires_in,
    )
