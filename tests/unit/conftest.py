"""
Shared test doubles for the relay tests.

- encrypt_media builds real WhatsApp envelopes so decryption is tested
  against the actual algorithm, not a mock of it
- FakeS3Client records multipart calls and only "stores" an object on
  CompleteMultipartUpload, like S3
- ChunkStream is a scripted MediaStream that can fail or block mid-way
"""

import asyncio
import base64
import os
from typing import Optional

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from media_relay.infrastructure.whatsapp.envelope import MAC_LENGTH, expand_media_key

CDN_HOST = "https://mmg.whatsapp.net"
FIXED_NOW = 1700000000.5


def encrypt_media(plaintext: bytes, media_key: bytes, media_type: str) -> bytes:
    """Encrypt plaintext the way WhatsApp clients upload media."""
    keys = expand_media_key(media_key, media_type)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(keys.cipher_key), modes.CBC(keys.iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    mac = hmac.HMAC(keys.mac_key, hashes.SHA256())
    mac.update(keys.iv + ciphertext)
    return ciphertext + mac.finalize()[:MAC_LENGTH]


class FakeS3Client:
    """
    Minimal stand-in for a boto3 S3 client.

    Objects appear in .objects only after complete_multipart_upload or
    put_object, which is the visibility rule the uploader relies on.
    """

    def __init__(self, fail_on_part: Optional[int] = None, fail_on_create: bool = False) -> None:
        self.fail_on_part = fail_on_part
        self.fail_on_create = fail_on_create
        self.objects: dict[str, dict] = {}
        self.pending: dict[str, dict] = {}
        self.calls: list[str] = []
        self.create_kwargs: Optional[dict] = None
        self.aborted: list[str] = []
        self.buckets: set[str] = set()
        self.created_buckets: list[dict] = []
        self.head_bucket_error: Optional[Exception] = None

    def create_multipart_upload(self, **kwargs):
        self.calls.append("create_multipart_upload")
        if self.fail_on_create:
            raise RuntimeError("create refused")
        self.create_kwargs = kwargs
        upload_id = f"upload-{len(self.pending) + len(self.aborted) + len(self.objects) + 1}"
        self.pending[upload_id] = {"key": kwargs["Key"], "parts": {}, "kwargs": kwargs}
        return {"UploadId": upload_id}

    def upload_part(self, **kwargs):
        self.calls.append("upload_part")
        if self.fail_on_part == kwargs["PartNumber"]:
            raise RuntimeError("part rejected")
        upload = self.pending[kwargs["UploadId"]]
        upload["parts"][kwargs["PartNumber"]] = kwargs["Body"]
        return {"ETag": f'"etag-{kwargs["PartNumber"]}"'}

    def complete_multipart_upload(self, **kwargs):
        self.calls.append("complete_multipart_upload")
        upload = self.pending.pop(kwargs["UploadId"])
        numbers = [part["PartNumber"] for part in kwargs["MultipartUpload"]["Parts"]]
        self.objects[kwargs["Key"]] = {
            "data": b"".join(upload["parts"][n] for n in numbers),
            "parts": [upload["parts"][n] for n in numbers],
            "ContentType": upload["kwargs"]["ContentType"],
            "Metadata": upload["kwargs"]["Metadata"],
        }
        return {}

    def abort_multipart_upload(self, **kwargs):
        self.calls.append("abort_multipart_upload")
        self.pending.pop(kwargs["UploadId"], None)
        self.aborted.append(kwargs["UploadId"])
        return {}

    def put_object(self, **kwargs):
        self.calls.append("put_object")
        self.objects[kwargs["Key"]] = {
            "data": kwargs["Body"],
            "parts": [],
            "ContentType": kwargs["ContentType"],
            "Metadata": kwargs["Metadata"],
        }
        return {}

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://storage.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def head_bucket(self, **kwargs):
        self.calls.append("head_bucket")
        if self.head_bucket_error is not None:
            raise self.head_bucket_error
        return {}

    def create_bucket(self, **kwargs):
        self.calls.append("create_bucket")
        self.created_buckets.append(kwargs)
        return {}


class ChunkStream:
    """
    Scripted MediaStream.

    Serves the given chunks one per read(), then optionally raises
    `error` or blocks forever (until cancelled) instead of ending.
    """

    def __init__(
        self,
        chunks: list[bytes],
        error: Optional[Exception] = None,
        block_at_end: bool = False,
    ) -> None:
        self._chunks = list(chunks)
        self._error = error
        self._block_at_end = block_at_end
        self.blocked = asyncio.Event()
        self.closed = False
        self.reads = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if self._chunks:
            chunk = self._chunks[0]
            if 0 <= size < len(chunk):
                self._chunks[0] = chunk[size:]
                return chunk[:size]
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        if self._block_at_end:
            self.blocked.set()
            await asyncio.Event().wait()
        return b""

    async def aclose(self) -> None:
        self.closed = True


class FailingByteStream(httpx.AsyncByteStream):
    """Response body that drops the connection after the first chunk."""

    def __init__(self, first_chunk: bytes) -> None:
        self._first_chunk = first_chunk

    async def __aiter__(self):
        yield self._first_chunk
        raise httpx.ReadError("connection reset")

    async def aclose(self) -> None:
        pass


@pytest.fixture
def media_key() -> bytes:
    """A random 32-byte media key, as WhatsApp issues them."""
    return os.urandom(32)


@pytest.fixture
def media_key_b64(media_key) -> str:
    return base64.b64encode(media_key).decode("ascii")


@pytest.fixture
def plaintext() -> bytes:
    """A few KB of fake JPEG data, not block aligned."""
    return b"\xff\xd8\xff\xe0" + os.urandom(5000) + b"\xff\xd9"


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def cdn_client():
    """
    Build an httpx.AsyncClient whose transport serves one CDN response.

    Usage: client, seen = cdn_client(httpx.Response(200, content=...))
    `seen` collects the requests that reached the transport.
    """
    def build(response_or_error):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if isinstance(response_or_error, Exception):
                raise response_or_error
            return response_or_error

        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen

    return build
