"""
Decrypting media source for the WhatsApp CDN.

Downloads encrypted media with a streamed httpx request and decrypts it
chunk by chunk as the consumer pulls. Nothing here buffers the whole
object: at most one network chunk plus one read() request worth of
plaintext is held at a time.

Two failure classes are kept apart on purpose:
- FetchFailed: connection, timeout or HTTP status problems (retryable)
- DecryptionFailed: wrong key or tampered payload (never retryable)
"""

import logging

import httpx

from ...core.relay.errors import FetchFailed, InvalidSourceUrl
from ...core.relay.models import DerivedKeyMaterial
from .envelope import EnvelopeDecryptor, expand_media_key

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_HOST = "https://mmg.whatsapp.net"
DEFAULT_CHUNK_SIZE = 64 * 1024

# The CDN rejects requests without a web client origin.
REQUEST_HEADERS = {"Origin": "https://web.whatsapp.com"}


class DecryptedMediaStream:
    """
    Pull-based plaintext stream over one streamed HTTP response.

    read(size) returns up to size bytes, or b"" at the end. The response
    is closed automatically once the body is exhausted or a read fails,
    and aclose() can be called at any time to drop the connection early.
    Not restartable: open a new stream to read the media again.
    """

    def __init__(
        self,
        response: httpx.Response,
        decryptor: EnvelopeDecryptor,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._response = response
        self._decryptor = decryptor
        self._chunks = response.aiter_bytes(chunk_size)
        self._buffer = bytearray()
        self._exhausted = False
        self._closed = False
        self.bytes_received = 0

    async def read(self, size: int = -1) -> bytes:
        """Return up to size plaintext bytes (all remaining if size < 0)."""
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            await self._fill()

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data

    async def _fill(self) -> None:
        try:
            chunk = await anext(self._chunks)
        except StopAsyncIteration:
            self._exhausted = True
            await self.aclose()
            self._buffer += self._decryptor.finalize()
            return
        except httpx.HTTPError as e:
            self._exhausted = True
            await self.aclose()
            raise FetchFailed(f"Media download interrupted: {type(e).__name__}") from e

        self.bytes_received += len(chunk)
        self._buffer += self._decryptor.update(chunk)

    async def aclose(self) -> None:
        """Release the HTTP connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "DecryptedMediaStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class WhatsAppMediaSource:
    """
    Opens decrypted streams for media hosted on the WhatsApp CDN.

    The httpx client is shared and owned by the caller (the application
    lifespan); this class never closes it.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        media_host: str = DEFAULT_MEDIA_HOST,
        timeout_seconds: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._client = http_client
        self._media_host = media_host.rstrip("/")
        self._timeout = timeout_seconds
        self._chunk_size = chunk_size

    def resolve_download_url(self, locator: str, material: DerivedKeyMaterial) -> str:
        """
        Pick the URL to download from.

        The caller's URL is used as-is when it already points at the media
        host (it may carry signed query parameters); anything else is
        rebuilt from the direct path so requests only ever go to the CDN.
        """
        if material.url.startswith(self._media_host + "/"):
            return material.url
        return f"{self._media_host}{locator}"

    async def open_stream(
        self,
        locator: str,
        material: DerivedKeyMaterial,
        mime_type: str,
        media_type: str,
    ) -> DecryptedMediaStream:
        """
        Start the download and return a stream of decrypted bytes.

        Returns once response headers arrive; the body is pulled lazily.

        Raises:
            DecryptionFailed: media type has no known key derivation
            InvalidSourceUrl: download URL cannot be put on the wire
            FetchFailed: connection error, timeout or non-2xx status
        """
        keys = expand_media_key(material.key, media_type)
        url = self.resolve_download_url(locator, material)

        try:
            request = self._client.build_request(
                "GET",
                url,
                headers=REQUEST_HEADERS,
                timeout=self._timeout,
            )
        except httpx.InvalidURL as e:
            raise InvalidSourceUrl(f"Download URL rejected: {e}") from e

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(
                "Failed to reach media host",
                extra={"direct_path": locator.split("?", 1)[0], "error": type(e).__name__}
            )
            raise FetchFailed(f"Media download failed: {type(e).__name__}") from e

        if not response.is_success:
            await response.aclose()
            logger.error(
                "Media host rejected download",
                extra={
                    "direct_path": locator.split("?", 1)[0],
                    "status_code": response.status_code,
                }
            )
            raise FetchFailed(f"Media host returned HTTP {response.status_code}")

        logger.debug(
            "Opened media stream",
            extra={
                "direct_path": locator.split("?", 1)[0],
                "mime_type": mime_type,
                "content_length": response.headers.get("content-length"),
            }
        )

        return DecryptedMediaStream(response, EnvelopeDecryptor(keys), self._chunk_size)


def create_http_client(timeout_seconds: float = 30.0) -> httpx.AsyncClient:
    """
    Create the process-wide HTTP client for media downloads.

    One client means one connection pool shared by every request; the
    application closes it on shutdown.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
    )
