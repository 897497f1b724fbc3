"""
Unit tests for the WhatsApp media envelope and the decrypting source.

Fixtures are encrypted with the real envelope algorithm (see conftest),
so a passing round trip means we decrypt what WhatsApp clients upload.
The CDN is replaced by httpx.MockTransport; no network access.
"""

import httpx
import pytest

from media_relay.core.relay.errors import DecryptionFailed, FetchFailed, InvalidSourceUrl
from media_relay.core.relay.keys import derive_key_material
from media_relay.core.relay.models import DerivedKeyMaterial
from media_relay.infrastructure.whatsapp.envelope import (
    EnvelopeDecryptor,
    expand_media_key,
    hkdf_info,
)
from media_relay.infrastructure.whatsapp.media import WhatsAppMediaSource

from conftest import CDN_HOST, FailingByteStream, encrypt_media

SOURCE_URL = f"{CDN_HOST}/v/t62.7118-24/abc.enc?ccb=11-4&oh=01_xyz"


def _decrypt_in_chunks(encrypted: bytes, keys, chunk_size: int) -> bytes:
    decryptor = EnvelopeDecryptor(keys)
    out = b""
    for start in range(0, len(encrypted), chunk_size):
        out += decryptor.update(encrypted[start:start + chunk_size])
    return out + decryptor.finalize()


# ---------------------------------------------------------------------------
# Envelope Tests
# ---------------------------------------------------------------------------

class TestHkdfInfo:
    """Tests for media type -> HKDF info mapping."""

    @pytest.mark.parametrize("media_type,info", [
        ("image", b"WhatsApp Image Keys"),
        ("imageMessage", b"WhatsApp Image Keys"),
        ("stickerMessage", b"WhatsApp Image Keys"),
        ("videoMessage", b"WhatsApp Video Keys"),
        ("audioMessage", b"WhatsApp Audio Keys"),
        ("ptt", b"WhatsApp Audio Keys"),
        ("documentMessage", b"WhatsApp Document Keys"),
        ("documentWithCaptionMessage", b"WhatsApp Document Keys"),
    ])
    def test_known_types(self, media_type, info):
        assert hkdf_info(media_type) == info

    def test_unknown_type_fails_decryption(self):
        with pytest.raises(DecryptionFailed):
            hkdf_info("hologramMessage")


class TestEnvelopeDecryptor:
    """Tests for incremental decrypt-and-verify."""

    @pytest.mark.parametrize("chunk_size", [1, 7, 10, 16, 4096, 1 << 20])
    def test_round_trip_any_chunking(self, media_key, plaintext, chunk_size):
        """Chunk boundaries (even inside the MAC) do not change the output."""
        encrypted = encrypt_media(plaintext, media_key, "image")
        keys = expand_media_key(media_key, "image")

        assert _decrypt_in_chunks(encrypted, keys, chunk_size) == plaintext

    def test_empty_plaintext_round_trip(self, media_key):
        encrypted = encrypt_media(b"", media_key, "audio")
        keys = expand_media_key(media_key, "audio")

        assert _decrypt_in_chunks(encrypted, keys, 8) == b""

    def test_tampered_mac_is_rejected(self, media_key, plaintext):
        encrypted = bytearray(encrypt_media(plaintext, media_key, "image"))
        encrypted[-1] ^= 0x01
        keys = expand_media_key(media_key, "image")

        with pytest.raises(DecryptionFailed):
            _decrypt_in_chunks(bytes(encrypted), keys, 1024)

    def test_tampered_ciphertext_is_rejected(self, media_key, plaintext):
        encrypted = bytearray(encrypt_media(plaintext, media_key, "image"))
        encrypted[100] ^= 0xFF
        keys = expand_media_key(media_key, "image")

        with pytest.raises(DecryptionFailed):
            _decrypt_in_chunks(bytes(encrypted), keys, 1024)

    def test_wrong_media_type_is_rejected(self, media_key, plaintext):
        """Keys for 'audio' cannot verify media encrypted as 'image'."""
        encrypted = encrypt_media(plaintext, media_key, "image")
        keys = expand_media_key(media_key, "audio")

        with pytest.raises(DecryptionFailed):
            _decrypt_in_chunks(encrypted, keys, 1024)

    def test_body_shorter_than_mac_is_rejected(self, media_key):
        keys = expand_media_key(media_key, "image")
        decryptor = EnvelopeDecryptor(keys)
        decryptor.update(b"short")

        with pytest.raises(DecryptionFailed):
            decryptor.finalize()


# ---------------------------------------------------------------------------
# Media Source Tests
# ---------------------------------------------------------------------------

class TestWhatsAppMediaSource:
    """Tests for downloading and decrypting through httpx."""

    @pytest.mark.asyncio
    async def test_open_stream_round_trip(self, cdn_client, media_key, media_key_b64, plaintext):
        """Reading the stream to the end reproduces the original bytes."""
        encrypted = encrypt_media(plaintext, media_key, "imageMessage")
        client, seen = cdn_client(httpx.Response(200, content=encrypted))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST, chunk_size=333)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        stream = await source.open_stream(material.direct_path, material, "image/jpeg", "imageMessage")
        received = b""
        while True:
            chunk = await stream.read(1000)
            assert len(chunk) <= 1000
            if not chunk:
                break
            received += chunk

        assert received == plaintext
        assert stream.closed
        assert str(seen[0].url) == SOURCE_URL
        assert seen[0].headers["Origin"] == "https://web.whatsapp.com"

    @pytest.mark.asyncio
    async def test_read_all(self, cdn_client, media_key, media_key_b64, plaintext):
        encrypted = encrypt_media(plaintext, media_key, "video")
        client, _ = cdn_client(httpx.Response(200, content=encrypted))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        async with await source.open_stream(material.direct_path, material, "video/mp4", "video") as stream:
            assert await stream.read() == plaintext
            assert await stream.read(10) == b""

    @pytest.mark.asyncio
    async def test_foreign_host_is_rebuilt_from_direct_path(self, cdn_client, media_key, media_key_b64, plaintext):
        """Only the media host is contacted, whatever host the caller sent."""
        encrypted = encrypt_media(plaintext, media_key, "image")
        client, seen = cdn_client(httpx.Response(200, content=encrypted))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material("https://evil.example/v/t62/abc.enc?x=1", media_key_b64)

        stream = await source.open_stream(material.direct_path, material, "image/jpeg", "image")
        await stream.aclose()

        assert str(seen[0].url) == f"{CDN_HOST}/v/t62/abc.enc?x=1"

    @pytest.mark.asyncio
    async def test_http_error_status_is_fetch_failure(self, cdn_client, media_key_b64):
        client, _ = cdn_client(httpx.Response(404, content=b"gone"))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        with pytest.raises(FetchFailed):
            await source.open_stream(material.direct_path, material, "image/jpeg", "image")

    @pytest.mark.asyncio
    async def test_connection_error_is_fetch_failure(self, cdn_client, media_key_b64):
        client, _ = cdn_client(httpx.ConnectError("no route to host"))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        with pytest.raises(FetchFailed) as exc_info:
            await source.open_stream(material.direct_path, material, "image/jpeg", "image")

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_unsendable_url_is_invalid_source_url(self, cdn_client, media_key):
        """A locator httpx cannot put on the wire fails before any request."""
        client, seen = cdn_client(httpx.Response(200, content=b""))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = DerivedKeyMaterial(
            iv=bytes(16),
            enc_iv=media_key[:16],
            key=media_key,
            mac_key=media_key[16:],
            direct_path="/v/abc\x01def.enc",
            url="https://other.example/v/abc\x01def.enc",
        )

        with pytest.raises(InvalidSourceUrl) as exc_info:
            await source.open_stream(material.direct_path, material, "image/jpeg", "image")

        assert isinstance(exc_info.value.__cause__, httpx.InvalidURL)
        assert seen == []

    @pytest.mark.asyncio
    async def test_connection_drop_mid_stream_is_fetch_failure(self, cdn_client, media_key, media_key_b64, plaintext):
        encrypted = encrypt_media(plaintext, media_key, "image")
        client, _ = cdn_client(httpx.Response(200, stream=FailingByteStream(encrypted[:2048])))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        stream = await source.open_stream(material.direct_path, material, "image/jpeg", "image")
        with pytest.raises(FetchFailed):
            await stream.read()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_tampered_payload_fails_at_end_of_stream(self, cdn_client, media_key, media_key_b64, plaintext):
        """MAC is only known at the end; the failure surfaces on the last read."""
        encrypted = bytearray(encrypt_media(plaintext, media_key, "image"))
        encrypted[-3] ^= 0x10
        client, _ = cdn_client(httpx.Response(200, content=bytes(encrypted)))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        stream = await source.open_stream(material.direct_path, material, "image/jpeg", "image")
        with pytest.raises(DecryptionFailed):
            await stream.read()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_unknown_media_type_fails_before_download(self, cdn_client, media_key_b64):
        client, seen = cdn_client(httpx.Response(200, content=b""))
        source = WhatsAppMediaSource(client, media_host=CDN_HOST)
        material = derive_key_material(SOURCE_URL, media_key_b64)

        with pytest.raises(DecryptionFailed):
            await source.open_stream(material.direct_path, material, "x/y", "hologram")

        assert seen == []
