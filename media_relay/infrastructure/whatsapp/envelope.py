"""
WhatsApp media envelope.

Encrypted media on the WhatsApp CDN is laid out as:

    AES-256-CBC(plaintext, PKCS7)  ||  MAC (10 bytes)

The 32-byte media key from the message is expanded with HKDF-SHA256 into
112 bytes, of which the first 80 are used:

    [0:16]  IV
    [16:48] AES key
    [48:80] MAC key

The MAC is HMAC-SHA256(mac_key, iv || ciphertext), truncated to 10 bytes.
The HKDF info string depends on the media type ("WhatsApp Image Keys",
"WhatsApp Audio Keys", ...), so the same media key yields different
keys for an image and an audio note.

EnvelopeDecryptor works incrementally so a large video never has to sit
in memory: it holds back the last 10 bytes seen (they may be the MAC)
and feeds everything before them to the MAC and the cipher.
"""

from dataclasses import dataclass, field

from cryptography.hazmat.primitives import constant_time, hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ...core.relay.errors import DecryptionFailed

MAC_LENGTH = 10
EXPANDED_KEY_LENGTH = 112

# Media type -> HKDF info label. "imageMessage" style names are
# normalized to "image" before lookup.
HKDF_INFO_LABELS = {
    "image": "Image",
    "sticker": "Image",
    "product": "Image",
    "video": "Video",
    "gif": "Video",
    "ptv": "Video",
    "audio": "Audio",
    "ptt": "Audio",
    "document": "Document",
    "documentwithcaption": "Document",
    "thumbnail-image": "Image Thumbnail",
    "thumbnail-video": "Video Thumbnail",
    "thumbnail-document": "Document Thumbnail",
    "thumbnail-link": "Link Thumbnail",
    "md-msg-hist": "History",
    "md-app-state": "App State",
    "payment-bg-image": "Payment Background",
}


@dataclass(frozen=True)
class MediaKeys:
    """Keys expanded from a media key for one media type."""
    iv: bytes = field(repr=False)
    cipher_key: bytes = field(repr=False)
    mac_key: bytes = field(repr=False)


def normalize_media_type(media_type: str) -> str:
    """'imageMessage' -> 'image', 'documentWithCaptionMessage' -> 'documentwithcaption'."""
    name = media_type.strip()
    if name.endswith("Message"):
        name = name[: -len("Message")]
    return name.lower()


def hkdf_info(media_type: str) -> bytes:
    """Return the HKDF info string for a media type."""
    label = HKDF_INFO_LABELS.get(normalize_media_type(media_type))
    if label is None:
        raise DecryptionFailed(f"Unsupported media type: {media_type}")
    return f"WhatsApp {label} Keys".encode("ascii")


def expand_media_key(media_key: bytes, media_type: str) -> MediaKeys:
    """Expand a media key into IV, cipher key and MAC key."""
    expanded = HKDF(
        algorithm=hashes.SHA256(),
        length=EXPANDED_KEY_LENGTH,
        salt=None,
        info=hkdf_info(media_type),
    ).derive(media_key)

    return MediaKeys(
        iv=expanded[:16],
        cipher_key=expanded[16:48],
        mac_key=expanded[48:80],
    )


class EnvelopeDecryptor:
    """
    Incremental decrypt-and-verify for one encrypted media body.

    Call update() with each downloaded chunk and finalize() once the body
    ends. Plaintext from update() is unverified until finalize() returns;
    consumers must discard everything if finalize() raises.
    """

    def __init__(self, keys: MediaKeys) -> None:
        self._mac = hmac.HMAC(keys.mac_key, hashes.SHA256())
        self._mac.update(keys.iv)
        self._decryptor = Cipher(
            algorithms.AES(keys.cipher_key),
            modes.CBC(keys.iv),
        ).decryptor()
        self._unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        self._tail = b""

    def update(self, data: bytes) -> bytes:
        """Consume encrypted bytes, return whatever plaintext is ready."""
        buffered = self._tail + data
        if len(buffered) <= MAC_LENGTH:
            self._tail = buffered
            return b""

        body, self._tail = buffered[:-MAC_LENGTH], buffered[-MAC_LENGTH:]
        self._mac.update(body)
        return self._unpadder.update(self._decryptor.update(body))

    def finalize(self) -> bytes:
        """
        Verify the MAC and flush the remaining plaintext.

        Raises:
            DecryptionFailed: body shorter than the MAC, MAC mismatch,
                or ciphertext that is not valid padded AES-CBC
        """
        if len(self._tail) < MAC_LENGTH:
            raise DecryptionFailed("Encrypted media is shorter than its MAC")

        expected = self._mac.finalize()[:MAC_LENGTH]
        if not constant_time.bytes_eq(expected, self._tail):
            raise DecryptionFailed("Media MAC mismatch")

        try:
            remaining = self._decryptor.finalize()
            return self._unpadder.update(remaining) + self._unpadder.finalize()
        except ValueError:
            raise DecryptionFailed("Malformed ciphertext")
