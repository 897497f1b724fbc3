"""
Decryption parameter derivation.

Turns the caller's base64 media key and source URL into the key material
the media source needs. No I/O happens here; this runs before any
connection is opened so bad input fails cheaply.
"""

import base64
import binascii
import re
from urllib.parse import urlsplit

from .errors import InvalidKeyMaterial, InvalidSourceUrl
from .models import DerivedKeyMaterial

MIN_MEDIA_KEY_BYTES = 16

# The media envelope always starts from an all-zero IV.
ZERO_IV = bytes(16)

# httpx refuses to build a request for URLs carrying these.
_NON_PRINTABLE = re.compile(r"[\x00-\x1f\x7f]")


def decode_media_key(media_key_b64: str) -> bytes:
    """Decode a base64 media key, rejecting anything shorter than 16 bytes."""
    try:
        media_key = base64.b64decode(media_key_b64.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidKeyMaterial("Media key is not valid base64")

    if len(media_key) < MIN_MEDIA_KEY_BYTES:
        raise InvalidKeyMaterial(
            f"Media key must decode to at least {MIN_MEDIA_KEY_BYTES} bytes"
        )
    return media_key


def direct_path_from_url(source_url: str) -> str:
    """
    Extract the CDN direct path (path plus query) from a source URL.

    Raises:
        InvalidSourceUrl: not an absolute http(s) URL with a host, or it
            contains control characters
    """
    if _NON_PRINTABLE.search(source_url.strip()):
        raise InvalidSourceUrl("Source URL contains non-printable characters")

    try:
        parts = urlsplit(source_url.strip())
    except ValueError:
        raise InvalidSourceUrl("Source URL could not be parsed")

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidSourceUrl("Source URL must be an absolute http(s) URL")

    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    return path


def derive_key_material(source_url: str, media_key_b64: str) -> DerivedKeyMaterial:
    """
    Derive key material for one media object.

    A 16-byte key is accepted and yields an empty mac_key. The split is
    kept exactly as the envelope defines it: enc_iv is the first 16 bytes,
    mac_key is everything after.
    """
    media_key = decode_media_key(media_key_b64)
    direct_path = direct_path_from_url(source_url)

    return DerivedKeyMaterial(
        iv=ZERO_IV,
        enc_iv=media_key[:16],
        key=media_key,
        mac_key=media_key[16:],
        direct_path=direct_path,
        url=source_url.strip(),
    )
