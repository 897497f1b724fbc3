"""
WhatsApp CDN integration.

Downloads encrypted media and decrypts the WhatsApp media envelope
(HKDF-expanded keys, AES-256-CBC, truncated HMAC-SHA256) as a stream.
"""

from .envelope import EnvelopeDecryptor, MediaKeys, expand_media_key, hkdf_info
from .media import (
    DecryptedMediaStream,
    WhatsAppMediaSource,
    create_http_client,
)

__all__ = [
    "EnvelopeDecryptor",
    "MediaKeys",
    "expand_media_key",
    "hkdf_info",
    "DecryptedMediaStream",
    "WhatsAppMediaSource",
    "create_http_client",
]
