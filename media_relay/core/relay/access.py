"""
Signed access URLs for stored media.

Thin wrapper over the storage backend's presigning. Keeps no state, so
one issuer can be shared by any number of concurrent requests.
"""

import logging
from typing import Optional, Protocol

from .errors import InvalidTTL, RelayError, SigningFailed

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600

# SigV4 presigned URLs cannot outlive seven days.
MAX_TTL_SECONDS = 7 * 24 * 3600


class UrlSigner(Protocol):
    """Anything that can presign a GET for an object key."""

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        ...


def validate_ttl(ttl_seconds: object) -> int:
    """Return ttl_seconds if it is a usable lifetime, else raise InvalidTTL."""
    # bool is an int subclass; True is not a lifetime.
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
        raise InvalidTTL("TTL must be an integer number of seconds")
    if ttl_seconds <= 0:
        raise InvalidTTL("TTL must be positive")
    if ttl_seconds > MAX_TTL_SECONDS:
        raise InvalidTTL(f"TTL cannot exceed {MAX_TTL_SECONDS} seconds")
    return ttl_seconds


class AccessUrlIssuer:
    """Issues time-limited download URLs for stored objects."""

    def __init__(
        self,
        signer: UrlSigner,
        default_ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._signer = signer
        self._default_ttl = default_ttl_seconds

    def resolve_ttl(self, ttl_seconds: Optional[int] = None) -> int:
        """Pick the explicit TTL or the configured default, validated."""
        if ttl_seconds is None:
            if self._default_ttl is None:
                raise InvalidTTL("No TTL given and no default configured")
            ttl_seconds = self._default_ttl
        return validate_ttl(ttl_seconds)

    async def issue(self, object_key: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Presign a GET for object_key.

        Raises:
            InvalidTTL: lifetime missing, non-positive or too long
            SigningFailed: backend refused to sign
        """
        ttl = self.resolve_ttl(ttl_seconds)
        try:
            return await self._signer.get_presigned_url(object_key, expiry_seconds=ttl)
        except RelayError:
            raise
        except Exception as e:
            logger.error(
                "Failed to presign object URL",
                extra={"object_key": object_key, "error": str(e)}
            )
            raise SigningFailed(f"Presigned URL generation failed: {e}") from e
