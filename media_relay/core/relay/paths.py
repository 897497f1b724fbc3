"""
Object key construction.

Object keys are built from caller-supplied identity fields, so every
segment is treated as untrusted. Path structure:

    {folder_name}/{instance_id}/{remote_jid}/{media_type}/{epoch_ms}.{ext}

Grouping by instance and contact keeps one account's media under a
single prefix, which makes listing and cleanup a prefix operation.
"""

import mimetypes
import re
import time
from typing import Callable

from .errors import InvalidObjectKey

Clock = Callable[[], float]

_SLASH_RUN = re.compile(r"/+")
_DISALLOWED = re.compile(r"[^A-Za-z0-9\-_./]")

# mimetypes picks odd or platform-dependent extensions for several
# WhatsApp media types (.jpe, .oga, nothing for webp on older Pythons).
_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/aac": "aac",
    "audio/amr": "amr",
    "application/pdf": "pdf",
}


def _sanitize_segment(segment: str) -> str:
    cleaned = _DISALLOWED.sub("", segment)

    # Stripping can glue dots back together (".@." -> ".."), so loop.
    while ".." in cleaned:
        cleaned = cleaned.replace("..", "")

    cleaned = _SLASH_RUN.sub("/", cleaned).strip("/")
    if not cleaned or "." in cleaned.split("/"):
        raise InvalidObjectKey("Path segment is empty after sanitizing")
    return cleaned


def build_object_key(*segments: str) -> str:
    """
    Join segments into a sanitized storage key.

    Each segment is sanitized on its own, in order:
    - any segment containing '..' is rejected outright
    - characters outside [A-Za-z0-9-_./] are dropped
    - '..' left over after dropping characters is removed until none remain
    - slash runs collapse to one and leading/trailing slashes are trimmed

    A segment that ends up empty or as '.' is rejected, so every key keeps
    one path level per segment.

    Raises:
        InvalidObjectKey: a segment contains '..' or nothing usable survives
    """
    for segment in segments:
        if ".." in segment:
            raise InvalidObjectKey("Path segment contains a traversal sequence")

    if not segments:
        raise InvalidObjectKey("Object key needs at least one segment")
    return "/".join(_sanitize_segment(segment) for segment in segments)


def extension_for_mime(mime_type: str) -> str:
    """Return a file extension (without dot) for a MIME type, 'bin' if unknown."""
    base = mime_type.split(";", 1)[0].strip().lower()
    if base in _EXTENSIONS:
        return _EXTENSIONS[base]

    guessed = mimetypes.guess_extension(base)
    if guessed:
        return guessed.lstrip(".")
    return "bin"


def build_file_name(mime_type: str, clock: Clock = time.time) -> str:
    """Generate '<epoch milliseconds>.<ext>' for a newly stored object."""
    return f"{int(clock() * 1000)}.{extension_for_mime(mime_type)}"
