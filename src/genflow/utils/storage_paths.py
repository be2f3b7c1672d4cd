# src/genflow/utils/storage_paths.py

from __future__ import annotations

import secrets
import time

# MIME subtype -> file extension where they differ
_EXTENSION_OVERRIDES = {
    "jpeg": "jpg",
    "svg+xml": "svg",
    "quicktime": "mov",
}


def extension_for_content_type(content_type: str) -> str:
    """``image/jpeg`` -> ``jpg``; unknown or malformed types fall back to ``jpg``."""
    media_type = (content_type or "").split(";")[0].strip().lower()
    if "/" not in media_type:
        return "jpg"
    subtype = media_type.split("/", 1)[1]
    if not subtype:
        return "jpg"
    return _EXTENSION_OVERRIDES.get(subtype, subtype)


def build_media_key(
    category: str,
    owner_id: str,
    content_type: str,
    timestamp_ms: int | None = None,
    random_suffix: str | None = None,
) -> str:
    """
    Object key for generated media:
    {category}/{owner_id}/{timestamp_ms}-{random_suffix}.{ext}
    """
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    random_suffix = random_suffix or secrets.token_hex(8)
    ext = extension_for_content_type(content_type)
    return f"{category}/{owner_id}/{timestamp_ms}-{random_suffix}.{ext}"
