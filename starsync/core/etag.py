"""ETag normalization helpers.

Stored ETags drop surrounding quotes but keep the weak ``W/`` marker so the
value can be re-quoted for ``If-None-Match`` without losing its strength.
"""

from __future__ import annotations


def sanitize_etag(value: str | None) -> str | None:
    """Normalize an ETag for storage: ``W/"abc"`` -> ``W/abc``, ``"abc"`` -> ``abc``."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    weak = text[:2].upper() == "W/"
    if weak:
        text = text[2:].strip()
    text = text.strip('"').strip()
    if not text:
        return None
    return f"W/{text}" if weak else text


def format_if_none_match(value: str | None) -> str | None:
    """Render a stored ETag back into ``If-None-Match`` header form."""
    clean = sanitize_etag(value)
    if clean is None:
        return None
    if clean.startswith("W/"):
        return f'W/"{clean[2:]}"'
    return f'"{clean}"'
