"""
Validation utilities for Annota.
Ensures data integrity and provides clear error messages.
"""
from typing import Any, Optional
from urllib.parse import urlsplit

from core.errors import ValidationError

COMMENT_STATUSES = ("OPEN", "RESOLVED")


def normalize_base_url(raw: Optional[str]) -> str:
    """
    Validate and normalize a project's base URL.

    Rules:
    - scheme must be http or https (lowercased)
    - host is lowercased, port kept when present
    - path case is preserved, trailing slashes stripped
    - query and fragment are kept as given

    "HTTP://Example.com/Path/" -> "http://example.com/Path"

    Raises:
        ValidationError: 400 if the URL is missing or malformed
    """
    if not raw or not raw.strip():
        raise ValidationError("baseUrl is required")

    try:
        parts = urlsplit(raw.strip())
        port = parts.port
    except ValueError:
        raise ValidationError("Invalid URL format")

    scheme = (parts.scheme or "").lower()
    if scheme not in ("http", "https"):
        raise ValidationError("URL must start with http:// or https://")

    host = (parts.hostname or "").lower()
    if not host:
        raise ValidationError("Invalid URL format")

    if ":" in host:
        # urlsplit drops the brackets around IPv6 literals
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port else host
    path = parts.path.rstrip("/")
    url = f"{scheme}://{netloc}{path}"
    if parts.query:
        url += f"?{parts.query}"
    if parts.fragment:
        url += f"#{parts.fragment}"
    return url


def validate_page_url(page_url: Optional[str]) -> str:
    """Page paths are document paths and must start with '/'."""
    if not page_url or not page_url.startswith("/"):
        raise ValidationError("Invalid pageUrl (must start with /)")
    return page_url


def validate_click_position(click_x: Any, click_y: Any) -> None:
    """
    Click coordinates are document-space pixels and must be non-negative
    numbers. 0 is valid (top-left corner of the page).
    """
    for name, value in (("clickX", click_x), ("clickY", click_y)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number")
        if value != value or value < 0:  # NaN or negative
            raise ValidationError(f"{name} must be non-negative, got {value}")


def validate_message(message: Optional[str]) -> str:
    if message is None or not message.strip():
        raise ValidationError("Message is required")
    return message


def coerce_comment_status(value: Optional[str]) -> str:
    """
    Map a raw status to OPEN or RESOLVED.

    Raises:
        ValidationError: 400 for anything else
    """
    cleaned = (value or "").strip().upper()
    if cleaned not in COMMENT_STATUSES:
        raise ValidationError("Invalid status. Use OPEN or RESOLVED.")
    return cleaned


def validate_email(email: Optional[str]) -> str:
    cleaned = (email or "").strip()
    if not cleaned:
        raise ValidationError("Client email is required")
    if "@" not in cleaned or cleaned.startswith("@") or cleaned.endswith("@"):
        raise ValidationError(f"Invalid email address: {cleaned}")
    return cleaned
