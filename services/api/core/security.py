"""
Token and PIN helpers for public links and the approval flow.
"""
import secrets

from werkzeug.security import check_password_hash, generate_password_hash

TOKEN_BYTES = 24  # -> 32 url-safe characters
PIN_DIGITS = 6


def generate_token() -> str:
    """High-entropy, URL-safe token for feedback links and approval requests."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_pin() -> str:
    """6-digit numeric PIN, zero-padding never needed (100000..999999)."""
    return str(100000 + secrets.randbelow(900000))


def hash_pin(pin: str) -> str:
    return generate_password_hash(pin, method="pbkdf2:sha256", salt_length=16)


def verify_pin(pin_hash: str, candidate: object) -> bool:
    """
    Compare a supplied PIN against the stored salted hash.
    check_password_hash compares digests in constant time.
    """
    if not isinstance(candidate, str):
        candidate = "" if candidate is None else str(candidate)
    candidate = candidate.strip()
    if len(candidate) != PIN_DIGITS or not candidate.isdigit():
        return False
    return check_password_hash(pin_hash, candidate)
