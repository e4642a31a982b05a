# services/api/core/deps.py
"""
FastAPI dependencies shared by all routers.

Tests override get_storage (in-memory engine) and get_settings.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Header

from adapters.base import StorageAdapter
from adapters.sqlite import SqliteAdapter
from core.approval import ApprovalService, PinAttemptTracker
from core.email_sender import send_approval_email
from core.errors import UnauthorizedError, ValidationError
from core.validation import validate_email
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

_storage_instance: Optional[StorageAdapter] = None
_attempts_instance: Optional[PinAttemptTracker] = None


def get_storage() -> StorageAdapter:
    """Singleton storage adapter built from settings.db_url."""
    global _storage_instance
    if _storage_instance is None:
        settings = get_settings()
        logger.info(f"Initializing storage: {settings.db_url.split('://')[0]}")
        _storage_instance = SqliteAdapter.from_url(settings.db_url)
        logger.info("✓ Storage adapter initialized")
    return _storage_instance


def get_attempt_tracker(settings: Settings = Depends(get_settings)) -> PinAttemptTracker:
    global _attempts_instance
    if _attempts_instance is None:
        _attempts_instance = PinAttemptTracker(
            max_attempts=settings.pin_max_attempts,
            window_seconds=settings.pin_attempt_window_seconds,
        )
    return _attempts_instance


def get_current_owner(
    x_owner_email: Optional[str] = Header(None),
    storage: StorageAdapter = Depends(get_storage),
) -> Dict[str, Any]:
    """
    The agency user behind the x-owner-email header, created on first sight.
    """
    if not x_owner_email or not x_owner_email.strip():
        raise UnauthorizedError()
    try:
        email = validate_email(x_owner_email)
    except ValidationError:
        raise UnauthorizedError("Invalid x-owner-email header")
    return storage.get_or_create_user(email)


def get_approval_service(
    storage: StorageAdapter = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    attempts: PinAttemptTracker = Depends(get_attempt_tracker),
) -> ApprovalService:
    send_email = None
    if settings.has_email_transport():

        async def send_email(to_email: str, project_name: str, approval_url: str, pin: str) -> bool:
            return await send_approval_email(settings, to_email, project_name, approval_url, pin)

    return ApprovalService(
        storage,
        web_base_url=settings.web_base_url,
        token_ttl=timedelta(hours=settings.approval_token_ttl_hours),
        send_email=send_email,
        dev_fallback=settings.is_development,
        attempts=attempts,
    )
