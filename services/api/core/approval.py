"""
Approval state machine.

Project:          IN_REVIEW --APPROVE--> APPROVED (terminal)
ApprovalRequest:  ACTIVE --CONFIRM--> CONSUMED
                  ACTIVE --SUPERSEDE--> SUPERSEDED
                  ACTIVE --EXPIRE--> EXPIRED (derived from expires_at, never written)

Each public method is one named operation. "Already approved" always
short-circuits before token usability checks, so approval stays viewable
and re-confirmable as success after its token dies.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from adapters.base import StorageAdapter
from core import security
from core.errors import (
    ConflictError,
    EmailDeliveryError,
    InvalidPinError,
    InvariantViolation,
    NotFoundError,
    TooManyAttemptsError,
)
from core.validation import validate_email
from models import (
    ApprovalRequest,
    Project,
    ProjectEvent,
    RequestEvent,
    RequestState,
    next_project_status,
    next_request_state,
    utc_now,
)

logger = logging.getLogger(__name__)

# Awaitable[bool] factory: (to_email, project_name, approval_url, pin) -> sent?
EmailSender = Callable[[str, str, str, str], Any]


@dataclass
class ApprovalRequested:
    approval_url: str
    expires_at: datetime
    # Only populated by the no-transport development fallback
    dev_pin: Optional[str] = None


class PinAttemptTracker:
    """
    Counts failed PIN confirmations per token inside a sliding TTL window.
    """

    def __init__(self, max_attempts: int, window_seconds: int, maxsize: int = 10_000):
        self.max_attempts = max_attempts
        self._failures: TTLCache = TTLCache(maxsize=maxsize, ttl=window_seconds)

    def check(self, token: str) -> None:
        if self._failures.get(token, 0) >= self.max_attempts:
            raise TooManyAttemptsError()

    def record_failure(self, token: str) -> int:
        count = self._failures.get(token, 0) + 1
        self._failures[token] = count
        return count

    def reset(self, token: str) -> None:
        self._failures.pop(token, None)


class ApprovalService:
    def __init__(
        self,
        storage: StorageAdapter,
        *,
        web_base_url: str,
        token_ttl: timedelta = timedelta(hours=24),
        send_email: Optional[EmailSender] = None,
        dev_fallback: bool = False,
        attempts: Optional[PinAttemptTracker] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.web_base_url = web_base_url.rstrip("/")
        self.token_ttl = token_ttl
        self.send_email = send_email
        self.dev_fallback = dev_fallback
        self.attempts = attempts or PinAttemptTracker(max_attempts=5, window_seconds=900)
        self.clock = clock

    # ---------- helpers ----------

    def approval_url(self, token: str) -> str:
        return f"{self.web_base_url}/approve/{token}"

    def _load(self, token: str) -> tuple[ApprovalRequest, Project]:
        row = self.storage.get_approval_request_by_token(token) if token else None
        if not row:
            raise NotFoundError()
        request = ApprovalRequest.from_storage(row)
        project_row = self.storage.get_project(request.project_id)
        if not project_row:
            raise NotFoundError()
        return request, Project.from_storage(project_row)

    # ---------- operations ----------

    async def request_approval(self, project_id: str, owner_id: str, recipient_email: Optional[str]) -> ApprovalRequested:
        """
        Supersede live requests, issue a new token + PIN, email them.

        Raises:
            ValidationError (no/invalid recipient), NotFoundError (not owner),
            ConflictError (already approved), EmailDeliveryError (send failed)
        """
        email = validate_email(recipient_email)

        project_row = self.storage.get_owned_project(project_id, owner_id)
        if not project_row:
            raise NotFoundError("Project not found")
        project = Project.from_storage(project_row)

        if next_project_status(project.status, ProjectEvent.APPROVE) is None:
            raise ConflictError("Project is already approved")

        token = security.generate_token()
        pin = security.generate_pin()
        now = self.clock()
        expires_at = now + self.token_ttl

        self.storage.create_approval_request(
            project_id=project.id,
            email=email,
            token=token,
            pin_hash=security.hash_pin(pin),
            expires_at=expires_at,
            now=now,
        )
        logger.info(f"Approval requested for project {project.id} (expires {expires_at.isoformat()})")

        url = self.approval_url(token)

        if self.send_email is None:
            if self.dev_fallback:
                logger.warning(
                    f"No email transport configured; returning approval PIN for project {project.id} directly (development only)"
                )
                return ApprovalRequested(approval_url=url, expires_at=expires_at, dev_pin=pin)
            raise EmailDeliveryError()

        sent = await self.send_email(email, project.name, url, pin)
        if not sent:
            logger.error(f"Approval email for project {project.id} could not be delivered")
            raise EmailDeliveryError()

        return ApprovalRequested(approval_url=url, expires_at=expires_at)

    def get_approval_info(self, token: str) -> Dict[str, Any]:
        """
        Public view of an approval link.

        Dead tokens (expired, consumed, superseded) look exactly like
        missing ones, unless the project is already approved.
        """
        request, project = self._load(token)
        now = self.clock()

        if not project.is_approved and not request.is_usable(now):
            raise NotFoundError()

        comment_token = None
        link = self.storage.get_feedback_link_for_project(project.id)
        if link and link.get("is_active"):
            comment_token = link["token"]

        info = project.to_api()
        return {
            "project": {
                "id": info["id"],
                "name": info["name"],
                "baseUrl": info["baseUrl"],
                "status": info["status"],
                "approvedAt": info["approvedAt"],
            },
            "request": {
                "email": request.email,
                "expiresAt": request.expires_at.isoformat() + "Z",
                "state": request.state(now).value,
            },
            "commentToken": comment_token,
        }

    def confirm_approval(self, token: str, supplied_pin: Any) -> Dict[str, Any]:
        """
        Verify the PIN and approve the project atomically.

        Returns {"ok": True} on the transition and on every later retry.

        Raises:
            NotFoundError (absent/dead token), InvalidPinError (wrong PIN),
            TooManyAttemptsError (PIN guessing)
        """
        request, project = self._load(token)

        if project.is_approved:
            return {"ok": True}

        now = self.clock()
        if next_request_state(request.state(now), RequestEvent.CONFIRM) is None:
            raise NotFoundError()

        self.attempts.check(token)
        if not security.verify_pin(request.pin_hash, supplied_pin):
            failures = self.attempts.record_failure(token)
            logger.warning(f"Invalid approval PIN for project {project.id} ({failures} failed attempt(s))")
            raise InvalidPinError()

        if self.storage.approve_project(project_id=project.id, request_id=request.id, now=now):
            self.attempts.reset(token)
            logger.info(f"Project {project.id} approved via request {request.id}")
            return {"ok": True}

        # Lost a race: re-read and settle against whatever the winner wrote.
        request, project = self._load(token)
        if project.is_approved:
            return {"ok": True}
        if request.state(self.clock()) != RequestState.ACTIVE:
            raise NotFoundError()
        raise InvariantViolation(
            f"approve_project wrote nothing for project {project.id} although request {request.id} is still active"
        )

