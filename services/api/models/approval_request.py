# services/api/models/approval_request.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from . import ProjectStatus


class RequestState(str, Enum):
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    SUPERSEDED = "SUPERSEDED"
    EXPIRED = "EXPIRED"


class RequestEvent(str, Enum):
    CONFIRM = "CONFIRM"
    SUPERSEDE = "SUPERSEDE"
    EXPIRE = "EXPIRE"


class ProjectEvent(str, Enum):
    APPROVE = "APPROVE"


# Every legal transition. Anything missing is rejected.
REQUEST_TRANSITIONS: Dict[tuple, RequestState] = {
    (RequestState.ACTIVE, RequestEvent.CONFIRM): RequestState.CONSUMED,
    (RequestState.ACTIVE, RequestEvent.SUPERSEDE): RequestState.SUPERSEDED,
    (RequestState.ACTIVE, RequestEvent.EXPIRE): RequestState.EXPIRED,
}

PROJECT_TRANSITIONS: Dict[tuple, ProjectStatus] = {
    (ProjectStatus.IN_REVIEW, ProjectEvent.APPROVE): ProjectStatus.APPROVED,
}


def next_request_state(state: RequestState, event: RequestEvent) -> Optional[RequestState]:
    return REQUEST_TRANSITIONS.get((state, event))


def next_project_status(status: ProjectStatus, event: ProjectEvent) -> Optional[ProjectStatus]:
    return PROJECT_TRANSITIONS.get((status, event))


@dataclass
class ApprovalRequest:
    """
    One PIN-over-email approval attempt for a project.

    Only used_at (plus the reason it was set) is persisted; the state is
    derived so that natural expiry needs no write.
    """
    id: str
    project_id: str
    email: str
    token: str
    pin_hash: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    used_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def state(self, now: datetime) -> RequestState:
        if self.used_at is not None:
            if self.used_reason == RequestState.CONSUMED.value:
                return RequestState.CONSUMED
            return RequestState.SUPERSEDED
        if now > self.expires_at:
            return RequestState.EXPIRED
        return RequestState.ACTIVE

    def is_usable(self, now: datetime) -> bool:
        return self.state(now) == RequestState.ACTIVE

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "ApprovalRequest":
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            email=row["email"],
            token=row["token"],
            pin_hash=row["pin_hash"],
            expires_at=row["expires_at"],
            used_at=row.get("used_at"),
            used_reason=row.get("used_reason"),
            created_at=row.get("created_at"),
        )
