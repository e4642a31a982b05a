from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


def utc_now() -> datetime:
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.isoformat() + "Z"


class ProjectStatus(str, Enum):
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"


class CommentStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class Project(BaseModel):
    """
    Domain model for a row of the `projects` table.
    """
    id: str
    name: str
    base_url: str
    owner_id: str
    status: ProjectStatus = ProjectStatus.IN_REVIEW
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.status == ProjectStatus.APPROVED

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Project":
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            base_url=row["base_url"],
            owner_id=row["owner_id"],
            status=ProjectStatus(row.get("status") or ProjectStatus.IN_REVIEW.value),
            approved_at=row.get("approved_at"),
            created_at=row.get("created_at"),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "baseUrl": self.base_url,
            "status": self.status.value,
            "approvedAt": iso(self.approved_at),
            "createdAt": iso(self.created_at),
        }


class FeedbackLink(BaseModel):
    """
    Public, revocable token granting comment access to one project.
    """
    token: str
    project_id: str
    is_active: bool = True

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "FeedbackLink":
        return cls(
            token=row["token"],
            project_id=row["project_id"],
            is_active=bool(row.get("is_active")),
        )


from .comment import Anchor, Comment  # noqa: E402
from .approval_request import (  # noqa: E402
    ApprovalRequest,
    RequestEvent,
    RequestState,
    ProjectEvent,
    next_project_status,
    next_request_state,
)

__all__ = [
    "utc_now",
    "iso",
    "ProjectStatus",
    "CommentStatus",
    "Project",
    "FeedbackLink",
    "Anchor",
    "Comment",
    "ApprovalRequest",
    "RequestEvent",
    "RequestState",
    "ProjectEvent",
    "next_project_status",
    "next_request_state",
]
