# services/api/routers/public.py
"""
Public feedback-link routes (/f/{token}). No authentication: the token is
the credential, and every failure to resolve it is the same 404.
"""
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from adapters.base import StorageAdapter
from core.deps import get_storage
from core.errors import ForbiddenError, NotFoundError
from core.pins import render_pins_message
from core.validation import (
    coerce_comment_status,
    validate_click_position,
    validate_message,
    validate_page_url,
)
from models import Anchor, Comment, CommentStatus, FeedbackLink, Project, utc_now
from schemas import CommentCreate, CommentOut, StatusUpdate
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/f", tags=["feedback"])

Storage = Annotated[StorageAdapter, Depends(get_storage)]
AppSettings = Annotated[Settings, Depends(get_settings)]

LINK_NOT_FOUND = "Feedback link not found"


def resolve_link(storage: StorageAdapter, token: str) -> Project:
    """Project behind an active feedback token; missing and revoked look alike."""
    row = storage.get_feedback_link(token)
    if not row or not FeedbackLink.from_storage(row).is_active:
        raise NotFoundError(LINK_NOT_FOUND)
    project_row = storage.get_project(row["project_id"])
    if not project_row:
        raise NotFoundError(LINK_NOT_FOUND)
    return Project.from_storage(project_row)


def _project_comment(storage: StorageAdapter, project: Project, comment_id: str) -> Comment:
    row = storage.get_comment(comment_id)
    if not row or row["project_id"] != project.id:
        raise NotFoundError("Comment not found")
    return Comment.from_storage(row)


@router.get("/{token}")
async def get_feedback_project(token: str, storage: Storage, settings: AppSettings):
    """
    Project summary for the review page. Never echoes the token.
    """
    project = resolve_link(storage, token)
    return {
        "project": {
            "id": project.id,
            "name": project.name,
            "baseUrl": project.base_url,
            "status": project.status.value,
        },
        "link": {"isActive": True},
        "embed": {
            "parentOrigin": settings.resolved_parent_origin(),
            "detectionTimeoutMs": settings.embed_detection_timeout_ms,
            "pathPollIntervalMs": settings.path_poll_interval_ms,
        },
    }


@router.get("/{token}/comments", response_model=List[CommentOut])
async def list_feedback_comments(
    token: str,
    storage: Storage,
    page_url: Optional[str] = Query(None, alias="pageUrl"),
):
    project = resolve_link(storage, token)
    if page_url is not None:
        validate_page_url(page_url)
    rows = storage.list_comments(project.id, page_url=page_url)
    return [Comment.from_storage(r).to_api() for r in rows]


@router.post("/{token}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_feedback_comment(token: str, body: CommentCreate, storage: Storage):
    """
    Client drops a pin. Approved projects are locked (403).
    """
    project = resolve_link(storage, token)
    if project.is_approved:
        raise ForbiddenError("Project is approved and locked")

    page_url = validate_page_url(body.page_url)
    validate_click_position(body.click_x, body.click_y)
    message = validate_message(body.message)

    anchor = None
    if body.anchor is not None:
        anchor = Anchor(
            selector=body.anchor.selector,
            offset_x_pct=body.anchor.offset_x_pct,
            offset_y_pct=body.anchor.offset_y_pct,
            tag_name=body.anchor.tag_name,
        )

    comment = Comment(
        project_id=project.id,
        page_url=page_url,
        message=message,
        click_x=body.click_x,
        click_y=body.click_y,
        anchor=anchor,
        screenshot_url=body.screenshot_url,
        created_at=utc_now(),
    )
    row = storage.create_comment(comment.to_storage())
    logger.info(f"Comment {comment.comment_id} added to project {project.id} on {page_url}")
    return Comment.from_storage(row).to_api()


@router.patch("/{token}/comments/{comment_id}/status", response_model=CommentOut)
async def update_feedback_comment_status(token: str, comment_id: str, body: StatusUpdate, storage: Storage):
    """
    Client marks a comment resolved. Reopening is the agency's call (403).
    """
    project = resolve_link(storage, token)
    new_status = coerce_comment_status(body.status)
    comment = _project_comment(storage, project, comment_id)

    if new_status != CommentStatus.RESOLVED.value:
        raise ForbiddenError("Only the agency can reopen a comment")
    if comment.status == CommentStatus.RESOLVED:
        return comment.to_api()

    updated = storage.update_comment_status(comment.comment_id, new_status)
    if not updated:
        raise NotFoundError("Comment not found")
    logger.info(f"Comment {comment_id} resolved via feedback link")
    return Comment.from_storage(updated).to_api()


@router.get("/{token}/render-pins")
async def get_render_pins(
    token: str,
    storage: Storage,
    page_url: str = Query("/", alias="pageUrl"),
    status_filter: str = Query("OPEN", alias="status"),
    active_id: Optional[str] = Query(None, alias="activeId"),
) -> Dict[str, Any]:
    """
    Ready-to-post render-pins message for one page, pins numbered 1..n
    in creation order.
    """
    project = resolve_link(storage, token)
    page_url = validate_page_url(page_url)
    wanted = CommentStatus(coerce_comment_status(status_filter))
    rows = storage.list_comments(project.id, page_url=page_url)
    comments = [Comment.from_storage(r) for r in rows]
    return render_pins_message(comments, page_url, wanted, active_id).to_wire()
