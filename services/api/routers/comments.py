# services/api/routers/comments.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from adapters.base import StorageAdapter
from core.deps import get_current_owner, get_storage
from core.errors import NotFoundError
from core.validation import coerce_comment_status, validate_page_url
from models import Comment
from schemas import CommentOut, StatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/comments", tags=["comments"])

Storage = Annotated[StorageAdapter, Depends(get_storage)]
Owner = Annotated[Dict[str, Any], Depends(get_current_owner)]


@router.get("/projects/{project_id}", response_model=List[CommentOut])
async def list_project_comments(
    project_id: str,
    storage: Storage,
    owner: Owner,
    page_url: Optional[str] = Query(None, alias="pageUrl"),
    status: Optional[str] = Query(None),
):
    """
    All comments of an owned project, newest first.
    Optional filters: pageUrl (exact path), status (OPEN | RESOLVED).
    """
    if not storage.get_owned_project(project_id, owner["id"]):
        raise NotFoundError("Project not found")
    if page_url is not None:
        validate_page_url(page_url)
    if status is not None:
        status = coerce_comment_status(status)
    rows = storage.list_comments(project_id, page_url=page_url, status=status)
    return [Comment.from_storage(r).to_api() for r in rows]


@router.patch("/{comment_id}", response_model=CommentOut)
async def update_comment_status(comment_id: str, body: StatusUpdate, storage: Storage, owner: Owner):
    """
    Agency toggles a comment between OPEN and RESOLVED.
    Comments on other owners' projects answer 404.
    """
    new_status = coerce_comment_status(body.status)
    row = storage.get_comment(comment_id)
    if not row or not storage.get_owned_project(row["project_id"], owner["id"]):
        raise NotFoundError("Comment not found")

    updated = storage.update_comment_status(comment_id, new_status)
    if not updated:
        raise NotFoundError("Comment not found")
    logger.info(f"Comment {comment_id} set to {new_status} by owner")
    return Comment.from_storage(updated).to_api()
