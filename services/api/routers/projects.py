# services/api/routers/projects.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, status

from adapters.base import StorageAdapter
from core import security
from core.deps import get_current_owner, get_storage
from core.errors import NotFoundError
from core.validation import normalize_base_url
from models import FeedbackLink, Project
from schemas import FeedbackLinkOut, ProjectCreate, ProjectOut
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

# DI aliases
Storage = Annotated[StorageAdapter, Depends(get_storage)]
Owner = Annotated[Dict[str, Any], Depends(get_current_owner)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def feedback_url(settings: Settings, token: str) -> str:
    return f"{settings.web_base_url.rstrip('/')}/f/{token}"


def _link_out(settings: Settings, row: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if not row:
        return None
    link = FeedbackLink.from_storage(row)
    return {"token": link.token, "url": feedback_url(settings, link.token), "isActive": link.is_active}


def _owned_project(storage: StorageAdapter, project_id: str, owner: Dict[str, Any]) -> Project:
    row = storage.get_owned_project(project_id, owner["id"])
    if not row:
        # other owners' projects look exactly like missing ones
        raise NotFoundError("Project not found")
    return Project.from_storage(row)


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, storage: Storage, owner: Owner):
    """
    Register a site for review. The base URL is normalized before storage.
    """
    base_url = normalize_base_url(body.base_url)
    row = storage.create_project(owner["id"], body.name, base_url)
    project = Project.from_storage(row)
    logger.info(f"Project {project.id} created by {owner['email']} for {base_url}")
    return project.to_api()


@router.get("", response_model=List[ProjectOut])
async def list_projects(storage: Storage, owner: Owner, settings: AppSettings):
    """Owner's projects, newest first, each with its feedback link if any."""
    out = []
    for row in storage.list_projects(owner["id"]):
        data = Project.from_storage(row).to_api()
        data["feedbackLink"] = _link_out(settings, storage.get_feedback_link_for_project(row["id"]))
        out.append(data)
    return out


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, storage: Storage, owner: Owner, settings: AppSettings):
    project = _owned_project(storage, project_id, owner)
    data = project.to_api()
    data["feedbackLink"] = _link_out(settings, storage.get_feedback_link_for_project(project.id))
    return data


@router.post("/{project_id}/feedback-link", response_model=FeedbackLinkOut)
async def create_feedback_link(project_id: str, storage: Storage, owner: Owner, settings: AppSettings):
    """
    Issue a fresh feedback token. Any previous token for the project stops
    working (rotation), and a revoked link becomes active again.
    """
    project = _owned_project(storage, project_id, owner)
    row = storage.upsert_feedback_link(project.id, security.generate_token())
    logger.info(f"Feedback link issued for project {project.id}")
    return _link_out(settings, row)


@router.delete("/{project_id}/feedback-link")
async def revoke_feedback_link(project_id: str, storage: Storage, owner: Owner):
    """Deactivate the project's feedback link; public routes then answer 404."""
    project = _owned_project(storage, project_id, owner)
    if not storage.deactivate_feedback_link(project.id):
        raise NotFoundError("Feedback link not found")
    logger.info(f"Feedback link revoked for project {project.id}")
    return {"ok": True}
