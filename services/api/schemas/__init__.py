"""
Pydantic schemas for API request/response validation.

Wire names are camelCase (the review web app's convention); Python
attributes stay snake_case.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Project Schemas ============


class ProjectCreate(CamelModel):
    """Payload to register a site for review."""
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    base_url: str = Field(..., description="http(s) URL of the site; normalized on save")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class FeedbackLinkOut(CamelModel):
    """Shareable comment link for a project."""
    token: str
    url: str
    is_active: bool = True


class ProjectOut(CamelModel):
    """Project as returned to its owner."""
    id: str
    name: str
    base_url: str
    status: Literal["IN_REVIEW", "APPROVED"]
    approved_at: Optional[str] = None
    created_at: Optional[str] = None
    feedback_link: Optional[FeedbackLinkOut] = None


# ============ Comment Schemas ============


class AnchorIn(CamelModel):
    """Element anchor captured by the embed script."""
    selector: str = Field(..., min_length=1, max_length=2000)
    offset_x_pct: float = Field(..., ge=0.0, le=1.0)
    offset_y_pct: float = Field(..., ge=0.0, le=1.0)
    tag_name: str = Field("", max_length=64)


class CommentCreate(CamelModel):
    """A new comment pin. clickX/clickY are document-space pixels."""
    page_url: str = Field(..., description="Page path, must start with '/'")
    click_x: float = Field(..., strict=True, allow_inf_nan=False)
    click_y: float = Field(..., strict=True, allow_inf_nan=False)
    message: str = ""
    screenshot_url: Optional[str] = None
    anchor: Optional[AnchorIn] = None


class StatusUpdate(CamelModel):
    """Comment status change."""
    status: str


class CommentOut(CamelModel):
    id: str
    project_id: str
    page_url: str
    click_x: float
    click_y: float
    message: str
    status: Literal["OPEN", "RESOLVED"]
    anchor: Optional[AnchorIn] = None
    screenshot_url: Optional[str] = None
    created_at: Optional[str] = None


# ============ Approval Schemas ============


class ApprovalRequestBody(CamelModel):
    """Who should receive the approval email."""
    email: Optional[str] = None


class ApprovalConfirmBody(CamelModel):
    """PIN typed by the client; validated against the stored hash."""
    pin: Optional[str] = None

    @field_validator("pin", mode="before")
    @classmethod
    def pin_as_text(cls, v):
        # some clients post the PIN as a number
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


__all__ = [
    "CamelModel",
    "ProjectCreate",
    "ProjectOut",
    "FeedbackLinkOut",
    "AnchorIn",
    "CommentCreate",
    "CommentOut",
    "StatusUpdate",
    "ApprovalRequestBody",
    "ApprovalConfirmBody",
]
