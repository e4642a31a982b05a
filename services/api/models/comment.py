# services/api/models/comment.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from . import CommentStatus, iso


def _gen_id() -> str:
  return f"c-{uuid4().hex[:12]}"


def _safe_float(val: Any) -> Optional[float]:
  try:
    if val is None:
      return None
    s = str(val).strip()
    if not s:
      return None
    return float(s)
  except (TypeError, ValueError):
    return None


@dataclass(frozen=True)
class Anchor:
  """
  Resilient reference binding a pin to a DOM element.

  offset_x_pct / offset_y_pct are fractions (0..1) of the element's
  bounding box, so the pin follows the element through responsive reflow.
  """

  selector: str
  offset_x_pct: float
  offset_y_pct: float
  tag_name: str = ""

  def validate(self) -> None:
    if not self.selector or not self.selector.strip():
      raise ValueError("anchor selector must not be empty")
    for field_name in ("offset_x_pct", "offset_y_pct"):
      v = getattr(self, field_name)
      if not (0.0 <= v <= 1.0):
        raise ValueError(f"{field_name} must be in [0, 1], got {v}")

  def to_wire(self) -> Dict[str, Any]:
    return {
      "selector": self.selector,
      "offsetXPct": self.offset_x_pct,
      "offsetYPct": self.offset_y_pct,
      "tagName": self.tag_name,
    }


@dataclass
class Comment:
  """
  Domain model for a single comment pin.

  click_x / click_y are DOCUMENT-space pixels of the target page at
  creation time, scoped to exactly one page_url. With an anchor they are
  only the fallback position.
  """

  comment_id: str = field(default_factory=_gen_id)
  project_id: str = ""
  page_url: str = "/"
  message: str = ""
  status: CommentStatus = CommentStatus.OPEN

  click_x: float = 0.0
  click_y: float = 0.0
  anchor: Optional[Anchor] = None

  screenshot_url: Optional[str] = None
  created_at: Optional[datetime] = None

  # --------------------
  # Validation
  # --------------------
  def validate(self) -> None:
    """
    Raises ValueError if any invariant is broken.
    """
    if not self.page_url.startswith("/"):
      raise ValueError("page_url must start with '/'")
    if not self.message.strip():
      raise ValueError("message must not be empty")
    if self.click_x < 0 or self.click_y < 0:
      raise ValueError("click_x/click_y must be >= 0")
    if self.anchor is not None:
      self.anchor.validate()

  def is_visible_on(self, path: str, status: CommentStatus) -> bool:
    """A pin shows only on its own page and in exactly one status filter."""
    return self.page_url == path and self.status == status

  # --------------------
  # Conversions – storage layer
  # --------------------
  @classmethod
  def from_storage(cls, row: Dict[str, Any]) -> "Comment":
    anchor = None
    if row.get("anchor_selector"):
      anchor = Anchor(
        selector=row["anchor_selector"],
        offset_x_pct=_safe_float(row.get("anchor_offset_x_pct")) or 0.0,
        offset_y_pct=_safe_float(row.get("anchor_offset_y_pct")) or 0.0,
        tag_name=row.get("anchor_tag_name") or "",
      )
    return cls(
      comment_id=row["id"],
      project_id=row["project_id"],
      page_url=row.get("page_url") or "/",
      message=row.get("message") or "",
      status=CommentStatus(row.get("status") or CommentStatus.OPEN.value),
      click_x=float(row.get("click_x") or 0.0),
      click_y=float(row.get("click_y") or 0.0),
      anchor=anchor,
      screenshot_url=row.get("screenshot_url"),
      created_at=row.get("created_at"),
    )

  def to_storage(self) -> Dict[str, Any]:
    self.validate()
    return {
      "id": self.comment_id,
      "project_id": self.project_id,
      "page_url": self.page_url,
      "message": self.message,
      "status": self.status.value,
      "click_x": self.click_x,
      "click_y": self.click_y,
      "anchor_selector": self.anchor.selector if self.anchor else None,
      "anchor_offset_x_pct": self.anchor.offset_x_pct if self.anchor else None,
      "anchor_offset_y_pct": self.anchor.offset_y_pct if self.anchor else None,
      "anchor_tag_name": self.anchor.tag_name if self.anchor else None,
      "screenshot_url": self.screenshot_url,
      "created_at": self.created_at,
    }

  # --------------------
  # Conversions – API (JSON)
  # --------------------
  def to_api(self) -> Dict[str, Any]:
    return {
      "id": self.comment_id,
      "projectId": self.project_id,
      "pageUrl": self.page_url,
      "clickX": self.click_x,
      "clickY": self.click_y,
      "message": self.message,
      "status": self.status.value,
      "anchor": self.anchor.to_wire() if self.anchor else None,
      "screenshotUrl": self.screenshot_url,
      "createdAt": iso(self.created_at),
    }
