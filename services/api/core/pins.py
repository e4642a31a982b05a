"""
Pin list construction shared by the public render-pins endpoint and the
review session.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from core.protocol import AnchorDescriptor, PinPayload, RenderPins
from models import Comment, CommentStatus


def creation_order(comments: Iterable[Comment]) -> List[Comment]:
    """
    Oldest first. Input is expected newest first (as listed by storage),
    so equal timestamps keep their insertion order.
    """
    ordered = list(comments)
    ordered.reverse()
    ordered.sort(key=lambda c: c.created_at or datetime.min)
    return ordered


def build_pins(
    comments: Iterable[Comment],
    page_url: str,
    status: CommentStatus = CommentStatus.OPEN,
    active_id: Optional[str] = None,
) -> List[PinPayload]:
    """Pins for one page and one status filter, numbered 1..n by age."""
    visible = [c for c in comments if c.is_visible_on(page_url, status)]
    pins = []
    for number, c in enumerate(creation_order(visible), start=1):
        anchor = None
        if c.anchor is not None:
            anchor = AnchorDescriptor(
                selector=c.anchor.selector,
                offset_x_pct=c.anchor.offset_x_pct,
                offset_y_pct=c.anchor.offset_y_pct,
                tag_name=c.anchor.tag_name,
            )
        pins.append(
            PinPayload(
                id=c.comment_id,
                x=c.click_x,
                y=c.click_y,
                number=number,
                status=c.status.value,
                message=c.message,
                active=c.comment_id == active_id,
                anchor=anchor,
            )
        )
    return pins


def render_pins_message(
    comments: Iterable[Comment],
    page_url: str,
    status: CommentStatus = CommentStatus.OPEN,
    active_id: Optional[str] = None,
) -> RenderPins:
    return RenderPins(pins=build_pins(comments, page_url, status, active_id))
