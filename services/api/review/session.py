# services/api/review/session.py
"""
Review page state for one framed site.

Tracks whether the embed script announced itself, which page the client
is looking at, the latest scroll report, and turns comment records into
pins (sent to the embed) and viewport positions (drawn by the host).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.pins import creation_order, render_pins_message
from core.protocol import (
    EMBED_TO_HOST,
    AnchorFound,
    Handshake,
    MessageDispatcher,
    PathUpdate,
    PinClicked,
    RenderPins,
    RequestAnchor,
    ScrollUpdate,
)
from core.validation import validate_page_url
from embed.frames import FramePort
from embed.reposition import compensate_width_drift, is_in_viewport, to_viewport
from embed.timeline import Timeline
from models import Anchor, Comment, CommentStatus

logger = logging.getLogger(__name__)

DETECTION_TIMEOUT_MS = 4000


class LoadStatus(str, enum.Enum):
    LOADING = "LOADING"
    LOADED = "LOADED"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class CommentDraft:
    """A comment being written. Coordinates are document space."""
    page_url: str
    click_x: float
    click_y: float
    viewport_x: float
    viewport_y: float
    anchor: Optional[Anchor] = None
    anchor_resolved: bool = False
    message: str = ""

    def to_create_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "pageUrl": self.page_url,
            "clickX": self.click_x,
            "clickY": self.click_y,
            "message": self.message,
        }
        if self.anchor is not None:
            body["anchor"] = self.anchor.to_wire()
        return body


@dataclass(frozen=True)
class ViewportPin:
    comment_id: str
    number: int
    x: float
    y: float
    status: CommentStatus
    active: bool = False


@dataclass
class ReviewSession:
    timeline: Timeline
    port: FramePort
    embed_origin: str = "*"
    detection_timeout_ms: float = DETECTION_TIMEOUT_MS
    on_path_change: Optional[Callable[[str], None]] = None

    embed_detected: bool = False
    current_path: str = "/"
    load_status: LoadStatus = LoadStatus.LOADING
    scroll: Optional[ScrollUpdate] = None
    initial_width: Optional[float] = None
    filter_status: CommentStatus = CommentStatus.OPEN
    active_comment_id: Optional[str] = None
    comments: List[Comment] = field(default_factory=list)
    pending_anchors: Dict[Tuple[float, float], CommentDraft] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._timeout_handle: Optional[int] = None
        self.dispatcher = MessageDispatcher(EMBED_TO_HOST)
        self.dispatcher.on("handshake")(self._on_page_announced)
        self.dispatcher.on("path-update")(self._on_page_announced)
        self.dispatcher.on("scroll-update")(self._on_scroll_update)
        self.dispatcher.on("anchor-found")(self._on_anchor_found)
        self.dispatcher.on("pin-clicked")(self._on_pin_clicked)

    @property
    def manual_mode(self) -> bool:
        return not self.embed_detected

    # ---------- lifecycle ----------

    def start(self) -> None:
        self.port.add_listener(self._on_message)
        self._timeout_handle = self.timeline.set_timeout(self._on_detection_timeout, self.detection_timeout_ms)

    def stop(self) -> None:
        self.port.remove_listener(self._on_message)
        if self._timeout_handle is not None:
            self.timeline.clear_timeout(self._timeout_handle)
            self._timeout_handle = None

    def on_frame_loaded(self) -> None:
        """The iframe fired load. Without a handshake the page stays manual."""
        self.load_status = LoadStatus.LOADED

    def _on_detection_timeout(self) -> None:
        self._timeout_handle = None
        if self.embed_detected or self.load_status == LoadStatus.LOADED:
            return
        logger.info("No load event or handshake from framed page; preview unavailable")
        self.load_status = LoadStatus.UNAVAILABLE

    # ---------- page path ----------

    def set_manual_path(self, path: str) -> bool:
        """
        Manual page entry. Refused (False) once the embed script has been
        detected; raises ValidationError for paths not starting with '/'.
        """
        if self.embed_detected:
            return False
        self._set_path(validate_page_url(path))
        return True

    def _set_path(self, path: str) -> None:
        if path == self.current_path:
            return
        self.current_path = path
        self.active_comment_id = None
        if self.on_path_change is not None:
            self.on_path_change(path)
        self.push_pins()

    # ---------- comments ----------

    def set_comments(self, comments: List[Comment]) -> None:
        self.comments = list(comments)
        self.push_pins()

    def set_filter(self, status: CommentStatus) -> None:
        self.filter_status = status
        self.push_pins()

    def visible_comments(self) -> List[Comment]:
        """Comments on the current page in the current status, newest first."""
        visible = [c for c in self.comments if c.is_visible_on(self.current_path, self.filter_status)]
        return list(reversed(creation_order(visible)))

    def render_pins_message(self) -> RenderPins:
        return render_pins_message(self.comments, self.current_path, self.filter_status, self.active_comment_id)

    def push_pins(self) -> bool:
        if not self.embed_detected:
            return False
        return self._post(self.render_pins_message().to_wire())

    def focus_comment(self, comment_id: Optional[str]) -> None:
        self.active_comment_id = comment_id
        self.push_pins()

    # ---------- viewport projection ----------

    def viewport_pins(self) -> List[ViewportPin]:
        """
        Host-drawn pins in iframe viewport space. Pins outside the viewport
        (plus margin) are left out; unanchored pins follow width drift.
        """
        out = []
        for pin in self.render_pins_message().pins:
            x, y = pin.x, pin.y
            if pin.anchor is None and self.scroll is not None:
                x = compensate_width_drift(x, self.initial_width, self.scroll.inner_width)
            if self.scroll is not None:
                x, y = to_viewport(x, y, self.scroll.scroll_x, self.scroll.scroll_y)
                if not is_in_viewport(x, y, self.scroll.inner_width, self.scroll.inner_height):
                    continue
            out.append(
                ViewportPin(
                    comment_id=pin.id,
                    number=pin.number,
                    x=x,
                    y=y,
                    status=CommentStatus(pin.status),
                    active=pin.active,
                )
            )
        return out

    # ---------- new comments ----------

    def begin_comment(self, viewport_x: float, viewport_y: float) -> CommentDraft:
        """
        Start a comment at a click on the overlay. With the embed present an
        anchor is requested; its answer arrives later as anchor-found.
        """
        if self.manual_mode:
            validate_page_url(self.current_path)
        scroll_x = self.scroll.scroll_x if self.scroll else 0.0
        scroll_y = self.scroll.scroll_y if self.scroll else 0.0
        draft = CommentDraft(
            page_url=self.current_path,
            click_x=max(0.0, round(viewport_x + scroll_x)),
            click_y=max(0.0, round(viewport_y + scroll_y)),
            viewport_x=viewport_x,
            viewport_y=viewport_y,
        )
        if self.embed_detected:
            self.pending_anchors[(viewport_x, viewport_y)] = draft
            self._post(RequestAnchor(x=viewport_x, y=viewport_y).to_wire())
        else:
            draft.anchor_resolved = True
        return draft

    def cancel_comment(self, draft: CommentDraft) -> None:
        self.pending_anchors.pop((draft.viewport_x, draft.viewport_y), None)

    # ---------- inbound ----------

    def _post(self, data: Dict[str, Any]) -> bool:
        return self.port.post_message(data, self.embed_origin)

    def _on_message(self, data: Any, origin: str) -> None:
        if self.embed_origin != "*" and origin != self.embed_origin.rstrip("/"):
            return
        self.dispatcher.dispatch(data)

    def _on_page_announced(self, message: Handshake | PathUpdate) -> None:
        if not self.embed_detected:
            # one-way: manual entry stays disabled for the rest of the session
            self.embed_detected = True
            self.load_status = LoadStatus.LOADED
            if self._timeout_handle is not None:
                self.timeline.clear_timeout(self._timeout_handle)
                self._timeout_handle = None
            logger.info("Embed script detected; page path is now automatic")
            path = message.path or "/"
            if path == self.current_path:
                self.push_pins()
                return
        self._set_path(message.path or "/")

    def _on_scroll_update(self, message: ScrollUpdate) -> None:
        if self.initial_width is None:
            self.initial_width = message.inner_width
        self.scroll = message

    def _on_anchor_found(self, message: AnchorFound) -> None:
        draft = self.pending_anchors.pop((message.x, message.y), None)
        if draft is None:
            return
        if message.anchor is not None:
            a = message.anchor
            draft.anchor = Anchor(
                selector=a.selector,
                offset_x_pct=a.offset_x_pct,
                offset_y_pct=a.offset_y_pct,
                tag_name=a.tag_name,
            )
        draft.anchor_resolved = True

    def _on_pin_clicked(self, message: PinClicked) -> None:
        comment = next((c for c in self.comments if c.comment_id == message.comment_id), None)
        if comment is None:
            return
        self.filter_status = comment.status
        self.focus_comment(comment.comment_id)
