# services/api/embed/script.py
"""
The script a site owner adds to their pages.

Reports the page path, scroll position and size to the review page,
renders pins it is sent, and resolves anchors on request.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from core.protocol import (
    HOST_TO_EMBED,
    AnchorFound,
    Handshake,
    MessageDispatcher,
    PathUpdate,
    PinClicked,
    RenderPins,
    RequestAnchor,
    ScrollUpdate,
    WireModel,
)
from .anchor import resolve_anchor
from .dom import Document
from .frames import FramePort
from .overlay import OverlayLayer
from .timeline import FrameThrottle, Timeline

logger = logging.getLogger(__name__)

INIT_FLAG = "__annota_initialized"
PATH_POLL_INTERVAL_MS = 500
LAYOUT_EVENTS = ("scroll", "resize", "orientationchange", "layout")


class EmbedScript:
    def __init__(
        self,
        document: Document,
        timeline: Timeline,
        port: FramePort,
        parent_origin: str = "*",
        path_poll_interval_ms: float = PATH_POLL_INTERVAL_MS,
    ):
        self.document = document
        self.timeline = timeline
        self.port = port
        self.parent_origin = parent_origin or "*"
        self.path_poll_interval_ms = path_poll_interval_ms
        self.overlay = OverlayLayer(document)
        self.last_path = document.location_path
        self.throttle = FrameThrottle(timeline, self._on_frame)
        self.dispatcher = MessageDispatcher(HOST_TO_EMBED)
        self.dispatcher.on("render-pins")(self._on_render_pins)
        self.dispatcher.on("request-anchor")(self._on_request_anchor)
        self._poll_handle: Optional[int] = None
        self._subscriptions: List[Tuple[str, Any]] = []
        self.running = False

    # ---------- lifecycle ----------

    def boot(self) -> bool:
        """
        Initialize once per document. A second copy of the script on the
        same page finds the flag set and does nothing.
        """
        if self.document.globals.get(INIT_FLAG):
            logger.debug("Embed already initialized on this page")
            return False
        self.document.globals[INIT_FLAG] = True
        self.running = True

        self.overlay.inject_styles()
        self.port.add_listener(self._on_message)
        self._poll_handle = self.timeline.set_interval(self.check_path, self.path_poll_interval_ms)
        self._listen("popstate", self.check_path)
        for event in LAYOUT_EVENTS:
            self._listen(event, self.throttle)

        self.send_handshake()
        return True

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._poll_handle is not None:
            self.timeline.clear_interval(self._poll_handle)
            self._poll_handle = None
        for event, listener in self._subscriptions:
            self.document.remove_event_listener(event, listener)
        self._subscriptions = []
        self.port.remove_listener(self._on_message)

    def _listen(self, event: str, listener: Any) -> None:
        self.document.add_event_listener(event, listener)
        self._subscriptions.append((event, listener))

    # ---------- outbound ----------

    def _post(self, message: WireModel) -> bool:
        # top-level window: no parent to talk to
        if not self.port.has_peer:
            return False
        return self.port.post_message(message.to_wire(), self.parent_origin)

    def send_handshake(self) -> None:
        doc = self.document
        if self._post(Handshake(href=doc.href, path=doc.location_path)):
            self.send_scroll_update()

    def send_scroll_update(self) -> None:
        doc = self.document
        self._post(
            ScrollUpdate(
                scroll_x=doc.scroll_x,
                scroll_y=doc.scroll_y,
                inner_width=doc.inner_width,
                inner_height=doc.inner_height,
                scroll_width=doc.scroll_width,
                scroll_height=doc.scroll_height,
            )
        )

    def check_path(self) -> None:
        path = self.document.location_path
        if path == self.last_path:
            return
        self.last_path = path
        logger.debug(f"Path changed to {path}")
        self._post(PathUpdate(path=path))

    def click_pin(self, pin_id: str) -> bool:
        if pin_id not in self.overlay.placements:
            return False
        return self._post(PinClicked(comment_id=pin_id))

    # ---------- inbound ----------

    def _on_message(self, data: Any, origin: str) -> None:
        if self.parent_origin != "*" and origin != self.parent_origin.rstrip("/"):
            return
        self.dispatcher.dispatch(data)

    def _on_render_pins(self, message: RenderPins) -> None:
        self.overlay.render(message.pins)

    def _on_request_anchor(self, message: RequestAnchor) -> None:
        anchor = resolve_anchor(self.document, message.x, message.y)
        self._post(AnchorFound(anchor=anchor, x=message.x, y=message.y))

    def _on_frame(self) -> None:
        self.overlay.sync_size()
        self.overlay.reposition()
        self.send_scroll_update()
