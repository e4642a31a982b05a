# services/api/embed/frames.py
"""
postMessage-style channel between the review page and the framed site.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, List, Optional

from .timeline import Timeline

logger = logging.getLogger(__name__)

Listener = Callable[[Any, str], None]


class FramePort:
    """
    One window's end of a cross-frame channel.

    post_message delivers asynchronously through the timeline (a later
    task, never inline) and drops the message when target_origin is
    neither "*" nor the receiver's origin, as browsers do.
    """

    def __init__(self, timeline: Timeline, origin: str):
        self.timeline = timeline
        self.origin = origin.rstrip("/")
        self.peer: Optional["FramePort"] = None
        self._listeners: List[Listener] = []

    @property
    def has_peer(self) -> bool:
        return self.peer is not None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: Any, target_origin: str = "*") -> bool:
        peer = self.peer
        if peer is None:
            return False
        if target_origin != "*" and target_origin.rstrip("/") != peer.origin:
            logger.debug(f"postMessage to {target_origin} dropped (receiver is {peer.origin})")
            return False
        # structured clone: the receiver never shares objects with the sender
        payload = copy.deepcopy(data)
        sender_origin = self.origin
        self.timeline.call_soon(lambda: peer._deliver(payload, sender_origin))
        return True

    def _deliver(self, data: Any, origin: str) -> None:
        for listener in list(self._listeners):
            listener(data, origin)


def connect_frames(host: FramePort, embedded: FramePort) -> None:
    host.peer = embedded
    embedded.peer = host

