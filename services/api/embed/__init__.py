"""
In-page side of the review tool: the embed script and the document model
it runs against.
"""
from .dom import Document, Element, Rect, SelectorError, css_escape
from .timeline import FrameThrottle, Timeline
from .frames import FramePort, connect_frames
from .anchor import LAYER_ID, build_selector, resolve_anchor
from .reposition import (
    PinPlacement,
    PinState,
    compensate_width_drift,
    is_in_viewport,
    reposition_pins,
    resolve_document_position,
    to_viewport,
)
from .overlay import OverlayLayer
from .script import EmbedScript

__all__ = [
    "Document",
    "Element",
    "Rect",
    "SelectorError",
    "css_escape",
    "FrameThrottle",
    "Timeline",
    "FramePort",
    "connect_frames",
    "LAYER_ID",
    "build_selector",
    "resolve_anchor",
    "PinPlacement",
    "PinState",
    "compensate_width_drift",
    "is_in_viewport",
    "reposition_pins",
    "resolve_document_position",
    "to_viewport",
    "OverlayLayer",
    "EmbedScript",
]
