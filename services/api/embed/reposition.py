# services/api/embed/reposition.py
"""
Coordinate translation between document space and viewport space, and
re-derivation of anchored pin positions against the live document.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from core.protocol import AnchorDescriptor, PinPayload
from .dom import Document, SelectorError

logger = logging.getLogger(__name__)

VIEWPORT_MARGIN = 40.0


class PinState(str, enum.Enum):
    ANCHORED = "anchored"   # re-derived from a live element
    DETACHED = "detached"   # had an anchor, element is gone; stored coords used
    ABSOLUTE = "absolute"   # never had an anchor


@dataclass(frozen=True)
class PinPlacement:
    pin_id: str
    x: float
    y: float
    state: PinState


def resolve_document_position(document: Document, anchor: Optional[AnchorDescriptor]) -> Optional[Tuple[float, float]]:
    """
    Document-space point for `anchor`: element origin + size * offset pct.

    None when the selector no longer matches, matches an element with an
    empty box, or is not valid in the supported grammar.
    """
    if anchor is None:
        return None
    try:
        el = document.query_selector(anchor.selector)
    except SelectorError as e:
        logger.debug(f"Unusable anchor selector {anchor.selector!r}: {e}")
        return None
    if el is None:
        return None
    rect = document.document_rect(el)
    if rect.is_empty:
        return None
    return (
        rect.x + rect.width * anchor.offset_x_pct,
        rect.y + rect.height * anchor.offset_y_pct,
    )


def place_pin(document: Document, pin: PinPayload) -> PinPlacement:
    if pin.anchor is None:
        return PinPlacement(pin.id, pin.x, pin.y, PinState.ABSOLUTE)
    position = resolve_document_position(document, pin.anchor)
    if position is None:
        return PinPlacement(pin.id, pin.x, pin.y, PinState.DETACHED)
    return PinPlacement(pin.id, position[0], position[1], PinState.ANCHORED)


def reposition_pins(document: Document, pins: Iterable[PinPayload]) -> List[PinPlacement]:
    return [place_pin(document, pin) for pin in pins]


def to_viewport(doc_x: float, doc_y: float, scroll_x: float, scroll_y: float) -> Tuple[float, float]:
    return doc_x - scroll_x, doc_y - scroll_y


def is_in_viewport(vx: float, vy: float, width: float, height: float, margin: float = VIEWPORT_MARGIN) -> bool:
    return -margin <= vx <= width + margin and -margin <= vy <= height + margin


def compensate_width_drift(x: float, initial_width: Optional[float], current_width: Optional[float]) -> float:
    """
    Shift an unanchored x by half the width change since the session began,
    approximating a horizontally centered layout.
    """
    if not initial_width or not current_width:
        return x
    return x + (current_width - initial_width) / 2.0
