# services/api/embed/overlay.py
"""
Pin overlay inside the framed page.

The layer sits at the document origin and spans the full scroll height,
so pins placed at document coordinates scroll with the page for free.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from core.protocol import PinPayload
from .anchor import LAYER_ID
from .dom import Document, Element, Rect
from .reposition import PinPlacement, PinState, place_pin

logger = logging.getLogger(__name__)

STYLE_ID = "annota-styles"
PIN_SIZE = 28.0
DETACHED_OPACITY = 0.5


def pin_element_id(pin_id: str) -> str:
    return f"annota-pin-{pin_id}"


class OverlayLayer:
    def __init__(self, document: Document):
        self.document = document
        self.pins: List[PinPayload] = []
        self.placements: Dict[str, PinPlacement] = {}

    # ---------- layer ----------

    @property
    def element(self) -> Optional[Element]:
        return self.document.get_element_by_id(LAYER_ID)

    def inject_styles(self) -> None:
        if self.document.get_element_by_id(STYLE_ID) is None:
            self.document.head.append(Element("style", id=STYLE_ID))

    def mount(self) -> Element:
        """Return the layer, creating it on first use, sized to the document."""
        layer = self.element
        if layer is None:
            layer = Element("div", id=LAYER_ID, pointer_events=False, out_of_flow=True)
            self.document.body.append(layer)
        self.sync_size()
        return layer

    def sync_size(self) -> None:
        layer = self.element
        if layer is None:
            return
        doc = self.document
        layer.box = Rect(0.0, 0.0, doc.scroll_width, doc.scroll_height)
        layer.style["height"] = f"{doc.scroll_height:g}px"

    # ---------- pins ----------

    def render(self, pins: List[PinPayload]) -> None:
        """Replace the rendered pin set wholesale, then snap to anchors."""
        self.inject_styles()
        layer = self.mount()
        layer.clear()
        self.pins = list(pins)
        self.placements = {}

        for pin in self.pins:
            classes = ["annota-pin"]
            if pin.status == "RESOLVED":
                classes.append("resolved")
            if pin.active:
                classes.append("active")
            el = Element(
                "div",
                id=pin_element_id(pin.id),
                classes=classes,
                attrs={"data-number": str(pin.number), "title": pin.message},
                out_of_flow=True,
            )
            layer.append(el)

        self.reposition()
        logger.debug(f"Rendered {len(self.pins)} pin(s)")

    def reposition(self) -> List[PinPlacement]:
        placements = []
        for pin in self.pins:
            el = self.document.get_element_by_id(pin_element_id(pin.id))
            if el is None:
                continue
            placement = place_pin(self.document, pin)
            self._apply(el, placement)
            self.placements[pin.id] = placement
            placements.append(placement)
        return placements

    def _apply(self, el: Element, placement: PinPlacement) -> None:
        half = PIN_SIZE / 2.0
        el.box = Rect(placement.x - half, placement.y - half, PIN_SIZE, PIN_SIZE)
        el.style["left"] = f"{placement.x:g}px"
        el.style["top"] = f"{placement.y:g}px"
        el.attrs["data-state"] = placement.state.value
        if placement.state == PinState.DETACHED:
            el.style["opacity"] = DETACHED_OPACITY
            if "detached" not in el.classes:
                el.classes.append("detached")
        else:
            el.style.pop("opacity", None)
            if "detached" in el.classes:
                el.classes.remove("detached")

    def pin_at(self, pin_id: str) -> Optional[PinPlacement]:
        return self.placements.get(pin_id)
