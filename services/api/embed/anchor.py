# services/api/embed/anchor.py
"""
Anchor resolver: viewport point -> (selector, relative offset).

Selector synthesis tries, in order, and accepts the first candidate that
matches exactly one element in the document:

  1. #id
  2. tag[attr="value"] for stable semantic attributes
  3. tag + all non-utility classes, then tag + each single class
  4. structural chain from the element up to body (html excluded)
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from core.protocol import AnchorDescriptor
from .dom import Document, Element, css_escape, css_string

logger = logging.getLogger(__name__)

LAYER_ID = "annota-layer"

STABLE_ATTRIBUTES = (
    "data-testid",
    "data-test",
    "data-cy",
    "data-qa",
    "aria-label",
    "name",
    "role",
)

STATE_CLASSES = {"hover", "active", "focus", "selected", "open", "visible"}

# Tailwind-style layout utilities: spacing, flex/grid, sizing, text size
_UTILITY_RE = re.compile(
    r"""^-?(
        [mp][trblxy]?-\S+
      | (flex|grid|inline-flex|inline-grid|block|inline-block|inline|hidden|contents)
      | (flex|grid|basis|grow|shrink|order|gap|col|row|items|justify|self|place)-\S+
      | (w|h|min-w|min-h|max-w|max-h|size)-\S+
      | text-(xs|sm|base|lg|[0-9]?xl)
      | (top|left|right|bottom|inset|z|space-[xy])-\S+
      | (absolute|relative|fixed|sticky|static)
    )$""",
    re.VERBOSE,
)

_ANCHOR_ROOT_TAGS = ("html", "body")


def is_utility_class(name: str) -> bool:
    if ":" in name:
        return True
    if name in STATE_CLASSES:
        return True
    return bool(_UTILITY_RE.match(name))


def stable_classes(el: Element) -> List[str]:
    return [c for c in el.classes if not is_utility_class(c)]


def _structural_step(el: Element, qualify: bool) -> str:
    step = el.tag
    parent = el.parent
    if parent is None:
        return step
    if qualify or any(sib is not el and sib.tag == el.tag for sib in parent.children):
        step += f":nth-child({el.child_index()})"
    return step


def _structural_selector(el: Element, qualify: bool) -> Optional[str]:
    steps = []
    node: Optional[Element] = el
    while node is not None and node.tag != "html":
        steps.append(_structural_step(node, qualify and node.tag != "body"))
        node = node.parent
    if not steps:
        return None
    return " > ".join(reversed(steps))


def selector_candidates(el: Element) -> List[str]:
    candidates: List[str] = []

    if el.id:
        candidates.append("#" + css_escape(el.id))

    for attr in STABLE_ATTRIBUTES:
        value = el.attrs.get(attr)
        if value:
            candidates.append(f"{el.tag}[{attr}={css_string(value)}]")

    classes = stable_classes(el)
    if classes:
        candidates.append(el.tag + "".join("." + css_escape(c) for c in classes))
        if len(classes) > 1:
            candidates.extend(f"{el.tag}.{css_escape(c)}" for c in classes)

    for qualify in (False, True):
        structural = _structural_selector(el, qualify)
        if structural and structural not in candidates:
            candidates.append(structural)

    return candidates


def build_selector(document: Document, el: Element) -> Optional[str]:
    """First candidate selector that uniquely identifies `el`, else None."""
    if el.tag in _ANCHOR_ROOT_TAGS:
        return None
    for candidate in selector_candidates(el):
        if document.is_unique(candidate) and document.query_selector(candidate) is el:
            return candidate
    logger.debug(f"No unique selector for {el!r}")
    return None


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def resolve_anchor(document: Document, vx: float, vy: float) -> Optional[AnchorDescriptor]:
    """
    Anchor for the topmost page element at viewport point (vx, vy).

    None when the point hits nothing, only the overlay, the document
    root, or an element with an empty box.
    """
    layer = document.get_element_by_id(LAYER_ID)
    el = document.element_from_point(vx, vy, ignore=layer)
    if el is None or el.tag in _ANCHOR_ROOT_TAGS:
        return None

    rect = document.bounding_client_rect(el)
    if rect.is_empty:
        return None

    selector = build_selector(document, el)
    if selector is None:
        return None

    return AnchorDescriptor(
        selector=selector,
        offset_x_pct=_clamp01((vx - rect.x) / rect.width),
        offset_y_pct=_clamp01((vy - rect.y) / rect.height),
        tag_name=el.tag_name,
    )
