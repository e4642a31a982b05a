# services/api/embed/dom.py
"""
Minimal document model for the framed page.

Elements carry a layout box in DOCUMENT space (scroll-independent);
viewport coordinates are derived from the document's scroll offsets.
Selectors support the subset the anchor resolver emits:

    type  *  #id  .class  [attr]  [attr="value"]  :nth-child(n)
    descendant (whitespace) and child (>) combinators
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit


class SelectorError(ValueError):
    """Selector outside the supported grammar (browsers throw SyntaxError)."""


@dataclass(frozen=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px < self.right and self.y <= py < self.bottom

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)


class Element:
    def __init__(
        self,
        tag: str,
        *,
        id: Optional[str] = None,
        classes: Tuple[str, ...] | List[str] = (),
        attrs: Optional[Dict[str, str]] = None,
        box: Optional[Rect] = None,
        pointer_events: bool = True,
        out_of_flow: bool = False,
    ):
        self.tag = tag.lower()
        self.id = id or None
        self.classes: List[str] = [c for c in classes if c]
        self.attrs: Dict[str, str] = dict(attrs or {})
        self.box = box
        self.pointer_events = pointer_events
        # absolutely positioned overlay content: never grows the scroll extent
        self.out_of_flow = out_of_flow
        self.parent: Optional["Element"] = None
        self.children: List["Element"] = []
        self.style: Dict[str, Any] = {}

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        cls = "".join(f".{c}" for c in self.classes)
        return f"<{self.tag}{ident}{cls}>"

    @property
    def tag_name(self) -> str:
        """DOM-style upper-case tag name."""
        return self.tag.upper()

    # ---------- tree ----------

    def append(self, child: "Element") -> "Element":
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.append(child)
        return child

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None

    def clear(self) -> None:
        for child in list(self.children):
            child.remove()

    def iter_tree(self) -> Iterator["Element"]:
        """Pre-order traversal including self (document order)."""
        yield self
        for child in self.children:
            yield from child.iter_tree()

    def ancestors(self) -> Iterator["Element"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def is_inside(self, other: "Element") -> bool:
        return self is other or any(a is other for a in self.ancestors())

    def child_index(self) -> int:
        """1-based position among the parent's element children (nth-child)."""
        if self.parent is None:
            return 1
        return self.parent.children.index(self) + 1

    def get_attribute(self, name: str) -> Optional[str]:
        if name == "id":
            return self.id
        if name == "class":
            return " ".join(self.classes) or None
        return self.attrs.get(name)


# ---------- selectors ----------

_IDENT = r"(?:\\[0-9a-fA-F]{1,6}\s?|\\.|[\w-])+"
_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s*>\s*|\s+)
  | (?P<tag>\*|[a-zA-Z][\w-]*)
  | \#(?P<id>%(ident)s)
  | \.(?P<cls>%(ident)s)
  | \[\s*(?P<attr>[\w:-]+)\s*(?:=\s*(?:"(?P<dq>(?:\\.|[^"\\])*)"|'(?P<sq>(?:\\.|[^'\\])*)'|(?P<bare>%(ident)s)))?\s*\]
  | :nth-child\(\s*(?P<nth>\d+)\s*\)
    """ % {"ident": _IDENT},
    re.VERBOSE,
)
_ESCAPE_RE = re.compile(r"\\([0-9a-fA-F]{1,6})\s?|\\(.)", re.DOTALL)


def _unescape(value: str) -> str:
    def repl(m: "re.Match[str]") -> str:
        if m.group(1):
            return chr(int(m.group(1), 16))
        return m.group(2)

    return _ESCAPE_RE.sub(repl, value)


def css_escape(ident: str) -> str:
    """CSS.escape() for identifiers (ids and class names)."""
    out = []
    for i, ch in enumerate(ident):
        if ch == "\0":
            out.append("\ufffd")
        elif ch.isdigit() and (i == 0 or (i == 1 and ident[0] == "-")):
            out.append(f"\\{ord(ch):x} ")
        elif ch == "-" and i == 0 and len(ident) == 1:
            out.append("\\-")
        elif ch.isalnum() or ch in "-_" or ord(ch) >= 0x80:
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def css_string(value: str) -> str:
    """Quoted CSS string for attribute selectors."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class Compound:
    tag: Optional[str] = None
    ids: List[str] = field(default_factory=list)
    classes: List[str] = field(default_factory=list)
    attrs: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    nth_child: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not (self.tag or self.ids or self.classes or self.attrs or self.nth_child)

    def matches(self, el: Element) -> bool:
        if self.tag and self.tag != "*" and self.tag != el.tag:
            return False
        if any(el.id != i for i in self.ids):
            return False
        if any(c not in el.classes for c in self.classes):
            return False
        for name, value in self.attrs:
            actual = el.get_attribute(name)
            if actual is None or (value is not None and actual != value):
                return False
        if self.nth_child is not None and (el.parent is None or el.child_index() != self.nth_child):
            return False
        return True


# [(combinator, compound)], combinator of the first step is None
ParsedSelector = List[Tuple[Optional[str], Compound]]


def parse_selector(selector: str) -> ParsedSelector:
    text = (selector or "").strip()
    if not text:
        raise SelectorError("empty selector")

    steps: ParsedSelector = []
    current = Compound()
    combinator: Optional[str] = None
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise SelectorError(f"unsupported selector near {text[pos:pos + 12]!r}")
        pos = m.end()
        if m.group("ws") is not None:
            if current.is_empty:
                raise SelectorError(f"dangling combinator in {selector!r}")
            steps.append((combinator, current))
            combinator = ">" if ">" in m.group("ws") else " "
            current = Compound()
        elif m.group("tag") is not None:
            if not current.is_empty:
                raise SelectorError(f"type selector must come first in {selector!r}")
            current.tag = m.group("tag").lower()
        elif m.group("id") is not None:
            current.ids.append(_unescape(m.group("id")))
        elif m.group("cls") is not None:
            current.classes.append(_unescape(m.group("cls")))
        elif m.group("attr") is not None:
            raw = next((g for g in (m.group("dq"), m.group("sq"), m.group("bare")) if g is not None), None)
            current.attrs.append((m.group("attr"), _unescape(raw) if raw is not None else None))
        else:
            nth = int(m.group("nth"))
            if nth < 1:
                raise SelectorError(":nth-child index must be >= 1")
            current.nth_child = nth

    if current.is_empty:
        raise SelectorError(f"dangling combinator in {selector!r}")
    steps.append((combinator, current))
    return steps


def _matches_from(el: Element, steps: ParsedSelector, idx: int) -> bool:
    combinator, compound = steps[idx]
    if not compound.matches(el):
        return False
    if idx == 0:
        return True
    if combinator == ">":
        return el.parent is not None and _matches_from(el.parent, steps, idx - 1)
    return any(_matches_from(a, steps, idx - 1) for a in el.ancestors())


# ---------- document ----------

EventListener = Callable[[], None]


class Document:
    """
    The framed page: element tree, viewport, scroll offsets, location,
    and the window-level events the embed script listens to.
    """

    def __init__(self, url: str = "https://example.com/", inner_width: float = 1280, inner_height: float = 800):
        self.url = url
        self.inner_width = float(inner_width)
        self.inner_height = float(inner_height)
        self.scroll_x = 0.0
        self.scroll_y = 0.0
        # window-level properties (e.g. the init guard)
        self.globals: Dict[str, Any] = {}
        self.html = Element("html")
        self.head = self.html.append(Element("head"))
        self.body = self.html.append(Element("body"))
        self._listeners: Dict[str, List[EventListener]] = {}

    # ---------- location ----------

    @property
    def href(self) -> str:
        return self.url

    @property
    def location_path(self) -> str:
        """pathname + search + hash, the logical page path."""
        parts = urlsplit(self.url)
        path = parts.path or "/"
        if parts.query:
            path += "?" + parts.query
        if parts.fragment:
            path += "#" + parts.fragment
        return path

    def push_state(self, path: str) -> None:
        """Single-page-app navigation: no event fires (hence path polling)."""
        parts = urlsplit(self.url)
        target = urlsplit(path)
        self.url = urlunsplit((parts.scheme, parts.netloc, target.path or "/", target.query, target.fragment))

    def go_back(self, path: str) -> None:
        self.push_state(path)
        self.dispatch_event("popstate")

    def iter_elements(self) -> Iterator[Element]:
        return self.html.iter_tree()

    def get_element_by_id(self, element_id: str) -> Optional[Element]:
        for el in self.iter_elements():
            if el.id == element_id:
                return el
        return None

    # ---------- queries ----------

    def query_selector_all(self, selector: str) -> List[Element]:
        steps = parse_selector(selector)
        last = len(steps) - 1
        return [el for el in self.iter_elements() if _matches_from(el, steps, last)]

    def query_selector(self, selector: str) -> Optional[Element]:
        steps = parse_selector(selector)
        last = len(steps) - 1
        for el in self.iter_elements():
            if _matches_from(el, steps, last):
                return el
        return None

    def is_unique(self, selector: str) -> bool:
        try:
            return len(self.query_selector_all(selector)) == 1
        except SelectorError:
            return False

    # ---------- geometry ----------

    def document_rect(self, el: Element) -> Rect:
        return el.box or Rect()

    def bounding_client_rect(self, el: Element) -> Rect:
        """Viewport-space box, like getBoundingClientRect()."""
        return self.document_rect(el).translated(-self.scroll_x, -self.scroll_y)

    def _in_flow_boxes(self) -> Iterator[Rect]:
        stack = [self.html]
        while stack:
            el = stack.pop()
            if el.out_of_flow:
                continue
            if el.box is not None:
                yield el.box
            stack.extend(el.children)

    @property
    def scroll_width(self) -> float:
        return max([self.inner_width] + [b.right for b in self._in_flow_boxes()])

    @property
    def scroll_height(self) -> float:
        return max([self.inner_height] + [b.bottom for b in self._in_flow_boxes()])

    def element_from_point(self, vx: float, vy: float, ignore: Optional[Element] = None) -> Optional[Element]:
        """
        Topmost element at a viewport point: later in document order wins,
        children paint over parents. Elements with pointer-events: none and
        the `ignore` subtree are transparent to the hit test.
        """
        if not (0 <= vx < self.inner_width and 0 <= vy < self.inner_height):
            return None
        px, py = vx + self.scroll_x, vy + self.scroll_y
        hit: Optional[Element] = None
        for el in self.iter_elements():
            if ignore is not None and el.is_inside(ignore):
                continue
            if not el.pointer_events or el.box is None:
                continue
            if el.box.contains(px, py):
                hit = el
        return hit

    # ---------- events ----------

    def add_event_listener(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, event: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener()

    def scroll_to(self, x: float, y: float) -> None:
        max_x = max(0.0, self.scroll_width - self.inner_width)
        max_y = max(0.0, self.scroll_height - self.inner_height)
        self.scroll_x = min(max(0.0, float(x)), max_x)
        self.scroll_y = min(max(0.0, float(y)), max_y)
        self.dispatch_event("scroll")

    def resize(self, inner_width: float, inner_height: float) -> None:
        self.inner_width = float(inner_width)
        self.inner_height = float(inner_height)
        self.dispatch_event("resize")

    def set_box(self, el: Element, box: Optional[Rect]) -> None:
        """Layout mutation of one element (what a ResizeObserver would see)."""
        el.box = box
        self.notify_layout_change()

    def notify_layout_change(self) -> None:
        self.dispatch_event("layout")
