"""
Cross-frame wire protocol between the embed script and the review page.

Every message carries source="annota-embed" and a `type` discriminator.
Field names are camelCase on the wire and must not change: the embed
script is distributed publicly and may lag the host by several versions,
so unknown extra fields are ignored on decode.
"""
from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

SOURCE = "annota-embed"


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AnchorDescriptor(WireModel):
    selector: str = Field(..., min_length=1)
    offset_x_pct: float = Field(..., ge=0.0, le=1.0)
    offset_y_pct: float = Field(..., ge=0.0, le=1.0)
    tag_name: str = ""


class PinPayload(WireModel):
    """One pin in a render-pins message. x/y are document-space pixels."""
    id: str
    x: float
    y: float
    number: int
    status: Literal["OPEN", "RESOLVED"] = "OPEN"
    message: str = ""
    active: bool = False
    anchor: Optional[AnchorDescriptor] = None


# ---------- embed -> host ----------

class Handshake(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["handshake"] = "handshake"
    href: str
    path: str


class PathUpdate(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["path-update"] = "path-update"
    path: str


class ScrollUpdate(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["scroll-update"] = "scroll-update"
    scroll_x: float
    scroll_y: float
    inner_width: float
    inner_height: float
    scroll_width: float
    scroll_height: float


class AnchorFound(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["anchor-found"] = "anchor-found"
    # null when nothing anchorable sits under the point
    anchor: Optional[AnchorDescriptor] = None
    x: float
    y: float

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        data.setdefault("anchor", None)
        return data


class PinClicked(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["pin-clicked"] = "pin-clicked"
    comment_id: str


# ---------- host -> embed ----------

class RenderPins(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["render-pins"] = "render-pins"
    pins: List[PinPayload] = Field(default_factory=list)


class RequestAnchor(WireModel):
    source: Literal["annota-embed"] = SOURCE
    type: Literal["request-anchor"] = "request-anchor"
    x: float
    y: float


Message = Annotated[
    Union[Handshake, PathUpdate, ScrollUpdate, AnchorFound, PinClicked, RenderPins, RequestAnchor],
    Field(discriminator="type"),
]

EMBED_TO_HOST = ("handshake", "path-update", "scroll-update", "anchor-found", "pin-clicked")
HOST_TO_EMBED = ("render-pins", "request-anchor")

_message_adapter = TypeAdapter(Message)


def decode_message(data: Any) -> Optional[WireModel]:
    """
    Parse raw postMessage data.

    Returns None for anything that is not ours (wrong/missing source,
    unknown type, malformed payload). Foreign traffic is normal on a page
    and is never an error.
    """
    if not isinstance(data, dict) or data.get("source") != SOURCE:
        return None
    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug(f"Discarding malformed {data.get('type')!r} message: {e.error_count()} error(s)")
        return None


Handler = Callable[[Any], None]


class MessageDispatcher:
    """
    Single dispatch point for one side of the bridge.

    Only message types listed in `accepts` are routed; a message meant for
    the other side (e.g. a host seeing its own render-pins echoed) is dropped.
    """

    def __init__(self, accepts: tuple):
        self.accepts = accepts
        self._handlers: Dict[str, Handler] = {}

    def on(self, message_type: str) -> Callable[[Handler], Handler]:
        if message_type not in self.accepts:
            raise ValueError(f"{message_type!r} is not routed on this side")

        def register(fn: Handler) -> Handler:
            self._handlers[message_type] = fn
            return fn

        return register

    def dispatch(self, data: Any) -> bool:
        message = decode_message(data)
        if message is None:
            return False
        handler = self._handlers.get(message.type)
        if handler is None or message.type not in self.accepts:
            return False
        handler(message)
        return True
