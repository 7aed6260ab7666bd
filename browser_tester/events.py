"""Messages exchanged with sandboxes over the signal channel."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

# Identifier of the single sandbox that runs every file in shared mode.
ID_ALL = "__tester_all__"


class DoneEvent(BaseModel):
    """One or more files finished inside sandbox ``id``."""
    type: Literal["done"] = "done"
    filenames: list[str]
    id: str


class ErrorEvent(BaseModel):
    """Unrecoverable failure at the top level of sandbox ``id``."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["error"] = "error"
    error: Any = None
    error_type: str = Field(default="Unhandled Error", alias="errorType")
    files: list[str] = Field(default_factory=list)
    id: str


class ViewportEvent(BaseModel):
    """Sandbox ``id`` asks to be resized before it proceeds."""
    type: Literal["viewport"] = "viewport"
    width: int
    height: int
    id: str


class ViewportAckEvent(BaseModel):
    """Acknowledgement of a resize request, posted back to the sandbox."""
    type: Literal["viewport:done", "viewport:fail"]
    id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def done(cls, sandbox_id: str) -> "ViewportAckEvent":
        return cls(type="viewport:done", id=sandbox_id)

    @classmethod
    def fail(cls, sandbox_id: str, error: str) -> "ViewportAckEvent":
        return cls(type="viewport:fail", id=sandbox_id, error=error)


class UnknownEvent(BaseModel):
    """Anything that is not one of the known events."""
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


ChannelEvent = Annotated[
    Union[DoneEvent, ErrorEvent, ViewportEvent, ViewportAckEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(ChannelEvent)

AnyEvent = Union[DoneEvent, ErrorEvent, ViewportEvent, ViewportAckEvent, UnknownEvent]


def parse_event(payload: Any) -> AnyEvent:
    """Turn a raw channel payload into an event model.

    Malformed payloads and unrecognised types become ``UnknownEvent`` so the
    listener can report them instead of crashing the channel.
    """
    if isinstance(payload, (DoneEvent, ErrorEvent, ViewportEvent, ViewportAckEvent, UnknownEvent)):
        return payload
    if not isinstance(payload, Mapping):
        return UnknownEvent(type=type(payload).__name__, payload={"value": payload})
    try:
        return _event_adapter.validate_python(dict(payload))
    except ValidationError:
        return UnknownEvent(type=str(payload.get("type")), payload=dict(payload))


def to_wire(event: BaseModel) -> dict[str, Any]:
    """Serialize an event the way sandboxes expect it on the channel."""
    if isinstance(event, UnknownEvent):
        return dict(event.payload)
    return event.model_dump(by_alias=True, exclude_none=True)
