"""Typed payloads carried by a stage execution stream.

Each ``data:`` payload of the stage execution stream is a JSON object with
a ``type`` discriminant:

- ``thought|action|result|error`` → ``{type, content}``
- ``progress`` → ``{type, progress: 0-100, step?}``
- ``deliverable`` → ``{type, key, url}``
- ``complete`` → ``{type}``

``parse_task_event`` never raises. It returns a ``ParseResult`` that holds
either the decoded event or a description of why the payload was rejected,
so callers decide explicitly to skip rather than abort.
"""

from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class NarrationEvent(BaseModel):
    """Narrated progress to append to the task's stream output."""

    type: Literal["thought", "action", "result", "error"]
    content: str


class ProgressEvent(BaseModel):
    """Progress percentage with an optional human-readable step."""

    type: Literal["progress"]
    progress: float = Field(..., ge=0, le=100)
    step: Optional[str] = None


class DeliverableEvent(BaseModel):
    """A stage artifact has been produced at ``url``."""

    type: Literal["deliverable"]
    key: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class CompleteEvent(BaseModel):
    """The remote executor finished the stage."""

    type: Literal["complete"]


TaskStreamEvent = Annotated[
    Union[NarrationEvent, ProgressEvent, DeliverableEvent, CompleteEvent],
    Field(discriminator="type"),
]

_TASK_EVENT_ADAPTER: TypeAdapter = TypeAdapter(TaskStreamEvent)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of decoding one stream payload.

    Attributes:
        raw: The raw payload text.
        event: The decoded event, or None on failure.
        error: Why the payload was rejected, or None on success.
    """

    raw: str
    event: Optional[
        Union[NarrationEvent, ProgressEvent, DeliverableEvent, CompleteEvent]
    ] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.event is not None


def parse_task_event(data: str) -> ParseResult:
    """Decode a JSON stream payload into a typed event.

    Args:
        data: The ``data:`` text of one server-sent event.

    Returns:
        ParseResult with ``event`` set on success, ``error`` set otherwise.

    Example:
        >>> parse_task_event('{"type": "complete"}').ok
        True
        >>> parse_task_event('not json').ok
        False
    """
    try:
        event = _TASK_EVENT_ADAPTER.validate_json(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        return ParseResult(raw=data, error=first.get("msg", str(exc)))
    return ParseResult(raw=data, event=event)
