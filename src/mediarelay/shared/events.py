"""Typed messages exchanged between the host and isolated units.

Every line a unit writes to stdout (and every line the host writes to a
unit's stdin) is one JSON object validated against the closed unions below.
Field names on the wire are camelCase (``videoId``, ``correlationId``).
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from mediarelay.shared.models import Candidate, UploadedVideo


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── Engine events ───────────────────────────────────────────────


class StatusEvent(_Message):
    type: Literal["status"] = "status"
    video_id: str | None = Field(default=None, alias="videoId")
    status: str
    message: str | None = None


class ProgressEvent(_Message):
    type: Literal["progress"] = "progress"
    video_id: str | None = Field(default=None, alias="videoId")
    progress: float = Field(ge=0.0, le=100.0)
    speed: float | None = None
    eta: float | None = None
    size: int | None = None
    downloaded: int | None = None
    found: int | None = None
    phase: str | None = None


class CompleteEvent(_Message):
    type: Literal["complete"] = "complete"
    video_id: str | None = Field(default=None, alias="videoId")
    success: bool
    skipped: bool = False
    status: str | None = None
    path: str | None = None
    size: int | None = None
    error: str | None = None
    candidates: list[Candidate] | None = None
    videos: list[UploadedVideo] | None = None
    page: int | None = None
    has_more: bool | None = Field(default=None, alias="hasMore")

    @model_validator(mode="after")
    def _failure_needs_reason(self) -> CompleteEvent:
        if not self.success and not (self.error or "").strip():
            raise ValueError("unsuccessful complete event requires an error reason")
        return self


class ErrorEvent(_Message):
    type: Literal["error"] = "error"
    video_id: str | None = Field(default=None, alias="videoId")
    error: str


# ── RPC envelopes ───────────────────────────────────────────────


class CallEnvelope(_Message):
    type: Literal["call"] = "call"
    channel: str
    args: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = Field(alias="correlationId")


class ResultEnvelope(_Message):
    type: Literal["result"] = "result"
    correlation_id: str = Field(alias="correlationId")
    result: Any = None
    error: str | None = None


# ── Unit control ────────────────────────────────────────────────


class StartMessage(_Message):
    type: Literal["start"] = "start"
    payload: dict[str, Any] = Field(default_factory=dict)


class TerminateMessage(_Message):
    type: Literal["terminate"] = "terminate"


Event = Annotated[
    Union[StatusEvent, ProgressEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

Message = Annotated[
    Union[
        StatusEvent,
        ProgressEvent,
        CompleteEvent,
        ErrorEvent,
        CallEnvelope,
        ResultEnvelope,
        StartMessage,
        TerminateMessage,
    ],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Any] = TypeAdapter(Message)


def parse_message(raw: str | bytes | dict[str, Any]) -> Any:
    """Validate one wire message. Raises ``pydantic.ValidationError`` or ``ValueError``."""
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    return _message_adapter.validate_python(raw)


def encode_message(message: _Message) -> bytes:
    """Serialize a message as one newline-terminated JSON line."""
    return (json.dumps(message.to_wire(), ensure_ascii=False) + "\n").encode("utf-8")
