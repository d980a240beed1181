"""
Request and reply messages for the newline-delimited JSON worker transport.
"""

import time
import orjson
from dataclasses import dataclass, field
from typing import Any, Optional, Dict

from .errors import EncodeError, FrameParseError

FRAME_TERMINATOR = b"\n"


def _filter_none(obj: Any) -> Any:
    """Remove None values from dict for optional field handling."""
    if isinstance(obj, dict):
        return {k: v for k, v in obj.items() if v is not None}
    return obj


@dataclass(frozen=True)
class Request:
    """
    One outgoing request.

    Fields:
    - id: str = correlation id supplied by the upstream event source
    - payload: Any = opaque JSON value (the event)
    - context: dict = optional invocation context
    - submitted_at: float = wall clock arrival time (unix seconds)
    - submitted_at_monotonic: float = monotonic arrival time (seconds)
    """

    id: str
    payload: Any
    context: Optional[Dict[str, Any]] = None
    submitted_at: float = field(default_factory=time.time)
    submitted_at_monotonic: float = field(default_factory=time.monotonic)

    @classmethod
    def create(
        cls,
        request_id: str,
        payload: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> "Request":
        """Create a request stamped with the current arrival time."""
        if not isinstance(request_id, str) or not request_id:
            raise ValueError(f"Request id must be a non-empty string, got {request_id!r}")
        return cls(id=request_id, payload=payload, context=context)

    def to_dict(self) -> dict:
        """Convert to the wire object (context omitted when absent)."""
        data = _filter_none(
            {
                "id": self.id,
                "context": self.context,
                "submitted_at": self.submitted_at,
                "submitted_at_monotonic": self.submitted_at_monotonic,
            }
        )
        # payload is opaque: a null payload still goes on the wire
        data["payload"] = self.payload
        return data

    def encode(self) -> bytes:
        """Encode as a single newline-terminated JSON line."""
        try:
            return orjson.dumps(self.to_dict(), option=orjson.OPT_APPEND_NEWLINE)
        except orjson.JSONEncodeError as e:
            raise EncodeError(f"Request {self.id} could not be encoded: {e}") from e


def encode_request(
    request_id: str,
    payload: Any,
    context: Optional[Dict[str, Any]] = None,
) -> bytes:
    """Build a request and return its framed line."""
    return Request.create(request_id, payload, context).encode()


@dataclass(frozen=True)
class Reply:
    """One reply produced by the worker."""

    id: str
    payload: Any

    @classmethod
    def from_frame(cls, value: Any, raw: bytes = b"") -> "Reply":
        """
        Build a reply from a parsed frame.

        The payload is the frame's "payload" member when present, otherwise the
        whole frame object without its id.

        Raises:
            FrameParseError: If the frame is not an object with a string id
        """
        if not isinstance(value, dict):
            raise FrameParseError(
                f"Expected JSON object in reply frame, got {type(value).__name__}",
                frame=raw,
            )

        reply_id = value.get("id")
        if not isinstance(reply_id, str) or not reply_id:
            raise FrameParseError("Reply frame has no string id", frame=raw)

        if "payload" in value:
            payload = value["payload"]
        else:
            payload = {k: v for k, v in value.items() if k != "id"}
        return cls(id=reply_id, payload=payload)

    def encode(self) -> bytes:
        """Encode as a single newline-terminated JSON line."""
        try:
            return orjson.dumps(
                {"id": self.id, "payload": self.payload},
                option=orjson.OPT_APPEND_NEWLINE,
            )
        except orjson.JSONEncodeError as e:
            raise EncodeError(f"Reply {self.id} could not be encoded: {e}") from e
