"""
Frame extraction for the worker output stream.

The transport gives no guarantee that one read equals one frame: a chunk may
hold part of a frame, exactly one frame, or several frames back to back. The
reader scans every chunk for terminators and keeps the trailing partial frame
buffered until its terminator arrives.
"""

import orjson
from dataclasses import dataclass
from typing import Any, List, Optional

from .errors import FrameParseError
from .message import FRAME_TERMINATOR

DEFAULT_MAX_FRAME_BYTES = 10 * 1024 * 1024


@dataclass
class Frame:
    """One complete line taken off the stream, parsed or failed."""

    raw: bytes
    value: Any = None
    error: Optional[FrameParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FrameReader:
    """
    Incremental newline-delimited JSON decoder.

    Usage:
        reader = FrameReader()
        for frame in reader.feed(chunk):
            if frame.ok:
                handle(frame.value)
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()
        # Set after an oversized frame: drop bytes up to the next terminator
        self._discarding = False

    @property
    def buffered(self) -> int:
        """Number of bytes held for an unterminated frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Frame]:
        """Append a chunk and return every frame it completes (possibly none)."""
        frames: List[Frame] = []
        if not chunk:
            return frames

        self._buffer.extend(chunk)
        start = 0
        while True:
            end = self._buffer.find(FRAME_TERMINATOR, start)
            if end < 0:
                break
            line = bytes(self._buffer[start:end])
            start = end + 1

            if self._discarding:
                # Tail of an oversized frame
                self._discarding = False
                continue

            if len(line) > self.max_frame_bytes:
                frames.append(self._oversized(line))
                continue

            frame = self._parse(line)
            if frame is not None:
                frames.append(frame)

        del self._buffer[:start]

        if len(self._buffer) > self.max_frame_bytes:
            if not self._discarding:
                frames.append(self._oversized(bytes(self._buffer)))
                self._discarding = True
            self._buffer.clear()

        return frames

    def finish(self) -> List[Frame]:
        """Flush at end of stream. A leftover partial frame is an error."""
        frames: List[Frame] = []
        if self._buffer.strip() and not self._discarding:
            raw = bytes(self._buffer)
            frames.append(
                Frame(
                    raw=raw,
                    error=FrameParseError(
                        "Stream ended inside an unterminated frame", frame=raw
                    ),
                )
            )
        self.reset()
        return frames

    def reset(self):
        """Drop any buffered partial frame."""
        self._buffer.clear()
        self._discarding = False

    def _oversized(self, data: bytes) -> Frame:
        head = data[:64]
        return Frame(
            raw=head,
            error=FrameParseError(
                f"Frame exceeds {self.max_frame_bytes} bytes", frame=head
            ),
        )

    def _parse(self, line: bytes) -> Optional[Frame]:
        if not line.strip():
            return None
        try:
            return Frame(raw=line, value=orjson.loads(line))
        except orjson.JSONDecodeError as e:
            return Frame(
                raw=line,
                error=FrameParseError(f"Malformed JSON frame: {e}", frame=line),
            )
