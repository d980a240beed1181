"""
Tests for FrameReader.

Tests cover:
- Frames split across chunks, including a split terminator
- Several frames in one chunk
- Malformed frames dropped without losing the next one
- Blank lines and CRLF terminators
- Oversized frames
- End of stream inside a frame
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from linebridge.core.framing import FrameReader
from linebridge.core.errors import FrameParseError


def values(frames):
    return [frame.value for frame in frames if frame.ok]


class TestSplitFrames:
    """A frame only completes when its terminator arrives."""

    def test_frame_split_in_two(self):
        reader = FrameReader()
        assert reader.feed(b'{"id":"a","pay') == []
        assert reader.buffered == len(b'{"id":"a","pay')

        frames = reader.feed(b'load":1}\n')
        assert values(frames) == [{"id": "a", "payload": 1}]
        assert reader.buffered == 0

    def test_terminator_in_its_own_chunk(self):
        reader = FrameReader()
        assert reader.feed(b'{"id":"a","payload":1}') == []
        assert values(reader.feed(b"\n")) == [{"id": "a", "payload": 1}]

    def test_byte_by_byte(self):
        reader = FrameReader()
        data = b'{"id":"a","payload":"x"}\n{"id":"b","payload":"y"}\n'
        frames = []
        for i in range(len(data)):
            frames.extend(reader.feed(data[i : i + 1]))
        assert [v["id"] for v in values(frames)] == ["a", "b"]

    def test_empty_chunk(self):
        reader = FrameReader()
        assert reader.feed(b"") == []


class TestMultipleFrames:
    """Every terminator in a chunk is processed."""

    def test_two_frames_one_chunk(self):
        reader = FrameReader()
        frames = reader.feed(b'{"id":"b","payload":2}\n{"id":"a","payload":1}\n')
        assert [v["id"] for v in values(frames)] == ["b", "a"]

    def test_frames_with_trailing_partial(self):
        reader = FrameReader()
        frames = reader.feed(b'{"id":"a"}\n{"id":"b"}\n{"id":')
        assert [v["id"] for v in values(frames)] == ["a", "b"]
        assert values(reader.feed(b'"c"}\n')) == [{"id": "c"}]

    def test_many_frames(self):
        reader = FrameReader()
        data = b"".join(b'{"id":"%d"}\n' % i for i in range(100))
        frames = reader.feed(data)
        assert len(frames) == 100
        assert all(frame.ok for frame in frames)


class TestMalformedFrames:
    """A bad frame is reported and skipped; the stream keeps going."""

    def test_malformed_then_valid(self):
        reader = FrameReader()
        frames = reader.feed(b'not json\n{"id":"a","payload":1}\n')

        assert len(frames) == 2
        assert not frames[0].ok
        assert isinstance(frames[0].error, FrameParseError)
        assert frames[0].error.frame == b"not json"
        assert frames[1].ok
        assert frames[1].value == {"id": "a", "payload": 1}

    def test_truncated_json(self):
        reader = FrameReader()
        frames = reader.feed(b'{"id":"a",\n')
        assert len(frames) == 1
        assert not frames[0].ok

    def test_non_object_json_is_still_a_frame(self):
        # Shape checks happen when building the reply, not here
        reader = FrameReader()
        assert values(reader.feed(b"[1,2]\n")) == [[1, 2]]


class TestWhitespace:
    def test_blank_lines_skipped(self):
        reader = FrameReader()
        frames = reader.feed(b'\n\n  \n{"id":"a"}\n\n')
        assert values(frames) == [{"id": "a"}]
        assert len(frames) == 1

    def test_crlf_terminators(self):
        reader = FrameReader()
        frames = reader.feed(b'{"id":"a"}\r\n{"id":"b"}\r\n')
        assert [v["id"] for v in values(frames)] == ["a", "b"]


class TestOversizedFrames:
    def test_terminated_oversized_frame(self):
        reader = FrameReader(max_frame_bytes=16)
        frames = reader.feed(b'{"id":"a","payload":"0123456789"}\n{"id":"b"}\n')

        assert len(frames) == 2
        assert not frames[0].ok
        assert "exceeds 16 bytes" in str(frames[0].error)
        assert frames[1].value == {"id": "b"}

    def test_unterminated_oversized_frame_is_discarded(self):
        reader = FrameReader(max_frame_bytes=16)

        frames = reader.feed(b"x" * 20)
        assert len(frames) == 1
        assert not frames[0].ok
        assert reader.buffered == 0

        # Rest of the same frame: no second error
        assert reader.feed(b"y" * 20) == []

        # Terminator ends the discarded frame; the next one parses
        assert values(reader.feed(b'zz\n{"id":"b"}\n')) == [{"id": "b"}]


class TestFinish:
    def test_finish_with_partial_frame(self):
        reader = FrameReader()
        reader.feed(b'{"id":"a"')
        frames = reader.finish()

        assert len(frames) == 1
        assert not frames[0].ok
        assert frames[0].raw == b'{"id":"a"'
        assert reader.buffered == 0

    def test_finish_clean(self):
        reader = FrameReader()
        reader.feed(b'{"id":"a"}\n')
        assert reader.finish() == []

    def test_finish_whitespace_only(self):
        reader = FrameReader()
        reader.feed(b"  ")
        assert reader.finish() == []

    def test_reset_drops_partial(self):
        reader = FrameReader()
        reader.feed(b'{"id":')
        reader.reset()
        assert values(reader.feed(b'{"id":"b"}\n')) == [{"id": "b"}]
