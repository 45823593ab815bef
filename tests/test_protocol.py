"""
Tests for daemon/protocol.py - frame codec and incremental frame buffer.
"""

import struct
import unittest

from vcce.core.errors import FrameTooLarge, MalformedPayload
from vcce.daemon.protocol import (
    FrameBuffer,
    decode_frame,
    encode_frame,
    make_event,
    make_response,
)


class TestFrameCodec(unittest.TestCase):
    """Test cases for encode_frame/decode_frame."""

    def test_encode_prefix_is_little_endian_payload_length(self):
        frame = encode_frame({"id": 1, "cmd": "listDir"})
        (length,) = struct.unpack("<I", frame[:4])
        self.assertEqual(length, len(frame) - 4)
        self.assertEqual(decode_frame(frame[4:]), {"id": 1, "cmd": "listDir"})

    def test_prefix_counts_bytes_not_characters(self):
        frame = encode_frame({"data": "héllo ✓"})
        (length,) = struct.unpack("<I", frame[:4])
        self.assertEqual(length, len(frame[4:]))
        self.assertGreater(length, len('{"data":"héllo ✓"}'))

    def test_decode_invalid_json_raises_malformed_payload(self):
        with self.assertRaises(MalformedPayload):
            decode_frame(b"{not json")

    def test_decode_invalid_utf8_raises_malformed_payload(self):
        with self.assertRaises(MalformedPayload):
            decode_frame(b"\xff\xfe\x00")

    def test_make_response_omits_missing_fields(self):
        self.assertEqual(make_response(3, True), {"id": 3, "ok": True})
        self.assertEqual(
            make_response(3, False, "boom", meta={"x": 1}),
            {"id": 3, "ok": False, "data": "boom", "meta": {"x": 1}},
        )
        self.assertEqual(make_response(3, True, None), {"id": 3, "ok": True, "data": None})

    def test_make_event_exit_carries_code(self):
        self.assertEqual(make_event("a", "exit", code=0), {"id": "a", "event": "exit", "code": 0})
        self.assertEqual(
            make_event("a", "stdout", data="hi"),
            {"id": "a", "event": "stdout", "data": "hi"},
        )


class TestFrameBuffer(unittest.TestCase):
    """Test cases for FrameBuffer reassembly."""

    def setUp(self):
        self.request = {"id": 42, "cmd": "readFile", "args": {"path": "/tmp/ü.txt"}}
        self.frame = encode_frame(self.request)

    def test_split_at_every_offset_yields_same_request(self):
        for offset in range(len(self.frame) + 1):
            buf = FrameBuffer()
            buf.feed(self.frame[:offset])
            first = list(buf.messages())
            buf.feed(self.frame[offset:])
            second = list(buf.messages())
            self.assertEqual(first + second, [self.request], f"split at {offset}")
            self.assertEqual(len(buf), 0)

    def test_byte_by_byte_delivery(self):
        buf = FrameBuffer()
        received = []
        for i in range(len(self.frame)):
            buf.feed(self.frame[i:i + 1])
            received.extend(buf.messages())
        self.assertEqual(received, [self.request])

    def test_coalesced_frames_all_yielded_from_one_chunk(self):
        requests = [{"id": i, "cmd": "isDir", "args": {"path": str(i)}} for i in range(5)]
        chunk = b"".join(encode_frame(r) for r in requests)

        buf = FrameBuffer()
        buf.feed(chunk)
        self.assertEqual(list(buf.messages()), requests)

    def test_partial_trailing_frame_is_retained(self):
        second = encode_frame({"id": 2})
        buf = FrameBuffer()
        buf.feed(self.frame + second[:5])

        self.assertEqual(list(buf.messages()), [self.request])
        self.assertEqual(len(buf), 5)

        buf.feed(second[5:])
        self.assertEqual(list(buf.messages()), [{"id": 2}])

    def test_zero_length_payload_is_malformed(self):
        buf = FrameBuffer()
        buf.feed(struct.pack("<I", 0))
        with self.assertRaises(MalformedPayload):
            list(buf.messages())

    def test_declared_length_over_limit_raises(self):
        buf = FrameBuffer(max_frame_bytes=16)
        buf.feed(struct.pack("<I", 17))
        with self.assertRaises(FrameTooLarge):
            list(buf.frames())

    def test_frames_is_restartable(self):
        buf = FrameBuffer()
        buf.feed(self.frame[:2])
        self.assertEqual(list(buf.frames()), [])
        self.assertEqual(list(buf.frames()), [])
        buf.feed(self.frame[2:])
        self.assertEqual(len(list(buf.frames())), 1)


if __name__ == "__main__":
    unittest.main()
