"""
Tests for stream framing

Tests cover:
- Splitting concatenated JSON objects
- Braces and escapes inside string values
- Reassembly of frames split across reads
- Isolation of malformed frames
- Frame size limits and reset
- Outbound encoding
"""
import json

import pytest

from wmtp.core.protocol.messages import Message
from wmtp.core.transport.framing import FrameDecoder, encode_message
from wmtp.utils.errors import FrameParseError, InvalidCommandError


class TestFrameBoundaries:
    """Tests for splitting a single chunk into frames"""

    def test_single_object(self):
        """Test a chunk holding one object yields one message"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'{"cmd":"HB","ts":1700000000}')

        assert len(messages) == 1
        assert messages[0].cmd == "HB"
        assert messages[0].ts == 1700000000

    def test_two_concatenated_objects(self):
        """Test back-to-back objects yield both messages in order"""
        first = {"status": "OK", "cmd": "SESSION_INIT", "session_token": "X", "authenticated": False}
        second = {"cmd": "HB", "ts": 42}
        decoder = FrameDecoder()

        messages = decoder.feed((json.dumps(first) + json.dumps(second)).encode())

        assert [m.to_dict() for m in messages] == [first, second]

    def test_objects_separated_by_whitespace(self):
        """Test whitespace between objects is not a frame"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'{"cmd":"PONG"}\n  {"cmd":"HB"}\r\n')

        assert [m.cmd for m in messages] == ["PONG", "HB"]
        assert decoder.stats.chars_discarded == 0

    def test_boundary_inside_string_is_ignored(self):
        """Test a literal }{ inside a string does not split the frame"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'{"status":"OK","cmd":"PONG","msg":"a}{b"}')

        assert len(messages) == 1
        assert messages[0].msg == "a}{b"

    def test_escaped_quote_inside_string(self):
        """Test escaped quotes keep the scanner inside the string"""
        payload = {"cmd": "PONG", "msg": 'say "}{" and \\ done'}
        decoder = FrameDecoder()

        messages = decoder.feed(json.dumps(payload).encode())

        assert len(messages) == 1
        assert messages[0].msg == payload["msg"]

    def test_nested_objects(self):
        """Test nested objects stay within their frame"""
        payload = {"status": "OK", "cmd": "MB_LIST", "data": {"mailboxes": [{"name": "INBOX"}, {"name": "Sent"}]}}
        decoder = FrameDecoder()

        messages = decoder.feed(json.dumps(payload).encode() + b'{"cmd":"HB"}')

        assert len(messages) == 2
        assert messages[0].data == payload["data"]

    def test_unknown_fields_are_preserved(self):
        """Test fields outside the model survive decoding"""
        decoder = FrameDecoder()
        message = decoder.feed(b'{"status":"OK","cmd":"PONG","uptime":12,"server_time":"now"}')[0]

        assert message.to_dict()["uptime"] == 12
        assert message.to_dict()["server_time"] == "now"

    def test_stray_characters_are_discarded(self):
        """Test characters outside any object are counted and skipped"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'xx{"cmd":"HB"}]')

        assert [m.cmd for m in messages] == ["HB"]
        assert decoder.stats.chars_discarded == 3


class TestCrossChunkReassembly:
    """Tests for frames split across reads"""

    def test_frame_split_in_two(self):
        """Test a frame split mid-object is reassembled"""
        decoder = FrameDecoder()

        assert decoder.feed(b'{"status":"OK","cmd":"AUTH_OK","ses') == []
        assert decoder.has_partial

        messages = decoder.feed(b'sion_token":"T","authenticated":true}')

        assert len(messages) == 1
        assert messages[0].session_token == "T"
        assert not decoder.has_partial

    def test_frame_fed_byte_by_byte(self):
        """Test reassembly works at every split point"""
        raw = b'{"cmd":"PONG","msg":"}{"}{"cmd":"HB","ts":7}'
        decoder = FrameDecoder()

        messages = []
        for i in range(len(raw)):
            messages.extend(decoder.feed(raw[i : i + 1]))

        assert [m.cmd for m in messages] == ["PONG", "HB"]
        assert messages[0].msg == "}{"

    def test_multibyte_character_split_across_reads(self):
        """Test a UTF-8 sequence split between reads is decoded intact"""
        raw = '{"cmd":"PONG","msg":"café ✓"}'.encode("utf-8")
        split = raw.index("é".encode("utf-8")) + 1
        decoder = FrameDecoder()

        messages = decoder.feed(raw[:split]) + decoder.feed(raw[split:])

        assert messages[0].msg == "café ✓"

    def test_completed_frame_followed_by_partial(self):
        """Test a chunk can complete one frame and start the next"""
        decoder = FrameDecoder()

        first = decoder.feed(b'{"cmd":"HB"}{"cmd":"PO')
        second = decoder.feed(b'NG"}')

        assert [m.cmd for m in first] == ["HB"]
        assert [m.cmd for m in second] == ["PONG"]


class TestMalformedFrames:
    """Tests for frames that cannot be decoded"""

    def test_malformed_frame_is_isolated(self):
        """Test one malformed and one good frame yield exactly one message"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'{"cmd": bad}{"status":"OK","cmd":"PONG"}')

        assert [m.cmd for m in messages] == ["PONG"]
        assert decoder.stats.frames_dropped == 1
        assert decoder.stats.frames_decoded == 1
        assert isinstance(decoder.last_error, FrameParseError)

    def test_unterminated_string_does_not_stall_decoder(self):
        """Test a frame with an unterminated string is dropped and later frames decode"""
        decoder = FrameDecoder()

        first = decoder.feed(b'{"cmd":"X}{"cmd":"PONG"}')
        second = decoder.feed(b'{"cmd":"HB","ts":1}')
        third = decoder.feed(b'{"status":"OK","cmd":"SESSION_INIT","session_token":"X"}')

        assert [m.cmd for m in first + second + third] == ["PONG", "HB", "SESSION_INIT"]
        assert decoder.stats.frames_dropped == 1
        assert isinstance(decoder.last_error, FrameParseError)
        assert not decoder.has_partial

    def test_unbalanced_brace_does_not_stall_decoder(self):
        """Test a frame with an extra opening brace is dropped and later frames decode"""
        decoder = FrameDecoder()

        first = decoder.feed(b'{"cmd":"X",{}{"cmd":"PONG"}')
        second = decoder.feed(b'{"cmd":"HB"}')

        assert [m.cmd for m in first + second] == ["PONG", "HB"]
        assert decoder.stats.frames_dropped == 1
        assert not decoder.has_partial

    def test_recovery_when_next_frame_arrives_later(self):
        """Test a stalled frame is dropped once the next frame completes in a later read"""
        decoder = FrameDecoder()

        assert decoder.feed(b'{"cmd":"X}{"cmd":"PO') == []
        messages = decoder.feed(b'NG"}')

        assert [m.cmd for m in messages] == ["PONG"]
        assert decoder.stats.frames_dropped == 1

    def test_boundary_in_string_across_reads_is_kept(self):
        """Test a }{ inside a string split across reads does not trigger a resync"""
        decoder = FrameDecoder()

        assert decoder.feed(b'{"cmd":"PONG","msg":"a}{}') == []
        messages = decoder.feed(b' b"}')

        assert [m.msg for m in messages] == ["a}{} b"]
        assert decoder.stats.frames_dropped == 0

    def test_wrong_field_type_drops_frame(self):
        """Test a frame with an invalid field type is dropped"""
        decoder = FrameDecoder()
        messages = decoder.feed(b'{"cmd":"AUTH_OK","authenticated":"maybe"}{"cmd":"HB"}')

        assert [m.cmd for m in messages] == ["HB"]
        assert decoder.stats.frames_dropped == 1

    def test_oversized_frame_in_one_chunk(self):
        """Test a complete frame over the limit is dropped"""
        decoder = FrameDecoder(max_frame_size=30)
        big = json.dumps({"cmd": "PONG", "msg": "x" * 40}).encode()

        messages = decoder.feed(big + b'{"cmd":"HB"}')

        assert [m.cmd for m in messages] == ["HB"]
        assert decoder.stats.frames_dropped == 1

    def test_oversized_partial_frame_is_discarded(self):
        """Test a partial frame over the limit is discarded until it closes"""
        decoder = FrameDecoder(max_frame_size=20)

        assert decoder.feed(b'{"msg":"' + b"x" * 30) == []
        messages = decoder.feed(b'xx"}{"cmd":"PING"}')

        assert [m.cmd for m in messages] == ["PING"]
        assert decoder.stats.frames_dropped == 1

    def test_reset_discards_partial_frame(self):
        """Test reset forgets the partial frame"""
        decoder = FrameDecoder()
        decoder.feed(b'{"cmd":"PO')

        decoder.reset()

        assert not decoder.has_partial
        assert decoder.stats.frames_dropped == 1
        assert [m.cmd for m in decoder.feed(b'{"cmd":"HB"}')] == ["HB"]


class TestEncodeMessage:
    """Tests for outbound serialization"""

    def test_string_passthrough(self):
        """Test pre-serialized text is sent unchanged"""
        assert encode_message('{"cmd": "PING"}') == b'{"cmd": "PING"}'

    def test_dict_is_compact_json(self):
        """Test dicts serialize to compact JSON"""
        encoded = encode_message({"cmd": "AUTH", "data": {"email": "a@b.com"}})
        assert encoded == b'{"cmd":"AUTH","data":{"email":"a@b.com"}}'

    def test_message_omits_unset_fields(self):
        """Test Message serialization leaves out empty fields"""
        encoded = encode_message(Message.request("RESUME", {"token": "T"}))
        assert json.loads(encoded) == {"cmd": "RESUME", "data": {"token": "T"}}

    def test_non_ascii_is_utf8(self):
        """Test non-ASCII text is encoded as UTF-8"""
        encoded = encode_message({"cmd": "AUTH", "data": {"email": "jörg@example.com"}})
        assert "jörg".encode("utf-8") in encoded

    def test_unsupported_type_raises(self):
        """Test unsupported message types are rejected"""
        with pytest.raises(InvalidCommandError):
            encode_message(42)
