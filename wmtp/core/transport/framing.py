"""Message framing for the WMTP control stream.

The server writes bare JSON objects back to back on a single stream, with no
length prefix or delimiter. ``FrameDecoder`` recovers the object boundaries by
scanning for balanced braces while tracking string and escape state, so
braces (including ``}{``) inside string values never split a frame. Data left
over at the end of a read is kept and completed by later reads.

A malformed frame (an unterminated string, an unbalanced brace) would leave
the scanner waiting for a close that never comes. While a frame is pending,
every ``}`` followed by ``{`` is checked as a resync point: if a complete
message starts at that ``{``, the text before it is dropped as malformed and
scanning restarts there.
"""

import codecs
import json
import re
from dataclasses import asdict, dataclass
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from wmtp.core.protocol.messages import Message
from wmtp.utils.errors import FrameParseError, InvalidCommandError
from wmtp.utils.logging import get_logger

from .constants import DEFAULT_MAX_FRAME_SIZE

logger = get_logger(__name__)

OutboundMessage = Union[Message, Mapping[str, Any], str]

_RESYNC_POINT = re.compile(r"\}\s*(?=\{)")


@dataclass
class FramingStats:
    """Counters kept by a FrameDecoder."""

    frames_decoded: int = 0
    frames_dropped: int = 0
    chars_discarded: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class FrameDecoder:
    """Incrementally splits a byte stream into WMTP messages."""

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self.stats = FramingStats()
        self.last_error: Optional[FrameParseError] = None
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reset_scan()

    def _reset_scan(self) -> None:
        self._partial = ""
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._oversized = False

    @property
    def has_partial(self) -> bool:
        """True while a frame has been started but not completed."""
        return self._depth > 0

    def feed(self, data: Union[bytes, str]) -> List[Message]:
        """Consume a chunk of stream data.

        Args:
            data: Raw bytes from the stream, or already decoded text.

        Returns:
            List[Message]: Messages completed by this chunk, in stream order.
        """
        text = data if isinstance(data, str) else self._utf8.decode(data)

        frames: List[str] = []
        self._scan(text, frames)

        while self._depth > 0 and not self._oversized:
            restart = self._find_resync_point(self._partial)
            if restart is None:
                break
            pending = self._partial
            self._drop_malformed(pending[:restart].rstrip())
            self._reset_scan()
            self._scan(pending[restart:], frames)

        return [m for m in (self._parse(frame) for frame in frames) if m is not None]

    def _scan(self, text: str, frames: List[str]) -> None:
        """Advance the scanner over ``text``, collecting completed frames."""

        start: Optional[int] = 0 if self._depth else None

        for i, ch in enumerate(text):
            if self._depth == 0:
                if ch == "{":
                    self._depth = 1
                    start = i
                elif not ch.isspace():
                    self.stats.chars_discarded += 1
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
                continue

            if ch == '"':
                self._in_string = True
            elif ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    self._complete(text[start : i + 1], frames)
                    start = None

        if self._depth > 0 and not self._oversized:
            self._partial += text[start:]
            if len(self._partial) > self.max_frame_size:
                logger.warning(
                    f"Discarding partial frame larger than {self.max_frame_size} characters"
                )
                self._partial = ""
                self._oversized = True

    def _find_resync_point(self, pending: str) -> Optional[int]:
        """Offset in ``pending`` where a complete message starts after a ``}``.

        An object with at least one key contains an unescaped quote, so it
        cannot lie inside a valid string value.
        """
        for match in _RESYNC_POINT.finditer(pending, 1):
            restart = match.end()
            trial = FrameDecoder(self.max_frame_size)
            found: List[str] = []
            trial._scan(pending[restart:], found)
            if found and _is_message(found[0]):
                return restart
        return None

    def _drop_malformed(self, frame: str) -> None:
        error = FrameParseError(
            "Dropping malformed frame: unterminated before the next object",
            details={"frame": frame[:200]},
        )
        self.last_error = error
        self.stats.frames_dropped += 1
        logger.warning(error.message)

    def _complete(self, tail: str, frames: List[str]) -> None:
        """Close the current frame, appending it to ``frames`` unless dropped."""

        frame = self._partial + tail
        self._partial = ""

        if self._oversized:
            self._oversized = False
            self.stats.frames_dropped += 1
            return

        if len(frame) > self.max_frame_size:
            logger.warning(
                f"Dropping frame of {len(frame)} characters "
                f"(limit {self.max_frame_size})"
            )
            self.stats.frames_dropped += 1
            return

        frames.append(frame)

    def _parse(self, frame: str) -> Optional[Message]:
        try:
            message = Message.model_validate(json.loads(frame))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            error = FrameParseError(
                f"Dropping malformed frame: {e}",
                details={"frame": frame[:200]},
            )
            self.last_error = error
            self.stats.frames_dropped += 1
            logger.warning(error.message)
            return None

        self.stats.frames_decoded += 1
        return message

    def reset(self) -> None:
        """Forget any partial frame and pending UTF-8 bytes."""

        if self._depth > 0:
            logger.debug(
                f"Discarding incomplete frame ({len(self._partial)} characters) on reset"
            )
            self.stats.frames_dropped += 1

        self._utf8.reset()
        self._reset_scan()


def _is_message(frame: str) -> bool:
    try:
        data = json.loads(frame)
        if not isinstance(data, dict) or not data:
            return False
        Message.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError):
        return False
    return True


def encode_message(message: OutboundMessage) -> bytes:
    """Serialize an outbound message to UTF-8 JSON.

    Strings are assumed to be serialized already and are sent unchanged.
    """
    if isinstance(message, str):
        text = message
    elif isinstance(message, Message):
        text = message.to_wire()
    elif isinstance(message, Mapping):
        text = json.dumps(dict(message), ensure_ascii=False, separators=(",", ":"))
    else:
        raise InvalidCommandError(
            f"Cannot encode message of type {type(message).__name__}"
        )

    return text.encode("utf-8")
