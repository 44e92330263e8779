"""Frame I/O - Reading and Writing Native Messaging Frames

This module provides length-prefixed JSON frame encoding/decoding over stdio pipes.

## Wire Format

```
┌─────────────────────────────────────────────────────────┐
│  4 bytes: u32 little-endian length                      │
├─────────────────────────────────────────────────────────┤
│  N bytes: UTF-8 JSON object                             │
└─────────────────────────────────────────────────────────┘
```

Inbound bytes arrive in arbitrary fragments. `FrameDecoder` accumulates them and
yields one event per complete frame. A header that cannot be a valid length is
treated as stream corruption and handed to `resynchronize`, a best-effort and
lossy recovery step that never raises.
"""

import asyncio
import errno
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Dict, Iterator, Optional, Union

from download_router.frame import (
    JSON_OBJECT_START,
    LENGTH_PREFIX_SIZE,
    MAX_FRAME,
    REPLACEMENT_MARKER,
    RESYNC_SCAN_LIMIT,
)


logger = logging.getLogger(__name__)


class FramingError(Exception):
    """Base framing error"""
    pass


class EncodeError(FramingError):
    """JSON encoding error"""
    pass


class DecodeError(FramingError):
    """JSON decoding error"""
    pass


class FrameTooLargeError(FramingError):
    """Frame exceeds size limits"""
    def __init__(self, size: int, max_size: int):
        super().__init__(f"Frame too large: {size} bytes (max {max_size})")
        self.size = size
        self.max = max_size


class UnexpectedEofError(FramingError):
    """Unexpected end of stream"""
    pass


class ProtocolError(FramingError):
    """Protocol error"""
    pass


class TransportError(FramingError):
    """Output stream failed for a reason other than the peer going away"""
    pass


def encode_message(message: Dict[str, Any], max_frame: int = MAX_FRAME) -> bytes:
    """Encode a message to a length-prefixed frame

    Args:
        message: JSON-serializable dict
        max_frame: Maximum payload size

    Returns:
        Frame bytes: 4-byte little-endian length followed by UTF-8 JSON

    Raises:
        EncodeError: If the message cannot be serialized
        FrameTooLargeError: If the payload exceeds max_frame
    """
    try:
        payload = json.dumps(message, ensure_ascii=False, allow_nan=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"JSON encoding failed: {e}")

    if len(payload) > max_frame:
        raise FrameTooLargeError(len(payload), max_frame)

    return len(payload).to_bytes(LENGTH_PREFIX_SIZE, byteorder="little") + payload


def decode_payload(payload: bytes) -> Dict[str, Any]:
    """Decode a frame payload

    Args:
        payload: UTF-8 JSON bytes (without the length prefix)

    Returns:
        Decoded message dict

    Raises:
        DecodeError: If the payload is not UTF-8, not JSON, or not a JSON object
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"payload is not valid UTF-8: {e}")

    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"JSON decoding failed: {e}")

    if not isinstance(message, dict):
        raise DecodeError("expected JSON object")

    return message


def read_length(buffer: Union[bytes, bytearray], offset: int = 0) -> int:
    """Read a little-endian u32 length prefix at offset"""
    return int.from_bytes(buffer[offset:offset + LENGTH_PREFIX_SIZE], byteorder="little")


# =============================================================================
# Resync
# =============================================================================


class ResyncOutcome(Enum):
    """What the resync step decided"""
    RESYNCED = "resynced"  # A complete plausible frame starts at `dropped`
    WAITING = "waiting"  # Need more data; keep bytes from `dropped` on
    RESET = "reset"  # Nothing plausible; discard the whole buffer


@dataclass
class ResyncResult:
    """Result of a resync attempt"""
    outcome: ResyncOutcome
    dropped: int  # Bytes to discard from the head of the buffer


def resynchronize(buffer: Union[bytes, bytearray], max_frame: int = MAX_FRAME) -> ResyncResult:
    """Find the next plausible frame start in a corrupted buffer.

    Browsers occasionally push the byte stream through a text decoder, which turns
    invalid byte sequences (most often a length prefix >= 0x80) into the 3-byte
    replacement marker. When the marker sits at the head of the buffer it is
    skipped together with any zero bytes following it. The next RESYNC_SCAN_LIMIT
    offsets are then probed for a length 0 < n <= max_frame immediately followed
    by '{'.

    Best-effort and lossy: bytes before the candidate are lost, and when no
    candidate exists the whole buffer is. Never raises.

    Args:
        buffer: Accumulated bytes, head presumed corrupted
        max_frame: Maximum plausible frame length

    Returns:
        ResyncResult telling the caller how many bytes to drop and whether to
        continue decoding, wait for more data, or reset
    """
    start = 0
    if buffer[:len(REPLACEMENT_MARKER)] == REPLACEMENT_MARKER:
        start = len(REPLACEMENT_MARKER)
        while start < len(buffer) and buffer[start] == 0:
            start += 1

    for pos in range(start, start + RESYNC_SCAN_LIMIT):
        if pos + LENGTH_PREFIX_SIZE + 1 > len(buffer):
            # Window not fully buffered yet
            return ResyncResult(ResyncOutcome.WAITING, 0)

        length = read_length(buffer, pos)
        if 0 < length <= max_frame and buffer[pos + LENGTH_PREFIX_SIZE] == JSON_OBJECT_START:
            if len(buffer) - pos >= LENGTH_PREFIX_SIZE + length:
                return ResyncResult(ResyncOutcome.RESYNCED, pos)
            return ResyncResult(ResyncOutcome.WAITING, pos)

    return ResyncResult(ResyncOutcome.RESET, len(buffer))


# =============================================================================
# Frame decoder
# =============================================================================


@dataclass
class DecodedMessage:
    """A complete frame decoded to a JSON object"""
    message: Dict[str, Any]


@dataclass
class MalformedFrame:
    """A complete frame whose payload is not a JSON object"""
    error: str
    size: int


DecodeEvent = Union[DecodedMessage, MalformedFrame]


class FrameDecoder:
    """Accumulating frame decoder

    Owns the accumulation buffer. Bytes are appended in whatever fragments the
    pipe delivers; complete frames come out in arrival order.
    """

    def __init__(self, max_frame: int = MAX_FRAME):
        """Create a new decoder

        Args:
            max_frame: Maximum accepted frame payload size
        """
        self.max_frame = max_frame
        self._buffer = bytearray()
        self._decoding = False
        self.frames_decoded = 0
        self.bytes_discarded = 0

    def append(self, data: bytes) -> Iterator[DecodeEvent]:
        """Append bytes and decode every frame that is now complete

        Args:
            data: Newly received bytes

        Returns:
            Iterator of decode events, finite for this call

        Raises:
            ProtocolError: If called while a previous pass is still being iterated
        """
        if self._decoding:
            raise ProtocolError("re-entrant append while decoding")
        self._buffer.extend(data)
        return self._drain()

    def _drain(self) -> Iterator[DecodeEvent]:
        self._decoding = True
        try:
            buffer = self._buffer
            while len(buffer) >= LENGTH_PREFIX_SIZE:
                length = read_length(buffer)

                if length == 0 or length > self.max_frame:
                    if not self._resync():
                        return
                    continue

                frame_end = LENGTH_PREFIX_SIZE + length
                if len(buffer) < frame_end:
                    return

                payload = bytes(buffer[LENGTH_PREFIX_SIZE:frame_end])
                del buffer[:frame_end]

                try:
                    message = decode_payload(payload)
                except DecodeError as e:
                    logger.warning("Malformed frame (%d bytes): %s", length, e)
                    yield MalformedFrame(error=str(e), size=length)
                    continue

                self.frames_decoded += 1
                yield DecodedMessage(message)
        finally:
            self._decoding = False

    def _resync(self) -> bool:
        """Run the resync step on the buffer; True if decoding can continue"""
        result = resynchronize(self._buffer, self.max_frame)

        if result.outcome is ResyncOutcome.RESET:
            logger.warning(
                "Stream corrupted, no frame boundary found: discarding %d buffered bytes",
                len(self._buffer),
            )
            self.bytes_discarded += len(self._buffer)
            self._buffer.clear()
            return False

        if result.dropped:
            logger.warning("Stream corrupted: skipped %d bytes to next frame boundary", result.dropped)
            self.bytes_discarded += result.dropped
            del self._buffer[:result.dropped]

        return result.outcome is ResyncOutcome.RESYNCED

    def reset(self) -> None:
        """Drop any partially received frame"""
        self._buffer.clear()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their frame"""
        return len(self._buffer)


# =============================================================================
# Frame writer
# =============================================================================


def _is_peer_gone(error: OSError) -> bool:
    if isinstance(error, (BrokenPipeError, ConnectionResetError)):
        return True
    return error.errno in (errno.EPIPE, errno.ECONNRESET, errno.EINVAL)


class FrameWriter:
    """Frame writer over a binary output stream

    Each frame goes out in a single write followed by a flush, under a lock, so
    nothing can interleave inside a frame.
    """

    def __init__(self, writer: BinaryIO, max_frame: int = MAX_FRAME):
        """Create a new frame writer

        Args:
            writer: Binary output stream
            max_frame: Maximum payload size
        """
        self.writer = writer
        self.max_frame = max_frame
        self.closed = False
        self._lock = threading.Lock()

    def write(self, message: Dict[str, Any]) -> bool:
        """Write one message as a frame

        Args:
            message: Response dict

        Returns:
            True if written, False if the peer has already closed the channel

        Raises:
            EncodeError: If the message cannot be serialized
            FrameTooLargeError: If the message exceeds max_frame
            TransportError: If the write fails for another reason
        """
        data = encode_message(message, self.max_frame)

        with self._lock:
            if self.closed:
                logger.warning("Output closed, dropping %d byte response", len(data))
                return False
            try:
                self.writer.write(data)
                self.writer.flush()
            except OSError as e:
                if _is_peer_gone(e):
                    self.closed = True
                    logger.warning("Peer closed the channel, response lost: %s", e)
                    return False
                raise TransportError(f"Write failed: {e}")
            except ValueError as e:
                # Write on a closed file object
                self.closed = True
                logger.warning("Output stream closed, response lost: %s", e)
                return False

        return True


# =============================================================================
# Async I/O - for the client port
# =============================================================================


class AsyncFrameReader:
    """Async frame reader for reading frames from an async stream"""

    def __init__(self, stream, max_frame: int = MAX_FRAME):
        """Create async frame reader

        Args:
            stream: Async readable stream (asyncio.StreamReader or similar)
            max_frame: Maximum payload size
        """
        self.stream = stream
        self.max_frame = max_frame

    async def read(self) -> Optional[Dict[str, Any]]:
        """Read one message from the stream

        Returns:
            Message dict, or None on clean EOF

        Raises:
            UnexpectedEofError: If the stream ends inside a frame
            FrameTooLargeError: If the length prefix is out of range
            DecodeError: If the payload is not a JSON object
        """
        try:
            length_bytes = await self.stream.readexactly(LENGTH_PREFIX_SIZE)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                return None
            raise UnexpectedEofError("Incomplete length prefix")

        frame_len = read_length(length_bytes)
        if frame_len == 0 or frame_len > self.max_frame:
            raise FrameTooLargeError(frame_len, self.max_frame)

        try:
            payload = await self.stream.readexactly(frame_len)
        except asyncio.IncompleteReadError:
            raise UnexpectedEofError("Incomplete frame data")

        return decode_payload(payload)


class AsyncFrameWriter:
    """Async frame writer for writing frames to an async stream"""

    def __init__(self, stream, max_frame: int = MAX_FRAME):
        """Create async frame writer

        Args:
            stream: Async writable stream (asyncio.StreamWriter or similar)
            max_frame: Maximum payload size
        """
        self.stream = stream
        self.max_frame = max_frame

    async def write(self, message: Dict[str, Any]) -> None:
        """Write one message to the stream"""
        self.stream.write(encode_message(message, self.max_frame))
        await self.stream.drain()
