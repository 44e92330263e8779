"""Native Messaging Host - Connection lifecycle over stdin/stdout

The NativeMessagingHost owns everything one browser connection needs:

- The frame decoder and its accumulation buffer
- The handler chain (MessageDispatcher)
- The frame writer on stdout
- A single worker that dispatches messages strictly in arrival order
- The end-of-input grace period

The wire protocol has no correlation id, so responses must leave in the order
requests arrived. Decoded messages go into a FIFO queue consumed by one worker
task; the next dispatch starts only after the previous response was written.
stdin keeps being read (and decoded) while a handler is suspended.

States: UNINITIALIZED -> READY -> CLOSED, with DRAINING entered on end of input.
While DRAINING, any new inbound activity cancels the grace timer. If the grace
period passes quietly, the host closes.

Usage:
```python
import asyncio
from download_router.host import NativeMessagingHost
from download_router.handlers import register_default_handlers

async def main():
    host = NativeMessagingHost()
    register_default_handlers(host)
    await host.run()

asyncio.run(main())
```
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Dict, Optional

from download_router.config import HostConfig
from download_router.dispatcher import Handler, MessageDispatcher
from download_router.frame import (
    ResponseCode,
    error_response,
    message_type,
    parse_error_response,
)
from download_router.frame_io import (
    DecodedMessage,
    EncodeError,
    FrameDecoder,
    FrameTooLargeError,
    FrameWriter,
    TransportError,
)


logger = logging.getLogger(__name__)

# Bytes requested per blocking read when stdin is not a pipe
READ_CHUNK_SIZE = 65536


class HostState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class QueuedResponse:
    """A response produced while decoding (parse error), queued to keep order"""
    response: Dict[str, Any]


class StdinProtocol(asyncio.Protocol):
    """Read-pipe protocol forwarding stdin events to the host"""

    def __init__(self, host: "NativeMessagingHost"):
        self._host = host

    def connection_made(self, transport) -> None:
        # Hold input until the host has finished wiring itself up
        transport.pause_reading()
        self._host.connection_made(transport)

    def data_received(self, data: bytes) -> None:
        self._host.feed(data)

    def eof_received(self) -> None:
        self._host.on_end_of_input()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning("stdin connection lost: %s", exc)
            self._host.on_end_of_input()


class NativeMessagingHost:
    """Native messaging host for one process lifetime"""

    def __init__(
        self,
        config: Optional[HostConfig] = None,
        output: Optional[BinaryIO] = None,
        dispatcher: Optional[MessageDispatcher] = None,
    ):
        """Create a host

        Args:
            config: Host configuration (defaults to HostConfig.default())
            output: Binary output stream (defaults to sys.stdout.buffer)
            dispatcher: Handler chain (defaults to an empty MessageDispatcher)
        """
        self.config = config or HostConfig.default()
        self.dispatcher = dispatcher or MessageDispatcher()
        self.decoder = FrameDecoder(self.config.max_frame)
        self.writer = FrameWriter(output if output is not None else sys.stdout.buffer, self.config.max_frame)
        self.state = HostState.UNINITIALIZED
        self.is_initialized = False
        self.responses_sent = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._busy = False
        self._grace_timer: Optional[asyncio.TimerHandle] = None
        self._transport = None
        self._stdin_task: Optional[asyncio.Task] = None
        self._closed: Optional[asyncio.Event] = None

    # =========================================================================
    # Setup
    # =========================================================================

    def on_message(self, handler: Handler) -> None:
        """Register a message handler

        Handlers are called in registration order until one returns a response.
        """
        self.dispatcher.register(handler)

    def init(self) -> None:
        """Set up the dispatch queue and worker. Must run inside the event loop.

        Calling init() on an initialized host is a no-op.
        """
        if self.is_initialized:
            return

        self._loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._closed is None:
            self._closed = asyncio.Event()
        if self._worker is None or self._worker.done():
            self._worker = self._loop.create_task(self._worker_loop())

        self.is_initialized = True
        self.state = HostState.READY
        logger.debug("Native messaging host ready")

    async def attach_stdin(self, stdin=None) -> None:
        """Start reading frames from stdin

        Listeners are registered and the host is READY before any byte is read.

        Args:
            stdin: Readable pipe or file object (defaults to sys.stdin)
        """
        self.init()
        stream = stdin if stdin is not None else sys.stdin

        try:
            transport, _ = await self._loop.connect_read_pipe(lambda: StdinProtocol(self), stream)
        except (NotImplementedError, ValueError, OSError) as e:
            # Regular files, and event loops without pipe support
            logger.debug("Falling back to blocking stdin reads: %s", e)
            self._stdin_task = self._loop.create_task(self._read_blocking(stream))
            return

        transport.resume_reading()

    async def _read_blocking(self, stream) -> None:
        raw = getattr(stream, "buffer", stream)
        read = getattr(raw, "read1", raw.read)
        while self.state is not HostState.CLOSED:
            data = await self._loop.run_in_executor(None, read, READ_CHUNK_SIZE)
            if not data:
                self.on_end_of_input()
                return
            self.feed(data)

    def connection_made(self, transport) -> None:
        """A new inbound connection must start from an empty buffer"""
        self.cleanup()
        self._transport = transport
        self.init()

    # =========================================================================
    # Input
    # =========================================================================

    def feed(self, data: bytes) -> None:
        """Feed inbound bytes; queue every complete frame in arrival order"""
        if self.state is HostState.CLOSED:
            logger.debug("Host closed, ignoring %d inbound bytes", len(data))
            return
        if not self.is_initialized:
            self.init()

        self._note_activity()

        for event in self.decoder.append(data):
            if isinstance(event, DecodedMessage):
                logger.debug("Received message type=%s", message_type(event.message))
                self._queue.put_nowait(event.message)
            else:
                self._queue.put_nowait(QueuedResponse(parse_error_response(event.error)))

    def on_end_of_input(self) -> None:
        """stdin closed: wait out the grace period before shutting down"""
        if self.state in (HostState.CLOSED, HostState.DRAINING):
            return

        if self.decoder.buffered:
            logger.warning("End of input with %d bytes of incomplete frame", self.decoder.buffered)

        self.state = HostState.DRAINING
        logger.info("End of input, shutting down in %.1fs unless reconnected", self.config.shutdown_grace_period)
        self._arm_grace_timer()

    def _note_activity(self) -> None:
        if self.state is HostState.DRAINING:
            logger.info("Activity during shutdown grace period, staying up")
            self.state = HostState.READY
        self._cancel_grace_timer()

    def _arm_grace_timer(self) -> None:
        self._cancel_grace_timer()
        loop = self._loop or asyncio.get_running_loop()
        self._grace_timer = loop.call_later(self.config.shutdown_grace_period, self._grace_period_elapsed)

    def _cancel_grace_timer(self) -> None:
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None

    def _grace_period_elapsed(self) -> None:
        self._grace_timer = None
        if self.state is not HostState.DRAINING:
            return
        if self._busy or (self._queue is not None and not self._queue.empty()):
            # Let in-flight responses go out first
            self._arm_grace_timer()
            return
        logger.info("Grace period elapsed, closing host")
        self.close()

    # =========================================================================
    # Dispatch and output
    # =========================================================================

    async def _worker_loop(self) -> None:
        """Dispatch queued messages one at a time"""
        while True:
            item = await self._queue.get()
            self._busy = True
            try:
                if isinstance(item, QueuedResponse):
                    response = item.response
                else:
                    response = await self.dispatcher.dispatch(item)
                self.send_response(response, item if isinstance(item, dict) else None)
            except Exception:
                logger.exception("Failed to process message")
            finally:
                self._busy = False
                self._queue.task_done()

    def send_response(self, response: Dict[str, Any], request: Optional[Dict[str, Any]] = None) -> bool:
        """Write one response frame

        A response that cannot be encoded or is too large is replaced by an
        error response, so the request still gets exactly one answer.

        Returns:
            True if written, False if the peer already went away
        """
        try:
            written = self.writer.write(response)
        except (FrameTooLargeError, EncodeError) as e:
            logger.error("Cannot send response: %s", e)
            written = self.writer.write(error_response(
                ResponseCode.HANDLER_ERROR,
                f"Response could not be sent: {e}",
                response_type=message_type(request),
            ))
        except TransportError as e:
            logger.error("Failed to send response: %s", e)
            return False

        if written:
            self.responses_sent += 1
        return written

    async def drain(self) -> None:
        """Wait until every queued message has been answered"""
        if self._queue is not None:
            await self._queue.join()

    # =========================================================================
    # Shutdown
    # =========================================================================

    def cleanup(self) -> None:
        """Reset the accumulation buffer and the initialized flag"""
        self._cancel_grace_timer()
        self.decoder.reset()
        self.is_initialized = False

    def close(self) -> None:
        """Stop the host; wait_closed() returns afterwards"""
        if self.state is HostState.CLOSED:
            return

        self._cancel_grace_timer()
        self.cleanup()
        self.state = HostState.CLOSED

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        if self._stdin_task is not None and not self._stdin_task.done():
            self._stdin_task.cancel()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._closed is not None:
            self._closed.set()

        logger.debug("Native messaging host closed")

    async def wait_closed(self) -> None:
        if self._closed is None:
            self._closed = asyncio.Event()
        await self._closed.wait()

    def handle_uncaught_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        """Event loop exception handler: log and tell the peer if we still can"""
        exc = context.get("exception")
        message = str(exc) if exc is not None else context.get("message", "Unknown error")
        logger.error("Uncaught exception: %s", message, exc_info=exc)

        if self.state is HostState.READY:
            self.send_response(error_response(ResponseCode.UNCAUGHT_ERROR, message))

    def _on_signal(self, signum: int) -> None:
        logger.info("Received signal %d, shutting down", signum)
        self.close()

    def _install_signal_handlers(self) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError):
                # Windows event loops
                pass

    async def run(self, stdin=None) -> None:
        """Serve requests from stdin until the host closes"""
        self.init()
        self._loop.set_exception_handler(self.handle_uncaught_exception)
        self._install_signal_handlers()
        await self.attach_stdin(stdin)
        try:
            await self.wait_closed()
        finally:
            self.close()
