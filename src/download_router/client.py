"""Native Messaging Client - The extension-side caller

The NativeMessagingClient is what the browser extension's background worker
does with a native host: open a port, post one request, wait for exactly one
outcome, and tear the port down. It handles:

- One port per request, tracked in `active_ports` until settled
- Request timeout
- Host-reported failures (`success: false`) surfaced as NativeHostError
- Host disconnects before a response surfaced as HostDisconnectedError
- Disconnects after a response ignored

Every request settles exactly once. Whichever of response, timeout and
disconnect happens first wins; the others are no-ops.

Usage:
```python
import asyncio
from download_router.client import NativeMessagingClient

async def main():
    client = NativeMessagingClient()
    status = await client.check_companion_app()
    if status["installed"]:
        exists = await client.verify_folder("/Users/me/Downloads/Invoices")
```
"""

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from download_router.frame import HOST_NAME, MAX_FRAME, MessageType, ResponseCode
from download_router.frame_io import AsyncFrameReader, AsyncFrameWriter, FramingError


logger = logging.getLogger(__name__)

# Seconds to wait for a response
DEFAULT_TIMEOUT = 10.0

# Seconds to wait for getVersion; covers host process startup
VERSION_CHECK_TIMEOUT = 5.0

# Seconds a disconnected host process gets to exit before it is killed
PROCESS_EXIT_TIMEOUT = 2.0


class ClientError(Exception):
    """Base error for the native messaging client"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestTimeoutError(ClientError):
    """No response within the request timeout"""

    def __init__(self):
        super().__init__("Request timeout")


class HostDisconnectedError(ClientError):
    """Port disconnected before a response arrived"""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or "Native host disconnected")


class NativeHostError(ClientError):
    """Host answered with success: false"""

    def __init__(self, code: Optional[str], message: str, response: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.response = response or {}


class ExchangeState(Enum):
    """Lifecycle of one request/response exchange"""
    IDLE = "idle"
    CONNECTED = "connected"
    RESPONDED = "responded"
    TIMED_OUT = "timed_out"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


# =============================================================================
# Ports
# =============================================================================


class Port(ABC):
    """A bidirectional message channel to one native host instance

    Listeners registered with on_message / on_disconnect are called from the
    event loop. on_disconnect fires only when the other side goes away, never
    for a local disconnect().
    """

    def __init__(self, name: str):
        self.name = name
        self.connected = True
        self.last_error: Optional[str] = None
        self._message_listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._disconnect_listeners: List[Callable[["Port"], None]] = []

    def on_message(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        self._message_listeners.append(listener)

    def on_disconnect(self, listener: Callable[["Port"], None]) -> None:
        self._disconnect_listeners.append(listener)

    def _emit_message(self, message: Dict[str, Any]) -> None:
        for listener in list(self._message_listeners):
            listener(message)

    def _emit_disconnect(self, error: Optional[str] = None) -> None:
        if not self.connected:
            return
        self.connected = False
        self.last_error = error
        for listener in list(self._disconnect_listeners):
            listener(self)

    @abstractmethod
    async def post_message(self, message: Dict[str, Any]) -> None:
        """Send one message to the host

        Raises:
            HostDisconnectedError: If the port is not connected
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the port from this side"""
        ...


class SubprocessPort(Port):
    """Port that launches the host executable and frames over its stdio"""

    def __init__(self, name: str, process: asyncio.subprocess.Process, max_frame: int = MAX_FRAME):
        """Internal constructor - use open() instead"""
        super().__init__(name)
        self.process = process
        self._reader = AsyncFrameReader(process.stdout, max_frame)
        self._writer = AsyncFrameWriter(process.stdin, max_frame)
        self._reader_task: Optional[asyncio.Task] = None

    @classmethod
    async def open(
        cls,
        command: List[str],
        name: str = HOST_NAME,
        max_frame: int = MAX_FRAME,
    ) -> "SubprocessPort":
        """Start the host process and begin reading its responses

        Args:
            command: Host executable and arguments
            name: Native host name
            max_frame: Maximum frame payload size

        Raises:
            HostDisconnectedError: If the process cannot be started
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise HostDisconnectedError(f"Failed to start native host: {e}")

        port = cls(name, process, max_frame)
        port._reader_task = asyncio.create_task(port._reader_loop())
        return port

    async def _reader_loop(self) -> None:
        """Read responses until the host closes its stdout"""
        error = None
        try:
            while True:
                message = await self._reader.read()
                if message is None:
                    break
                self._emit_message(message)
        except (FramingError, OSError) as e:
            error = f"Error reading from native host: {e}"

        if self.connected:
            self._emit_disconnect(error or "Native host has exited.")

    async def post_message(self, message: Dict[str, Any]) -> None:
        if not self.connected:
            raise HostDisconnectedError("Attempting to use a disconnected port object")
        try:
            await self._writer.write(message)
        except (ConnectionError, OSError) as e:
            self._emit_disconnect(f"Error writing to native host: {e}")
            raise HostDisconnectedError(self.last_error)

    async def disconnect(self) -> None:
        self.connected = False
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()

        if self.process.returncode is not None:
            return

        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()
        try:
            self.process.terminate()
            await asyncio.wait_for(self.process.wait(), timeout=PROCESS_EXIT_TIMEOUT)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("Native host did not exit, killing pid %s", self.process.pid)
            self.process.kill()
            await self.process.wait()


# =============================================================================
# Client
# =============================================================================


class PendingRequest:
    """One in-flight exchange. settle() succeeds only for the first caller."""

    def __init__(self, request_id: int, port: Optional[Port] = None):
        self.request_id = request_id
        self.port: Optional[Port] = None
        self.state = ExchangeState.IDLE
        self.outcome: Optional[ExchangeState] = None
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()
        if port is not None:
            self.attach(port)

    def attach(self, port: Port) -> None:
        """Bind the connected port; IDLE becomes CONNECTED"""
        self.port = port
        if not self.future.done():
            self.state = ExchangeState.CONNECTED

    @property
    def settled(self) -> bool:
        return self.future.done()

    def settle(
        self,
        state: ExchangeState,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
    ) -> bool:
        """Record the outcome

        Returns:
            True if this call settled the request, False if it was already settled
        """
        if self.future.done():
            return False
        self.state = state
        self.outcome = state
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)
        return True


def default_host_command() -> List[str]:
    """Command that launches the host from the current interpreter"""
    return [sys.executable, "-m", "download_router"]


Connect = Callable[[str], Awaitable[Port]]


class NativeMessagingClient:
    """Sends requests to the companion host, one port per request"""

    def __init__(self, connect: Optional[Connect] = None, host_command: Optional[List[str]] = None):
        """Create a client

        Args:
            connect: Async factory taking the host name and returning a Port.
                Defaults to launching host_command as a SubprocessPort.
            host_command: Host executable and arguments (defaults to this package)
        """
        self.host_name = HOST_NAME
        self.host_command = host_command or default_host_command()
        self._connect = connect or self._connect_subprocess
        self.active_ports: Dict[int, PendingRequest] = {}
        self.request_counter = 0

    async def _connect_subprocess(self, name: str) -> Port:
        return await SubprocessPort.open(self.host_command, name)

    async def send_message(self, message: Dict[str, Any], timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
        """Send one request and wait for its response

        Args:
            message: Request dict with a `type` tag
            timeout: Seconds to wait for the response

        Returns:
            The response dict (success is true)

        Raises:
            RequestTimeoutError: If no response arrives in time
            NativeHostError: If the host answered with success: false
            HostDisconnectedError: If the port closed before a response
        """
        self.request_counter += 1
        request_id = self.request_counter

        pending = PendingRequest(request_id)
        self.active_ports[request_id] = pending

        def on_response(response: Dict[str, Any]) -> None:
            if response.get("success"):
                pending.settle(ExchangeState.RESPONDED, result=response)
            else:
                pending.settle(ExchangeState.RESPONDED, error=NativeHostError(
                    response.get("code"),
                    response.get("error") or "Unknown error",
                    response,
                ))

        def on_disconnect(disconnected: Port) -> None:
            if pending.settle(ExchangeState.DISCONNECTED, error=HostDisconnectedError(disconnected.last_error)):
                logger.error(
                    "Native messaging disconnected: %s (message type=%s)",
                    disconnected.last_error or "no detail",
                    message.get("type"),
                )

        async def exchange() -> Dict[str, Any]:
            try:
                port = await self._connect(self.host_name)
            except ClientError as e:
                pending.settle(ExchangeState.DISCONNECTED, error=HostDisconnectedError(e.message))
                return await pending.future

            pending.attach(port)
            port.on_message(on_response)
            port.on_disconnect(on_disconnect)

            try:
                await port.post_message(message)
            except ClientError as e:
                pending.settle(ExchangeState.DISCONNECTED, error=HostDisconnectedError(e.message))

            return await asyncio.shield(pending.future)

        # The deadline covers connecting and writing the request, not just the reply
        try:
            try:
                return await asyncio.wait_for(exchange(), timeout=timeout)
            except asyncio.TimeoutError:
                if pending.settle(ExchangeState.TIMED_OUT, error=RequestTimeoutError()):
                    logger.warning("Request %d (%s) timed out after %.1fs", request_id, message.get("type"), timeout)
                return await pending.future
        finally:
            self.active_ports.pop(request_id, None)
            if pending.port is not None:
                await pending.port.disconnect()
            pending.state = ExchangeState.CLOSED

    # =========================================================================
    # High-level operations
    # =========================================================================

    async def pick_folder(self, start_path: Optional[str] = None) -> Optional[str]:
        """Open the native folder picker

        Returns:
            Selected folder path, or None if the user cancelled

        Raises:
            ClientError: For any other failure
        """
        try:
            response = await self.send_message({
                "type": MessageType.PICK_FOLDER.value,
                "startPath": start_path,
            })
        except NativeHostError as e:
            if e.code == ResponseCode.CANCELLED.value:
                return None
            raise

        path = response.get("path")
        if not path:
            raise NativeHostError(response.get("code"), response.get("error") or "Failed to pick folder", response)
        return path

    async def verify_folder(self, path: str) -> bool:
        try:
            response = await self.send_message({"type": MessageType.VERIFY_FOLDER.value, "path": path})
        except ClientError:
            return False
        return response.get("exists") is True

    async def create_folder(self, path: str) -> bool:
        try:
            response = await self.send_message({"type": MessageType.CREATE_FOLDER.value, "path": path})
        except ClientError:
            return False
        return response.get("created") is True

    async def list_folders(self, path: str) -> List[Dict[str, Any]]:
        try:
            response = await self.send_message({"type": MessageType.LIST_FOLDERS.value, "path": path})
        except ClientError:
            return []
        return response.get("items") or []

    async def move_file(self, source: str, destination: str) -> bool:
        try:
            response = await self.send_message({
                "type": MessageType.MOVE_FILE.value,
                "source": source,
                "destination": destination,
            })
        except ClientError:
            return False
        return response.get("moved") is True

    async def show_save_as_dialog(self, filename: str, default_directory: Optional[str] = None) -> Optional[str]:
        """Open the native Save As dialog

        Returns:
            Chosen file path, or None if the user cancelled
        """
        try:
            response = await self.send_message({
                "type": MessageType.SHOW_SAVE_AS_DIALOG.value,
                "filename": filename,
                "defaultDirectory": default_directory,
            })
        except NativeHostError as e:
            if e.code == ResponseCode.CANCELLED.value:
                return None
            raise
        return response.get("filePath")

    async def check_companion_app(self) -> Dict[str, Any]:
        """Check whether the companion host is installed and reachable

        Returns:
            {"installed": True, "version": ..., "platform": ...} or
            {"installed": False[, "error": ...]}
        """
        try:
            response = await self.send_message({"type": MessageType.GET_VERSION.value}, VERSION_CHECK_TIMEOUT)
        except ClientError as e:
            return {"installed": False, "error": e.message}

        if response.get("type") == "version":
            return {
                "installed": True,
                "version": response.get("version"),
                "platform": response.get("platform"),
            }
        return {"installed": False}
