"""Download Router companion - native messaging host

The companion lets the Download Router browser extension do what extensions
cannot: open native folder and Save As dialogs, check and create folders, and
move finished downloads to their routed destination. The browser launches it
and talks to it over stdin/stdout using length-prefixed JSON frames.
"""

from download_router.frame import (
    COMPANION_VERSION,
    HOST_NAME,
    MAX_FRAME,
    MessageType,
    ResponseCode,
)
from download_router.frame_io import (
    FrameDecoder,
    FrameWriter,
    FramingError,
    encode_message,
    decode_payload,
    resynchronize,
)
from download_router.config import HostConfig, ConfigError
from download_router.dispatcher import DispatchTable, MessageDispatcher, NOT_HANDLED
from download_router.host import HostState, NativeMessagingHost
from download_router.handlers import CapabilityHandlers, register_default_handlers
from download_router.client import (
    NativeMessagingClient,
    ClientError,
    RequestTimeoutError,
    HostDisconnectedError,
    NativeHostError,
)
from download_router.manifest import HostManifest, ManifestError, install_manifest

__version__ = COMPANION_VERSION

__all__ = [
    "COMPANION_VERSION",
    "HOST_NAME",
    "MAX_FRAME",
    "MessageType",
    "ResponseCode",
    "FrameDecoder",
    "FrameWriter",
    "FramingError",
    "encode_message",
    "decode_payload",
    "resynchronize",
    "HostConfig",
    "ConfigError",
    "DispatchTable",
    "MessageDispatcher",
    "NOT_HANDLED",
    "HostState",
    "NativeMessagingHost",
    "CapabilityHandlers",
    "register_default_handlers",
    "NativeMessagingClient",
    "ClientError",
    "RequestTimeoutError",
    "HostDisconnectedError",
    "NativeHostError",
    "HostManifest",
    "ManifestError",
    "install_manifest",
]
