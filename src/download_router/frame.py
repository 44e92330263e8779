"""Message Types for Native Messaging

This module defines the message vocabulary spoken between the browser extension
and the companion host. Frames carry UTF-8 JSON objects behind a length prefix.

## Frame Format

```
┌─────────────────────────────────────────────────────────┐
│  4 bytes: u32 little-endian length (1 ..= MAX_FRAME)    │
├─────────────────────────────────────────────────────────┤
│  N bytes: UTF-8 JSON object                             │
└─────────────────────────────────────────────────────────┘
```

Every request carries a `type` tag. Every response carries `success` and,
depending on the outcome, `type`, `error`, `code` and type-specific fields.

## Request Types

- getVersion: Companion version and platform
- verifyFolder: Does a folder exist (path)
- createFolder: Create a folder recursively (path)
- listFolders: List folder contents (path)
- moveFile: Move a downloaded file (source, destination)
- pickFolder: Native folder picker (startPath?)
- showSaveAsDialog: Native Save As dialog (filename, defaultDirectory?)
"""

import sys
from enum import Enum
from typing import Optional, Dict, Any


# Companion application version reported by getVersion
COMPANION_VERSION = "1.0.0"

# Native messaging host name registered with the browser
HOST_NAME = "com.downloadrouter.host"

# Length prefix size in bytes
LENGTH_PREFIX_SIZE = 4

# Maximum frame payload size (10 MB)
MAX_FRAME = 10 * 1024 * 1024

# UTF-8 encoding of U+FFFD, left behind when raw bytes pass through a text decoder
REPLACEMENT_MARKER = b"\xef\xbf\xbd"

# How many byte offsets the resync step inspects before giving up
RESYNC_SCAN_LIMIT = 10

# Every JSON payload we accept starts with an object
JSON_OBJECT_START = 0x7B  # '{'


class MessageType(str, Enum):
    """Request type discriminator"""
    GET_VERSION = "getVersion"
    VERIFY_FOLDER = "verifyFolder"
    CREATE_FOLDER = "createFolder"
    LIST_FOLDERS = "listFolders"
    MOVE_FILE = "moveFile"
    PICK_FOLDER = "pickFolder"
    SHOW_SAVE_AS_DIALOG = "showSaveAsDialog"

    @classmethod
    def from_str(cls, value: Any) -> Optional["MessageType"]:
        """Convert a raw type tag to MessageType, returns None if unknown"""
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class ResponseCode(str, Enum):
    """Error codes carried in the `code` field of a failed response"""
    PARSE_ERROR = "PARSE_ERROR"
    HANDLER_ERROR = "HANDLER_ERROR"
    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    CANCELLED = "CANCELLED"
    NOT_FOUND = "NOT_FOUND"
    NOT_DIRECTORY = "NOT_DIRECTORY"
    CREATE_ERROR = "CREATE_ERROR"
    MOVE_ERROR = "MOVE_ERROR"
    DIALOG_ERROR = "DIALOG_ERROR"
    ACCESS_ERROR = "ACCESS_ERROR"
    UNCAUGHT_ERROR = "UNCAUGHT_ERROR"


def message_type(message: Any) -> Optional[str]:
    """Get the raw `type` tag of a message, or None if it has none"""
    if isinstance(message, dict):
        value = message.get("type")
        if isinstance(value, str):
            return value
    return None


def success_response(response_type: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    """Create a success response

    Args:
        response_type: Optional `type` tag for the response
        **fields: Type-specific result fields

    Returns:
        Response dict with `success` set to True
    """
    response: Dict[str, Any] = {"success": True}
    if response_type is not None:
        response["type"] = response_type
    response.update(fields)
    return response


def error_response(
    code: ResponseCode,
    error: str,
    response_type: Optional[str] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Create an error response

    Args:
        code: Error code
        error: Human-readable error message
        response_type: Optional `type` tag (usually the request's type)
        **fields: Additional fields (path, exists, ...)

    Returns:
        Response dict with `success` set to False
    """
    response: Dict[str, Any] = {"success": False, "error": error, "code": code.value}
    if response_type is not None:
        response["type"] = response_type
    response.update(fields)
    return response


def parse_error_response(error: str) -> Dict[str, Any]:
    """Response for a well-framed payload that is not a JSON object"""
    return error_response(ResponseCode.PARSE_ERROR, f"Invalid JSON message: {error}")


def browser_platform() -> str:
    """Platform identifier in the form the extension expects (darwin, win32, linux)"""
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform
