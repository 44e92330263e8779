"""Folder operations: verify, create and list folders

Each function returns a response dict. Expected filesystem failures map to an
error code; nothing here raises for a missing or unreadable path.
"""

import logging
import os
import stat
from typing import Any, Dict, List

from download_router.frame import ResponseCode, error_response, success_response


logger = logging.getLogger(__name__)


def verify_folder(path: str) -> Dict[str, Any]:
    """Check whether a folder exists and is a directory"""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return success_response(exists=False, path=path)
    except NotADirectoryError:
        # A path component is a file
        return success_response(exists=False, path=path)
    except OSError as e:
        logger.warning("Cannot access %s: %s", path, e)
        return error_response(
            ResponseCode.ACCESS_ERROR,
            e.strerror or str(e),
            exists=False,
            path=path,
        )

    if not stat.S_ISDIR(st.st_mode):
        return error_response(
            ResponseCode.NOT_DIRECTORY,
            "Path exists but is not a directory",
            exists=False,
            path=path,
        )

    return success_response(exists=True, path=path)


def create_folder(path: str) -> Dict[str, Any]:
    """Create a folder and any missing parents"""
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        logger.warning("Cannot create %s: %s", path, e)
        return error_response(
            ResponseCode.CREATE_ERROR,
            e.strerror or str(e),
            created=False,
            path=path,
        )

    return success_response(created=True, path=path)


def list_folders(path: str) -> Dict[str, Any]:
    """List a folder's entries, folders first, then files, each by name"""
    verified = verify_folder(path)
    if not verified["success"] or not verified["exists"]:
        return error_response(
            ResponseCode.NOT_FOUND,
            "Folder does not exist or is not accessible",
            path=path,
        )

    items: List[Dict[str, Any]] = []
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    st = entry.stat()
                    is_dir = entry.is_dir()
                except OSError:
                    # Broken symlink or permission denied
                    continue
                items.append({
                    "name": entry.name,
                    "path": entry.path,
                    "type": "folder" if is_dir else "file",
                    "size": st.st_size,
                    "modified": int(st.st_mtime * 1000),
                })
    except OSError as e:
        logger.warning("Cannot list %s: %s", path, e)
        return error_response(ResponseCode.ACCESS_ERROR, e.strerror or str(e), path=path)

    items.sort(key=lambda item: (item["type"] != "folder", item["name"].casefold()))
    return success_response(path=path, items=items)
