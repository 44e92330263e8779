"""Post-download file moving

Moves a finished download out of the browser's download directory to its
routed destination. A destination folder gets the source file name appended;
name clashes are resolved the way browsers do it: `report (1).pdf`,
`report (2).pdf`, ...
"""

import logging
import os
import shutil
import time
from typing import Any, Dict

from download_router.frame import ResponseCode, error_response, success_response
from download_router.services.folder_operations import create_folder


logger = logging.getLogger(__name__)

# Highest numbered suffix tried before falling back to a timestamp
MAX_CONFLICT_SUFFIX = 999


def is_folder_path(path: str) -> bool:
    """True if path ends in a separator, naming a folder even before it exists"""
    return path.endswith(os.sep) or bool(os.altsep and path.endswith(os.altsep))


def resolve_destination_path(destination: str) -> str:
    """Return destination, or the first free `name (n).ext` next to it"""
    if not os.path.lexists(destination):
        return destination

    directory = os.path.dirname(destination)
    stem, ext = os.path.splitext(os.path.basename(destination))

    for counter in range(1, MAX_CONFLICT_SUFFIX + 1):
        candidate = os.path.join(directory, f"{stem} ({counter}){ext}")
        if not os.path.lexists(candidate):
            return candidate

    return os.path.join(directory, f"{stem} ({int(time.time() * 1000)}){ext}")


def move_file(source: str, destination: str) -> Dict[str, Any]:
    """Move a file to a destination file path or folder

    Args:
        source: Absolute path of the file to move
        destination: Target file path, or an existing folder to move into

    Returns:
        Response dict with the final destination on success
    """
    logger.debug("move_file: %s -> %s", source, destination)

    if not os.path.exists(source):
        return error_response(
            ResponseCode.NOT_FOUND,
            f"Source file does not exist: {source}",
            moved=False,
            source=source,
            destination=destination,
        )

    if not os.path.isfile(source):
        return error_response(
            ResponseCode.MOVE_ERROR,
            "Source path is not a file",
            moved=False,
            source=source,
            destination=destination,
        )

    if os.path.isdir(destination):
        final_destination = os.path.join(destination, os.path.basename(source))
    else:
        if is_folder_path(destination):
            final_destination = os.path.join(destination, os.path.basename(source))
        else:
            final_destination = destination
        parent = os.path.dirname(final_destination)
        if parent and not os.path.isdir(parent):
            created = create_folder(parent)
            if not created["success"]:
                return error_response(
                    ResponseCode.CREATE_ERROR,
                    f"Failed to create destination folder: {created.get('error')}",
                    moved=False,
                    source=source,
                    destination=destination,
                )

    final_destination = resolve_destination_path(final_destination)

    try:
        shutil.move(source, final_destination)
    except OSError as e:
        logger.warning("move_file failed: %s -> %s: %s", source, final_destination, e)
        return error_response(
            ResponseCode.MOVE_ERROR,
            e.strerror or str(e),
            moved=False,
            source=source,
            destination=destination,
        )

    logger.info("Moved %s -> %s", source, final_destination)
    return success_response(moved=True, source=source, destination=final_destination)
