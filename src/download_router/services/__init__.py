"""OS capability services used by the request handlers"""

from download_router.services.folder_operations import verify_folder, create_folder, list_folders
from download_router.services.file_mover import move_file, resolve_destination_path
from download_router.services.dialogs import (
    DialogBackend,
    DialogOutcome,
    DialogStatus,
    default_backend,
    pick_folder_response,
    save_dialog_response,
)

__all__ = [
    "verify_folder",
    "create_folder",
    "list_folders",
    "move_file",
    "resolve_destination_path",
    "DialogBackend",
    "DialogOutcome",
    "DialogStatus",
    "default_backend",
    "pick_folder_response",
    "save_dialog_response",
]
