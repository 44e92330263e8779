"""Capability handlers for the native messaging host

Maps every request type to the service that fulfils it. Requests are validated
against their schema first; filesystem work and dialogs run in the default
executor so the event loop keeps reading stdin while they block.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional

from download_router.config import HostConfig
from download_router.dispatcher import DispatchTable
from download_router.frame import COMPANION_VERSION, MessageType, browser_platform, success_response
from download_router.schema_validation import RequestValidator
from download_router.services import dialogs, file_mover, folder_operations


logger = logging.getLogger(__name__)


async def _run_blocking(func: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))


def get_version_response() -> Dict[str, Any]:
    """Companion version and platform"""
    return success_response("version", version=COMPANION_VERSION, platform=browser_platform())


class CapabilityHandlers:
    """Request handlers bound to one dialog backend and validator"""

    def __init__(
        self,
        config: Optional[HostConfig] = None,
        dialog_backend: Optional[dialogs.DialogBackend] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self.config = config or HostConfig.default()
        self.dialogs = dialog_backend or dialogs.default_backend(
            timeout=self.config.dialog_timeout,
            downloads_dir=self.config.downloads_dir,
        )
        self.validator = validator or RequestValidator()

    async def get_version(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.GET_VERSION, message)
        return get_version_response()

    async def verify_folder(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.VERIFY_FOLDER, message)
        return await _run_blocking(folder_operations.verify_folder, message["path"])

    async def create_folder(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.CREATE_FOLDER, message)
        return await _run_blocking(folder_operations.create_folder, message["path"])

    async def list_folders(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.LIST_FOLDERS, message)
        return await _run_blocking(folder_operations.list_folders, message["path"])

    async def move_file(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.MOVE_FILE, message)
        return await _run_blocking(file_mover.move_file, message["source"], message["destination"])

    async def pick_folder(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.PICK_FOLDER, message)
        outcome = await _run_blocking(self.dialogs.pick_folder, message.get("startPath"))
        logger.info("pickFolder: %s", outcome.status.value)
        return dialogs.pick_folder_response(outcome)

    async def show_save_as_dialog(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.validator.validate(MessageType.SHOW_SAVE_AS_DIALOG, message)
        outcome = await _run_blocking(
            self.dialogs.save_file,
            message["filename"],
            message.get("defaultDirectory"),
        )
        logger.info("showSaveAsDialog: %s", outcome.status.value)
        return dialogs.save_dialog_response(outcome)

    def dispatch_table(self) -> DispatchTable:
        """Build the dispatch table for every request type"""
        return (
            DispatchTable()
            .register(MessageType.GET_VERSION, self.get_version)
            .register(MessageType.VERIFY_FOLDER, self.verify_folder)
            .register(MessageType.CREATE_FOLDER, self.create_folder)
            .register(MessageType.LIST_FOLDERS, self.list_folders)
            .register(MessageType.MOVE_FILE, self.move_file)
            .register(MessageType.PICK_FOLDER, self.pick_folder)
            .register(MessageType.SHOW_SAVE_AS_DIALOG, self.show_save_as_dialog)
        )


def register_default_handlers(
    host,
    dialog_backend: Optional[dialogs.DialogBackend] = None,
    validator: Optional[RequestValidator] = None,
) -> CapabilityHandlers:
    """Register the standard capability handlers on a host

    Args:
        host: NativeMessagingHost (or anything with on_message and config)
        dialog_backend: Dialog backend (defaults to the running platform's)
        validator: Request validator

    Returns:
        The CapabilityHandlers instance that was registered
    """
    handlers = CapabilityHandlers(host.config, dialog_backend, validator)
    host.on_message(handlers.dispatch_table())
    return handlers
