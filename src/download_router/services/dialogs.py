"""Native dialogs - folder picker and Save As

One capability interface, `DialogBackend`, with a backend per platform:

- macOS: osascript (AppleScript `choose folder` / `choose file name`)
- Windows: PowerShell with System.Windows.Forms dialogs
- Linux: zenity, falling back to kdialog

Backends shell out and return a `DialogOutcome`: selected, cancelled or error.
The dispatcher never sees which program produced it. Backends block while the
dialog is open; callers run them off the event loop.
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from download_router.config import DEFAULT_DIALOG_TIMEOUT, default_downloads_dir
from download_router.frame import ResponseCode, error_response, success_response


logger = logging.getLogger(__name__)

FOLDER_PROMPT = "Select Download Folder"
SAVE_PROMPT = "Save As:"

Runner = Callable[..., subprocess.CompletedProcess]


class DialogStatus(Enum):
    SELECTED = "selected"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class DialogOutcome:
    """Result of showing a native dialog"""
    status: DialogStatus
    path: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def selected(cls, path: str) -> "DialogOutcome":
        return cls(DialogStatus.SELECTED, path=path)

    @classmethod
    def cancelled(cls) -> "DialogOutcome":
        return cls(DialogStatus.CANCELLED)

    @classmethod
    def failed(cls, error: str, **details: Any) -> "DialogOutcome":
        return cls(DialogStatus.ERROR, error=error, details=details)


class DialogBackend(Protocol):
    """Opens native OS dialogs"""

    def pick_folder(self, start_path: Optional[str] = None) -> DialogOutcome:
        """Show a folder picker, optionally starting at start_path"""
        ...

    def save_file(self, filename: str, default_directory: Optional[str] = None) -> DialogOutcome:
        """Show a Save As dialog pre-filled with filename"""
        ...


def resolve_start_path(
    start_path: Optional[str],
    downloads_dir: Optional[Path] = None,
    home: Optional[Path] = None,
) -> str:
    """Resolve where a dialog should open

    Absolute paths are used as-is. Relative paths are tried under the downloads
    folder, then the home folder. Anything else opens the downloads folder.
    """
    downloads = downloads_dir or default_downloads_dir()
    home_dir = home or Path.home()

    if not start_path:
        return str(downloads)
    if os.path.isabs(start_path):
        return start_path

    for base in (downloads, home_dir):
        candidate = base / start_path
        if candidate.exists():
            return str(candidate)

    return str(downloads)


class _SubprocessBackend:
    """Shared subprocess plumbing for the platform backends"""

    def __init__(
        self,
        timeout: float = DEFAULT_DIALOG_TIMEOUT,
        downloads_dir: Optional[Path] = None,
        runner: Optional[Runner] = None,
    ):
        self.timeout = timeout
        self.downloads_dir = downloads_dir
        self._run = runner or subprocess.run

    def _execute(self, argv: List[str], env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        logger.debug("Running dialog command: %s", argv[0])
        return self._run(
            argv,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            env=env,
        )

    def _show(self, argv: List[str], env: Optional[Dict[str, str]] = None) -> DialogOutcome:
        try:
            result = self._execute(argv, env)
        except subprocess.TimeoutExpired:
            return DialogOutcome.failed("Dialog timed out", timeout=self.timeout)
        except OSError as e:
            return DialogOutcome.failed(f"Failed to open dialog: {e}", program=argv[0])
        return self._interpret(result)

    def _interpret(self, result: subprocess.CompletedProcess) -> DialogOutcome:
        selected = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()

        if result.returncode == 0:
            if selected:
                return DialogOutcome.selected(selected)
            return DialogOutcome.cancelled()

        if result.returncode == 1 or "cancel" in stderr.lower():
            return DialogOutcome.cancelled()

        return DialogOutcome.failed(
            stderr or f"Dialog exited with status {result.returncode}",
            status=result.returncode,
            stderr=stderr[:200],
        )


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class MacDialogBackend(_SubprocessBackend):
    """osascript dialogs"""

    def pick_folder(self, start_path: Optional[str] = None) -> DialogOutcome:
        location = resolve_start_path(start_path, self.downloads_dir)
        script = (
            f"set theFolder to choose folder with prompt {_applescript_string(FOLDER_PROMPT)}"
            f" default location (POSIX file {_applescript_string(location)})\n"
            "return POSIX path of theFolder"
        )
        return self._show(["osascript", "-e", script])

    def save_file(self, filename: str, default_directory: Optional[str] = None) -> DialogOutcome:
        location = resolve_start_path(default_directory, self.downloads_dir)
        script = (
            f"set theFile to choose file name with prompt {_applescript_string(SAVE_PROMPT)}"
            f" default name {_applescript_string(filename)}"
            f" default location (POSIX file {_applescript_string(location)})\n"
            "return POSIX path of theFile"
        )
        return self._show(["osascript", "-e", script])


_PS_FOLDER_SCRIPT = """
Add-Type -AssemblyName System.Windows.Forms
$dialog = New-Object System.Windows.Forms.FolderBrowserDialog
$dialog.Description = $env:DOWNLOAD_ROUTER_PROMPT
$dialog.ShowNewFolderButton = $true
if ($env:DOWNLOAD_ROUTER_START -and (Test-Path -LiteralPath $env:DOWNLOAD_ROUTER_START)) {
    $dialog.SelectedPath = $env:DOWNLOAD_ROUTER_START
}
if ($dialog.ShowDialog() -eq [System.Windows.Forms.DialogResult]::OK) {
    Write-Output $dialog.SelectedPath
}
"""

_PS_SAVE_SCRIPT = """
Add-Type -AssemblyName System.Windows.Forms
$dialog = New-Object System.Windows.Forms.SaveFileDialog
$dialog.FileName = $env:DOWNLOAD_ROUTER_FILENAME
$dialog.Title = "Save As"
$dialog.Filter = "All Files (*.*)|*.*"
if ($env:DOWNLOAD_ROUTER_START) {
    $dialog.InitialDirectory = $env:DOWNLOAD_ROUTER_START
}
if ($dialog.ShowDialog() -eq [System.Windows.Forms.DialogResult]::OK) {
    Write-Output $dialog.FileName
}
"""


class WindowsDialogBackend(_SubprocessBackend):
    """PowerShell dialogs; arguments travel in environment variables"""

    def _powershell(self, script: str, values: Dict[str, str]) -> DialogOutcome:
        env = dict(os.environ)
        env.update(values)
        argv = ["powershell", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]
        return self._show(argv, env)

    def pick_folder(self, start_path: Optional[str] = None) -> DialogOutcome:
        return self._powershell(_PS_FOLDER_SCRIPT, {
            "DOWNLOAD_ROUTER_PROMPT": FOLDER_PROMPT,
            "DOWNLOAD_ROUTER_START": resolve_start_path(start_path, self.downloads_dir),
        })

    def save_file(self, filename: str, default_directory: Optional[str] = None) -> DialogOutcome:
        return self._powershell(_PS_SAVE_SCRIPT, {
            "DOWNLOAD_ROUTER_FILENAME": filename,
            "DOWNLOAD_ROUTER_START": resolve_start_path(default_directory, self.downloads_dir),
        })


class LinuxDialogBackend(_SubprocessBackend):
    """zenity (GNOME) with kdialog (KDE) as fallback"""

    def _first_available(self, commands: List[List[str]]) -> DialogOutcome:
        missing = []
        for argv in commands:
            try:
                result = self._execute(argv)
            except FileNotFoundError:
                missing.append(argv[0])
                continue
            except subprocess.TimeoutExpired:
                return DialogOutcome.failed("Dialog timed out", timeout=self.timeout)
            except OSError as e:
                return DialogOutcome.failed(f"Failed to open dialog: {e}", program=argv[0])
            return self._interpret(result)
        return DialogOutcome.failed(
            "No dialog program available (install zenity or kdialog)",
            missing=missing,
        )

    def pick_folder(self, start_path: Optional[str] = None) -> DialogOutcome:
        location = resolve_start_path(start_path, self.downloads_dir)
        return self._first_available([
            ["zenity", "--file-selection", "--directory", f"--title={FOLDER_PROMPT}",
             f"--filename={os.path.join(location, '')}"],
            ["kdialog", "--getexistingdirectory", location, "--title", FOLDER_PROMPT],
        ])

    def save_file(self, filename: str, default_directory: Optional[str] = None) -> DialogOutcome:
        location = resolve_start_path(default_directory, self.downloads_dir)
        target = os.path.join(location, filename)
        return self._first_available([
            ["zenity", "--file-selection", "--save", "--confirm-overwrite", f"--filename={target}"],
            ["kdialog", "--getsavefilename", target],
        ])


def default_backend(
    platform: Optional[str] = None,
    timeout: float = DEFAULT_DIALOG_TIMEOUT,
    downloads_dir: Optional[Path] = None,
    runner: Optional[Runner] = None,
) -> DialogBackend:
    """Pick the dialog backend for a platform (defaults to the running one)"""
    platform = platform or sys.platform
    if platform == "darwin":
        backend_class = MacDialogBackend
    elif platform == "win32":
        backend_class = WindowsDialogBackend
    else:
        backend_class = LinuxDialogBackend
    return backend_class(timeout=timeout, downloads_dir=downloads_dir, runner=runner)


def pick_folder_response(outcome: DialogOutcome) -> Dict[str, Any]:
    """Convert a folder picker outcome to a pickFolder response"""
    if outcome.status is DialogStatus.SELECTED:
        return success_response("folderPicked", path=outcome.path)
    if outcome.status is DialogStatus.CANCELLED:
        return error_response(ResponseCode.CANCELLED, "User cancelled folder selection", "folderPicked")
    return error_response(
        ResponseCode.DIALOG_ERROR,
        outcome.error or "Failed to open folder picker",
        "folderPicked",
        details=outcome.details,
    )


def save_dialog_response(outcome: DialogOutcome) -> Dict[str, Any]:
    """Convert a Save As outcome to a showSaveAsDialog response"""
    if outcome.status is DialogStatus.SELECTED:
        return success_response("filePicked", filePath=outcome.path)
    if outcome.status is DialogStatus.CANCELLED:
        return error_response(ResponseCode.CANCELLED, "User cancelled file save dialog", "filePicked")
    return error_response(
        ResponseCode.DIALOG_ERROR,
        outcome.error or "Failed to open Save As dialog",
        "filePicked",
        details=outcome.details,
    )
