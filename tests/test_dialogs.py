"""Tests for native dialog backends

A fake runner stands in for subprocess.run and records every command line.
"""

import subprocess

import pytest

from download_router.services.dialogs import (
    DialogOutcome,
    DialogStatus,
    LinuxDialogBackend,
    MacDialogBackend,
    WindowsDialogBackend,
    default_backend,
    pick_folder_response,
    resolve_start_path,
    save_dialog_response,
)


class FakeRunner:
    """Plays back results keyed by program name"""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        result = self.results[argv[0]]
        if isinstance(result, BaseException):
            raise result
        returncode, stdout, stderr = result
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


# TEST250: default_backend picks the backend for each platform
def test_default_backend_per_platform():
    assert isinstance(default_backend("darwin"), MacDialogBackend)
    assert isinstance(default_backend("win32"), WindowsDialogBackend)
    assert isinstance(default_backend("linux"), LinuxDialogBackend)


# TEST251: resolve_start_path keeps absolute paths and resolves relative ones
def test_resolve_start_path(tmp_path):
    downloads = tmp_path / "Downloads"
    home = tmp_path / "home"
    (downloads / "Invoices").mkdir(parents=True)
    (home / "Projects").mkdir(parents=True)

    assert resolve_start_path("/abs/path", downloads, home) == "/abs/path"
    assert resolve_start_path(None, downloads, home) == str(downloads)
    assert resolve_start_path("Invoices", downloads, home) == str(downloads / "Invoices")
    assert resolve_start_path("Projects", downloads, home) == str(home / "Projects")
    assert resolve_start_path("Nowhere", downloads, home) == str(downloads)


# TEST252: a selected folder is returned stripped of the trailing newline
def test_mac_pick_folder_selected(tmp_path):
    runner = FakeRunner({"osascript": (0, "/Users/me/Invoices/\n", "")})
    backend = MacDialogBackend(timeout=30, downloads_dir=tmp_path, runner=runner)

    outcome = backend.pick_folder("/Users/me")

    assert outcome == DialogOutcome.selected("/Users/me/Invoices/")
    argv, kwargs = runner.calls[0]
    assert argv[:2] == ["osascript", "-e"]
    assert 'POSIX file "/Users/me"' in argv[2]
    assert kwargs["timeout"] == 30


# TEST253: AppleScript strings escape quotes and backslashes
def test_mac_save_file_escapes_filename(tmp_path):
    runner = FakeRunner({"osascript": (0, "/tmp/x\n", "")})
    MacDialogBackend(downloads_dir=tmp_path, runner=runner).save_file('say "hi"\\.txt', "/tmp")

    script = runner.calls[0][0][2]
    assert 'default name "say \\"hi\\"\\\\.txt"' in script


# TEST254: osascript's user-cancelled exit is a cancellation
def test_mac_cancel():
    runner = FakeRunner({"osascript": (1, "", "execution error: User canceled. (-128)")})
    outcome = MacDialogBackend(runner=runner).pick_folder("/tmp")
    assert outcome.status is DialogStatus.CANCELLED


# TEST255: an unexpected exit status is a dialog error carrying stderr
def test_dialog_failure_details():
    runner = FakeRunner({"osascript": (2, "", "syntax error")})
    outcome = MacDialogBackend(runner=runner).pick_folder("/tmp")

    assert outcome.status is DialogStatus.ERROR
    assert outcome.error == "syntax error"
    assert outcome.details == {"status": 2, "stderr": "syntax error"}


# TEST256: a dialog left open past the timeout is an error
def test_dialog_timeout():
    runner = FakeRunner({"osascript": subprocess.TimeoutExpired("osascript", 5)})
    outcome = MacDialogBackend(timeout=5, runner=runner).pick_folder("/tmp")

    assert outcome.status is DialogStatus.ERROR
    assert outcome.error == "Dialog timed out"


# TEST257: Windows passes dialog arguments through the environment, not the script
def test_windows_save_file_env(tmp_path):
    runner = FakeRunner({"powershell": (0, "C:\\Users\\me\\a.pdf\r\n", "")})
    outcome = WindowsDialogBackend(runner=runner).save_file("a.pdf", str(tmp_path))

    assert outcome == DialogOutcome.selected("C:\\Users\\me\\a.pdf")
    argv, kwargs = runner.calls[0]
    assert "a.pdf" not in " ".join(argv)
    assert kwargs["env"]["DOWNLOAD_ROUTER_FILENAME"] == "a.pdf"
    assert kwargs["env"]["DOWNLOAD_ROUTER_START"] == str(tmp_path)


# TEST258: Windows empty output with exit 0 means the user closed the dialog
def test_windows_empty_output_cancelled():
    runner = FakeRunner({"powershell": (0, "\r\n", "")})
    assert WindowsDialogBackend(runner=runner).pick_folder("C:\\").status is DialogStatus.CANCELLED


# TEST259: Linux falls back to kdialog when zenity is not installed
def test_linux_kdialog_fallback(tmp_path):
    runner = FakeRunner({
        "zenity": FileNotFoundError("zenity"),
        "kdialog": (0, "/home/me/Docs\n", ""),
    })
    outcome = LinuxDialogBackend(downloads_dir=tmp_path, runner=runner).pick_folder(str(tmp_path))

    assert outcome == DialogOutcome.selected("/home/me/Docs")
    assert [call[0][0] for call in runner.calls] == ["zenity", "kdialog"]


# TEST260: Linux without any dialog program reports which were missing
def test_linux_no_dialog_program(tmp_path):
    runner = FakeRunner({
        "zenity": FileNotFoundError("zenity"),
        "kdialog": FileNotFoundError("kdialog"),
    })
    outcome = LinuxDialogBackend(downloads_dir=tmp_path, runner=runner).save_file("a.txt")

    assert outcome.status is DialogStatus.ERROR
    assert "zenity or kdialog" in outcome.error
    assert outcome.details["missing"] == ["zenity", "kdialog"]


# TEST261: zenity's exit status 1 is a cancellation
def test_linux_zenity_cancel(tmp_path):
    runner = FakeRunner({"zenity": (1, "", "")})
    outcome = LinuxDialogBackend(downloads_dir=tmp_path, runner=runner).pick_folder(None)
    assert outcome.status is DialogStatus.CANCELLED
    assert runner.calls[0][0][-1] == f"--filename={tmp_path}/"


# TEST262: outcomes map to folderPicked responses
def test_pick_folder_response_mapping():
    assert pick_folder_response(DialogOutcome.selected("/x")) == {
        "success": True, "type": "folderPicked", "path": "/x",
    }
    assert pick_folder_response(DialogOutcome.cancelled()) == {
        "success": False,
        "error": "User cancelled folder selection",
        "code": "CANCELLED",
        "type": "folderPicked",
    }
    failed = pick_folder_response(DialogOutcome.failed("boom", status=3))
    assert failed["code"] == "DIALOG_ERROR"
    assert failed["details"] == {"status": 3}


# TEST263: outcomes map to filePicked responses
def test_save_dialog_response_mapping():
    assert save_dialog_response(DialogOutcome.selected("/x/a.pdf")) == {
        "success": True, "type": "filePicked", "filePath": "/x/a.pdf",
    }
    assert save_dialog_response(DialogOutcome.cancelled())["code"] == "CANCELLED"
    assert save_dialog_response(DialogOutcome.failed("boom"))["code"] == "DIALOG_ERROR"
