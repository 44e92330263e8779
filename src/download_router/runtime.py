"""Companion runtime - entry point for the host executable

**Mode Detection**:
- No arguments, or only the arguments a browser passes when it launches a host
  (the caller's `chrome-extension://<id>/` origin, and `--parent-window=N` on
  Windows): native messaging mode on stdin/stdout
- Anything else: CLI mode, one subcommand per capability, JSON on stdout

Logs always go to stderr (and optionally a JSON-lines file); stdout carries
nothing but protocol frames in native messaging mode.
"""

import argparse
import asyncio
import json
import logging
import os
import shutil
import sys
from typing import Any, Dict, List, Optional

from download_router.config import ConfigError, HostConfig
from download_router.frame import COMPANION_VERSION, ResponseCode, error_response
from download_router.handlers import get_version_response, register_default_handlers
from download_router.host import NativeMessagingHost
from download_router.manifest import ManifestError, install_manifest
from download_router.services import dialogs, file_mover, folder_operations


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

BROWSER_ORIGIN_PREFIX = "chrome-extension://"
PARENT_WINDOW_FLAG = "--parent-window="


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: location, message, level, timestamp (ms)"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "location": f"{record.name}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
            "level": record.levelname,
            "timestamp": int(record.created * 1000),
        }
        if record.exc_info:
            entry["data"] = {"exception": self.formatException(record.exc_info)}
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(config: HostConfig) -> None:
    """Send logs to stderr, plus the JSON-lines log file when configured

    Raises:
        ConfigError: If the log level is unknown or the log file cannot be opened
    """
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {config.log_level!r}")

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)

    if config.log_file is not None:
        try:
            config.log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(config.log_file, encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot open log file {config.log_file}: {e}")
        handler.setFormatter(JsonLineFormatter())
        logging.getLogger().addHandler(handler)


def is_native_messaging_launch(args: List[str]) -> bool:
    """True when args look like a browser launching the host"""
    return all(
        arg.startswith(BROWSER_ORIGIN_PREFIX) or arg.startswith(PARENT_WINDOW_FLAG)
        for arg in args
    )


def _set_binary_stdio() -> None:
    # Windows translates \n in text-mode pipes, which corrupts frames
    if sys.platform == "win32":
        import msvcrt
        msvcrt.setmode(sys.stdin.fileno(), os.O_BINARY)
        msvcrt.setmode(sys.stdout.fileno(), os.O_BINARY)


async def serve(config: HostConfig) -> None:
    """Run one native messaging host on the process stdio until it closes"""
    host = NativeMessagingHost(config)
    register_default_handlers(host)
    await host.run()


def run_native_messaging_mode(config: HostConfig) -> int:
    _set_binary_stdio()
    logger.info("Download Router companion %s starting (pid %d)", COMPANION_VERSION, os.getpid())
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    logger.info("Download Router companion stopped")
    return 0


# =============================================================================
# CLI mode
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="download-router-host",
        description="Download Router companion. Run without arguments to serve native messaging on stdio.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("version", help="Print companion version and platform")

    for name, help_text in (
        ("verify-folder", "Check whether a folder exists"),
        ("create-folder", "Create a folder and its parents"),
        ("list-folders", "List a folder's contents"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("path")

    move = subparsers.add_parser("move-file", help="Move a file to a folder or file path")
    move.add_argument("source")
    move.add_argument("destination")

    pick = subparsers.add_parser("pick-folder", help="Open the native folder picker")
    pick.add_argument("--start", dest="start_path", default=None)

    save = subparsers.add_parser("save-as", help="Open the native Save As dialog")
    save.add_argument("filename")
    save.add_argument("--dir", dest="default_directory", default=None)

    install = subparsers.add_parser("install-manifest", help="Register this host with Chrome")
    install.add_argument("--extension-id", required=True)
    install.add_argument("--executable", default=None, help="Host executable (defaults to this program)")

    return parser


def _default_executable() -> str:
    return shutil.which("download-router-host") or os.path.abspath(sys.argv[0])


def run_command(args: argparse.Namespace, config: HostConfig) -> Dict[str, Any]:
    """Execute one CLI subcommand and return its response dict"""
    command = args.command

    if command == "version":
        return get_version_response()
    if command == "verify-folder":
        return folder_operations.verify_folder(args.path)
    if command == "create-folder":
        return folder_operations.create_folder(args.path)
    if command == "list-folders":
        return folder_operations.list_folders(args.path)
    if command == "move-file":
        return file_mover.move_file(args.source, args.destination)

    if command in ("pick-folder", "save-as"):
        backend = dialogs.default_backend(timeout=config.dialog_timeout, downloads_dir=config.downloads_dir)
        if command == "pick-folder":
            return dialogs.pick_folder_response(backend.pick_folder(args.start_path))
        return dialogs.save_dialog_response(backend.save_file(args.filename, args.default_directory))

    if command == "install-manifest":
        executable = os.path.abspath(args.executable or _default_executable())
        try:
            path = install_manifest(executable, args.extension_id)
        except ManifestError as e:
            return error_response(ResponseCode.CREATE_ERROR, str(e))
        return {"success": True, "path": str(path)}

    return error_response(ResponseCode.UNKNOWN_TYPE, f"Unknown command: {command}")


def run_cli_mode(argv: List[str], config: HostConfig) -> int:
    args = build_parser().parse_args(argv)
    response = run_command(args, config)
    print(json.dumps(response, indent=2, ensure_ascii=False))
    return 0 if response.get("success") else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Run the companion in native messaging or CLI mode

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Process exit status
    """
    args = sys.argv[1:] if argv is None else list(argv)

    try:
        config = HostConfig.from_env()
        configure_logging(config)
    except ConfigError as e:
        print(f"download-router-host: {e}", file=sys.stderr)
        return 2

    if is_native_messaging_launch(args):
        return run_native_messaging_mode(config)

    return run_cli_mode(args, config)
