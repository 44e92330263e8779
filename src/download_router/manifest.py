"""Native messaging host manifest

Browsers find a native host through a small JSON manifest naming the host,
the executable to launch, and the extensions allowed to connect:

```json
{
  "name": "com.downloadrouter.host",
  "description": "Download Router Companion",
  "path": "/usr/local/bin/download-router-host",
  "type": "stdio",
  "allowed_origins": ["chrome-extension://<extension-id>/"]
}
```

On macOS and Linux the manifest is a file in the browser's per-user
NativeMessagingHosts directory. Windows registers it in the registry, which
this module does not do.
"""

import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from download_router.frame import HOST_NAME


logger = logging.getLogger(__name__)

HOST_DESCRIPTION = "Download Router Companion"

# Host names: dot-separated lowercase alphanumerics and underscores
HOST_NAME_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")

EXTENSION_ORIGIN_PREFIX = "chrome-extension://"


class ManifestError(Exception):
    """Invalid manifest or unsupported install target"""
    pass


class HostManifest:
    """Native messaging host manifest"""

    def __init__(self, name: str, description: str, path: str, allowed_origins: List[str]):
        self.name = name
        self.description = description
        self.path = path
        self.allowed_origins = allowed_origins
        self.type = "stdio"

    @classmethod
    def for_extension(cls, executable: str, extension_id: str) -> "HostManifest":
        """Manifest allowing one extension to launch executable"""
        return cls(
            name=HOST_NAME,
            description=HOST_DESCRIPTION,
            path=executable,
            allowed_origins=[f"{EXTENSION_ORIGIN_PREFIX}{extension_id}/"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict"""
        return {
            "name": self.name,
            "description": self.description,
            "path": self.path,
            "type": self.type,
            "allowed_origins": list(self.allowed_origins),
        }

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostManifest":
        """Parse from dict"""
        try:
            manifest = cls(
                name=data["name"],
                description=data.get("description", ""),
                path=data["path"],
                allowed_origins=list(data.get("allowed_origins", [])),
            )
        except KeyError as e:
            raise ManifestError(f"Manifest missing required field {e}")
        manifest.type = data.get("type", "stdio")
        return manifest

    @classmethod
    def from_json(cls, json_str: str) -> "HostManifest":
        """Parse from JSON string"""
        return cls.from_dict(json.loads(json_str))

    def validate(self) -> None:
        """Check the manifest is one a browser will accept

        Raises:
            ManifestError: On an invalid name, relative path, wrong type or no origins
        """
        if not HOST_NAME_PATTERN.match(self.name):
            raise ManifestError(f"Invalid host name: {self.name!r}")
        if not os.path.isabs(self.path):
            raise ManifestError(f"Host path must be absolute: {self.path!r}")
        if self.type != "stdio":
            raise ManifestError(f"Unsupported host type: {self.type!r}")
        if not self.allowed_origins:
            raise ManifestError("Manifest must allow at least one origin")
        for origin in self.allowed_origins:
            if not origin.startswith(EXTENSION_ORIGIN_PREFIX) or not origin.endswith("/"):
                raise ManifestError(f"Invalid allowed origin: {origin!r}")


def manifest_dir(platform: Optional[str] = None, home: Optional[Path] = None) -> Path:
    """Chrome's per-user NativeMessagingHosts directory

    Raises:
        ManifestError: On Windows, where hosts are registered in the registry
    """
    platform = platform or sys.platform
    home = home or Path.home()

    if platform == "darwin":
        return home / "Library" / "Application Support" / "Google" / "Chrome" / "NativeMessagingHosts"
    if platform == "win32":
        raise ManifestError(
            "Windows hosts are registered under "
            "HKCU\\Software\\Google\\Chrome\\NativeMessagingHosts; file install is not supported"
        )
    if platform.startswith("linux") or platform.startswith("freebsd"):
        return home / ".config" / "google-chrome" / "NativeMessagingHosts"
    raise ManifestError(f"Unsupported platform: {platform}")


def install_manifest(
    executable: str,
    extension_id: str,
    platform: Optional[str] = None,
    home: Optional[Path] = None,
) -> Path:
    """Write the host manifest for extension_id

    Args:
        executable: Absolute path of the host executable
        extension_id: Chrome extension id allowed to connect
        platform: Target platform (defaults to the running one)
        home: Home directory (defaults to the current user's)

    Returns:
        Path of the written manifest

    Raises:
        ManifestError: If the manifest is invalid or the platform unsupported
    """
    manifest = HostManifest.for_extension(executable, extension_id)
    manifest.validate()

    directory = manifest_dir(platform, home)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / f"{manifest.name}.json"
        target.write_text(manifest.to_json(), encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Failed to write manifest: {e}")

    logger.info("Installed native messaging host manifest at %s", target)
    return target
