"""Tests for manifest - native messaging host manifest"""

import json

import pytest

from download_router.frame import HOST_NAME
from download_router.manifest import HostManifest, ManifestError, install_manifest, manifest_dir


EXTENSION_ID = "abcdefghijklmnopabcdefghijklmnop"


# TEST350: for_extension builds the manifest Chrome expects
def test_for_extension():
    manifest = HostManifest.for_extension("/usr/local/bin/download-router-host", EXTENSION_ID)

    assert manifest.to_dict() == {
        "name": HOST_NAME,
        "description": "Download Router Companion",
        "path": "/usr/local/bin/download-router-host",
        "type": "stdio",
        "allowed_origins": [f"chrome-extension://{EXTENSION_ID}/"],
    }
    manifest.validate()


# TEST351: to_json and from_json preserve every field
def test_json_roundtrip():
    manifest = HostManifest.for_extension("/opt/host", EXTENSION_ID)
    parsed = HostManifest.from_json(manifest.to_json())
    assert parsed.to_dict() == manifest.to_dict()


# TEST352: from_dict without required fields raises ManifestError
def test_from_dict_missing_field():
    with pytest.raises(ManifestError, match="path"):
        HostManifest.from_dict({"name": HOST_NAME})


# TEST353: validate rejects bad names, relative paths and missing or malformed origins
@pytest.mark.parametrize("changes,match", [
    ({"name": "Com.Download-Router"}, "Invalid host name"),
    ({"name": "com..host"}, "Invalid host name"),
    ({"path": "bin/host"}, "absolute"),
    ({"allowed_origins": []}, "at least one origin"),
    ({"allowed_origins": ["https://example.com/"]}, "Invalid allowed origin"),
])
def test_validate_rejects(changes, match):
    manifest = HostManifest.for_extension("/opt/host", EXTENSION_ID)
    for key, value in changes.items():
        setattr(manifest, key, value)
    with pytest.raises(ManifestError, match=match):
        manifest.validate()


# TEST354: manifest_dir points at Chrome's per-user host directory
def test_manifest_dir(tmp_path):
    assert manifest_dir("darwin", tmp_path) == (
        tmp_path / "Library" / "Application Support" / "Google" / "Chrome" / "NativeMessagingHosts"
    )
    assert manifest_dir("linux", tmp_path) == tmp_path / ".config" / "google-chrome" / "NativeMessagingHosts"
    with pytest.raises(ManifestError, match="registry"):
        manifest_dir("win32", tmp_path)


# TEST355: install_manifest writes <host name>.json into the host directory
def test_install_manifest(tmp_path):
    path = install_manifest("/opt/host", EXTENSION_ID, platform="linux", home=tmp_path)

    assert path == manifest_dir("linux", tmp_path) / f"{HOST_NAME}.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["path"] == "/opt/host"
    assert data["allowed_origins"] == [f"chrome-extension://{EXTENSION_ID}/"]


# TEST356: install_manifest validates before touching the filesystem
def test_install_manifest_invalid(tmp_path):
    with pytest.raises(ManifestError):
        install_manifest("relative/host", EXTENSION_ID, platform="linux", home=tmp_path)
    assert not (tmp_path / ".config").exists()
