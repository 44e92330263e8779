"""Host configuration

Defaults suit a host launched by the browser. Every field can be overridden
from the environment, which is the only configuration channel a browser-launched
native host has.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from download_router.frame import MAX_FRAME


# Seconds to wait after stdin closes before exiting
DEFAULT_GRACE_PERIOD = 5.0

# Seconds a native dialog may stay open
DEFAULT_DIALOG_TIMEOUT = 120.0

ENV_PREFIX = "DOWNLOAD_ROUTER_"


class ConfigError(Exception):
    """Invalid configuration value"""
    pass


def default_downloads_dir() -> Path:
    return Path.home() / "Downloads"


@dataclass
class HostConfig:
    """Native messaging host settings"""
    max_frame: int = MAX_FRAME  # Maximum frame payload in bytes
    shutdown_grace_period: float = DEFAULT_GRACE_PERIOD
    dialog_timeout: float = DEFAULT_DIALOG_TIMEOUT
    log_level: str = "WARNING"
    log_file: Optional[Path] = None
    downloads_dir: Optional[Path] = None

    @classmethod
    def default(cls) -> "HostConfig":
        """Create default config"""
        return cls(downloads_dir=default_downloads_dir())

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HostConfig":
        """Create config from DOWNLOAD_ROUTER_* environment variables

        Args:
            environ: Environment mapping (defaults to os.environ)

        Raises:
            ConfigError: If a numeric variable does not parse or is out of range
        """
        env = os.environ if environ is None else environ
        config = cls.default()

        max_frame = _read_number(env, "MAX_FRAME", int)
        if max_frame is not None:
            if not 0 < max_frame <= MAX_FRAME:
                raise ConfigError(f"{ENV_PREFIX}MAX_FRAME must be between 1 and {MAX_FRAME}")
            config.max_frame = max_frame

        grace = _read_number(env, "GRACE_PERIOD", float)
        if grace is not None:
            if grace < 0:
                raise ConfigError(f"{ENV_PREFIX}GRACE_PERIOD must not be negative")
            config.shutdown_grace_period = grace

        dialog_timeout = _read_number(env, "DIALOG_TIMEOUT", float)
        if dialog_timeout is not None:
            if dialog_timeout <= 0:
                raise ConfigError(f"{ENV_PREFIX}DIALOG_TIMEOUT must be positive")
            config.dialog_timeout = dialog_timeout

        log_level = env.get(ENV_PREFIX + "LOG_LEVEL")
        if log_level:
            config.log_level = log_level.upper()

        log_file = env.get(ENV_PREFIX + "LOG_FILE")
        if log_file:
            config.log_file = Path(log_file).expanduser()

        downloads_dir = env.get(ENV_PREFIX + "DOWNLOADS_DIR")
        if downloads_dir:
            config.downloads_dir = Path(downloads_dir).expanduser()

        return config


def _read_number(env: Mapping[str, str], name: str, kind):
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} is not a valid {kind.__name__}: {raw!r}")
