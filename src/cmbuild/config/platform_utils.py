"""Host Platform Detection Utilities.

This module detects the host operating system for SDK root selection.
The host platform never influences compiler flags or the memory layout;
it only decides where the vendor SDK is expected to live.

Supported Platforms:
    - macos (default, matches the vendor's /Developer install location)
    - linux
    - windows
"""

import logging
import platform
from typing import Literal, Optional

from ..errors import ConfigError

logger = logging.getLogger(__name__)

HostPlatform = Literal["macos", "linux", "windows"]

DEFAULT_HOST_PLATFORM: HostPlatform = "macos"

_ALIASES = {
    "darwin": "macos",
    "macos": "macos",
    "osx": "macos",
    "linux": "linux",
    "windows": "windows",
    "win32": "windows",
    "win64": "windows",
}


class PlatformDetector:
    """Detects the host platform for SDK root selection."""

    @staticmethod
    def normalize(name: str) -> HostPlatform:
        """Normalize a platform name such as 'Darwin' or 'win32'.

        Args:
            name: Platform name from platform.system() or user configuration

        Returns:
            Normalized host platform identifier

        Raises:
            ConfigError: If the platform is not supported
        """
        key = name.strip().lower()
        if key not in _ALIASES:
            raise ConfigError(
                f"Unsupported host platform: {name}. "
                + f"Supported: {', '.join(sorted(set(_ALIASES.values())))}"
            )
        return _ALIASES[key]  # type: ignore[return-value]

    @staticmethod
    def detect_host_platform(override: Optional[str] = None) -> HostPlatform:
        """Detect the current host platform.

        Unrecognized detected platforms fall back to the default; only an
        explicit override is validated strictly.

        Args:
            override: Explicit platform name, bypasses detection when set

        Returns:
            Host platform identifier

        Raises:
            ConfigError: If the override names an unsupported platform
        """
        if override:
            return PlatformDetector.normalize(override)

        detected = platform.system()
        try:
            return PlatformDetector.normalize(detected)
        except ConfigError:
            logger.warning(
                f"Unrecognized host platform {detected!r}, assuming {DEFAULT_HOST_PLATFORM}"
            )
            return DEFAULT_HOST_PLATFORM
