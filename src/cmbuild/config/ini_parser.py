"""
cmbuild.ini configuration parser.

This module parses cmbuild.ini project files and extracts environment
configurations for building firmware.
"""

import configparser
import shlex
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..errors import ConfigError

CONFIG_FILE_NAME = "cmbuild.ini"


class ProjectConfigError(ConfigError):
    """Exception raised for cmbuild.ini configuration errors."""

    pass


def parse_size(value: str) -> int:
    """Parse a memory size such as '256K', '1M', '0x8000' or '4096'.

    Raises:
        ProjectConfigError: If the value cannot be parsed
    """
    text = str(value).strip().upper()
    multipliers = {"KB": 1024, "K": 1024, "MB": 1024 * 1024, "M": 1024 * 1024}
    try:
        for suffix, mult in multipliers.items():
            if text.endswith(suffix):
                return int(text[: -len(suffix)], 0) * mult
        return int(text, 0)
    except ValueError:
        raise ProjectConfigError(f"Invalid memory size: {value!r}")


def split_flags(value: str, key: str) -> List[str]:
    """Split a flag string the way a POSIX shell would.

    Example:
        >>> split_flags('-DFOO="bar baz" -DTEST', "build_flags")
        ['-DFOO=bar baz', '-DTEST']

    Raises:
        ProjectConfigError: If the value has an unbalanced quote or escape
    """
    try:
        return shlex.split(value)
    except ValueError as e:
        raise ProjectConfigError(f"Invalid {key} {value!r}: {e}") from e


class ProjectConfig:
    """
    Parser for cmbuild.ini configuration files.

    Example cmbuild.ini:
        [cmbuild]
        default_envs = launchpad

        [env:launchpad]
        part = LM4F120H5QR
        build_flags = -DDEBUG

    Usage:
        config = ProjectConfig(Path("cmbuild.ini"))
        envs = config.get_environments()
        launchpad = config.get_env_config("launchpad")
    """

    REQUIRED_FIELDS = {"part"}

    def __init__(self, ini_path: Path):
        """
        Initialize the parser with a cmbuild.ini file.

        Args:
            ini_path: Path to the cmbuild.ini file

        Raises:
            ProjectConfigError: If the file doesn't exist or cannot be parsed
        """
        self.ini_path = ini_path

        if not ini_path.exists():
            raise ProjectConfigError(f"Configuration file not found: {ini_path}")

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )

        try:
            self.config.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to parse {ini_path}: {e}") from e

    def get_environments(self) -> List[str]:
        """
        Get list of all environment names defined in the config.

        Example:
            For [env:launchpad], [env:stellaris], returns ['launchpad', 'stellaris']
        """
        envs = []
        for section in self.config.sections():
            if section.startswith("env:"):
                envs.append(section.split(":", 1)[1])
        return envs

    def get_env_config(
        self, env_name: str, required: Optional[Iterable[str]] = None
    ) -> Dict[str, str]:
        """
        Get configuration for a specific environment.

        Values from the base [env] section are inherited and overridden by the
        environment's own section.

        Args:
            env_name: Name of the environment (e.g., 'launchpad')
            required: Fields that must be present (defaults to REQUIRED_FIELDS)

        Returns:
            Dictionary of configuration key-value pairs

        Raises:
            ProjectConfigError: If environment not found or missing required fields
        """
        section = f"env:{env_name}"

        if section not in self.config:
            available = ", ".join(self.get_environments())
            raise ProjectConfigError(
                f"Environment '{env_name}' not found. "
                + f"Available environments: {available or 'none'}"
            )

        try:
            env_config = {
                key: (value or "").strip() for key, value in self.config[section].items()
            }
            if "env" in self.config:
                base_config = {
                    key: (value or "").strip() for key, value in self.config["env"].items()
                }
                env_config = {**base_config, **env_config}
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to read [{section}]: {e}") from e

        required_fields = set(self.REQUIRED_FIELDS if required is None else required)
        missing_fields = {
            name for name in required_fields if not env_config.get(name)
        }
        if missing_fields:
            raise ProjectConfigError(
                f"Environment '{env_name}' is missing required fields: "
                + f"{', '.join(sorted(missing_fields))}"
            )

        return env_config

    def get_default_environment(self) -> Optional[str]:
        """
        Get the default environment.

        Returns:
            First entry of default_envs in the [cmbuild] section, else the
            first environment found, else None
        """
        if "cmbuild" in self.config:
            default_envs = (self.config["cmbuild"].get("default_envs") or "").strip()
            if default_envs:
                return default_envs.split(",")[0].strip()

        envs = self.get_environments()
        return envs[0] if envs else None
