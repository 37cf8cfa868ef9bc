"""
Build session settings.

BuildSettings is the single configuration value of a build session. It is
assembled once at startup from (in order of precedence) command-line
overrides, CMBUILD_* environment variables, cmbuild.ini and defaults, and is
then passed explicitly to every component. No component consults the working
directory or the process environment on its own.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from ..errors import ConfigError
from .ini_parser import CONFIG_FILE_NAME, ProjectConfig, parse_size, split_flags
from .target_resolver import TargetConfiguration, resolve

ENV_PART = "CMBUILD_PART"
ENV_JOBS = "CMBUILD_JOBS"
ENV_HOST_PLATFORM = "CMBUILD_HOST_PLATFORM"
ENV_SDK_ROOT = "CMBUILD_SDK_ROOT"
ENV_VERBOSE = "CMBUILD_VERBOSE"

DEFAULT_GDB_ENDPOINT = "localhost:7777"


def _parse_jobs(value: str, origin: str) -> int:
    try:
        jobs = int(value)
    except ValueError:
        raise ConfigError(f"Invalid worker count from {origin}: {value!r}")
    if jobs < 1:
        raise ConfigError(f"Worker count from {origin} must be at least 1, got {jobs}")
    return jobs


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BuildSettings:
    """Explicit configuration for one build session."""

    project_dir: Path
    env_name: str
    part: str
    project_name: str = "main"
    src_dir: Optional[Path] = None
    build_flags: Tuple[str, ...] = ()
    optimization: str = "-O3"
    c_std: str = "c99"
    toolchain_prefix: str = "arm-none-eabi"
    toolchain_dir: Optional[Path] = None
    sdk_root: Optional[Path] = None
    host_platform: Optional[str] = None
    flash_size: Optional[int] = None
    ram_size: Optional[int] = None
    flasher: str = "lm4flash"
    flasher_flags: Tuple[str, ...] = ()
    debug_server: str = "lmicdi"
    gdb_endpoint: str = DEFAULT_GDB_ENDPOINT
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    verbose: bool = False

    @property
    def source_root(self) -> Path:
        """Root of the source tree that is scanned for sources."""
        return self.src_dir if self.src_dir is not None else self.project_dir

    def resolve_target(self) -> TargetConfiguration:
        """Resolve this session's part into a TargetConfiguration.

        Raises:
            ConfigError: If the part is unknown
        """
        return resolve(
            self.part,
            host_platform=self.host_platform,
            sdk_root=self.sdk_root,
            flash_size=self.flash_size,
            ram_size=self.ram_size,
        )

    @classmethod
    def from_project(
        cls,
        project_dir: Path,
        env_name: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        part: Optional[str] = None,
        jobs: Optional[int] = None,
        verbose: Optional[bool] = None,
    ) -> "BuildSettings":
        """Load settings for a project directory.

        Args:
            project_dir: Directory containing cmbuild.ini
            env_name: Environment to use (default from cmbuild.ini)
            environ: Environment variables (defaults to os.environ)
            part: Part identifier override
            jobs: Worker count override
            verbose: Verbosity override

        Returns:
            BuildSettings for the session

        Raises:
            ConfigError: If the configuration is missing or invalid
        """
        project_dir = Path(project_dir).resolve()
        environ = os.environ if environ is None else environ

        config = ProjectConfig(project_dir / CONFIG_FILE_NAME)
        if env_name is None:
            env_name = config.get_default_environment()
            if env_name is None:
                raise ConfigError(f"No environments found in {CONFIG_FILE_NAME}")

        values = config.get_env_config(env_name, required=())

        resolved_part = part or environ.get(ENV_PART) or values.get("part", "")
        if not resolved_part:
            raise ConfigError(
                f"Environment '{env_name}' does not define a part "
                + f"(set 'part' in {CONFIG_FILE_NAME} or {ENV_PART})"
            )

        if jobs is not None:
            resolved_jobs = _parse_jobs(str(jobs), "--jobs")
        elif environ.get(ENV_JOBS):
            resolved_jobs = _parse_jobs(environ[ENV_JOBS], ENV_JOBS)
        elif values.get("jobs"):
            resolved_jobs = _parse_jobs(values["jobs"], CONFIG_FILE_NAME)
        else:
            resolved_jobs = os.cpu_count() or 1

        if verbose is None:
            verbose = _truthy(environ.get(ENV_VERBOSE, ""))

        sdk_root = environ.get(ENV_SDK_ROOT) or values.get("sdk_root")
        toolchain_dir = values.get("toolchain_dir")
        src_dir = values.get("src_dir")

        return cls(
            project_dir=project_dir,
            env_name=env_name,
            part=resolved_part,
            project_name=values.get("project_name") or "main",
            src_dir=(project_dir / src_dir) if src_dir else None,
            build_flags=tuple(split_flags(values.get("build_flags", ""), "build_flags")),
            optimization=values.get("optimization") or "-O3",
            c_std=values.get("c_std") or "c99",
            toolchain_prefix=values.get("toolchain_prefix") or "arm-none-eabi",
            toolchain_dir=Path(toolchain_dir) if toolchain_dir else None,
            sdk_root=Path(sdk_root) if sdk_root else None,
            host_platform=environ.get(ENV_HOST_PLATFORM) or values.get("host_platform") or None,
            flash_size=parse_size(values["flash_size"]) if values.get("flash_size") else None,
            ram_size=parse_size(values["ram_size"]) if values.get("ram_size") else None,
            flasher=values.get("flasher") or "lm4flash",
            flasher_flags=tuple(split_flags(values.get("flasher_flags", ""), "flasher_flags")),
            debug_server=values.get("debug_server") or "lmicdi",
            gdb_endpoint=values.get("gdb_endpoint") or DEFAULT_GDB_ENDPOINT,
            jobs=resolved_jobs,
            verbose=verbose,
        )
