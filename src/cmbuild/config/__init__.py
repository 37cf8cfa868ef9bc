"""Configuration modules for cmbuild."""

from .ini_parser import CONFIG_FILE_NAME, ProjectConfig, ProjectConfigError, parse_size
from .platform_utils import PlatformDetector
from .settings import BuildSettings
from .target_resolver import (
    PART_FAMILIES,
    PartFamily,
    TargetConfiguration,
    resolve,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "ProjectConfig",
    "ProjectConfigError",
    "parse_size",
    "PlatformDetector",
    "BuildSettings",
    "PART_FAMILIES",
    "PartFamily",
    "TargetConfiguration",
    "resolve",
]
