"""
Target configuration resolution for ARM Cortex-M parts.

A part identifier (e.g. 'LM4F120H5QR') is matched against a closed, ordered
table of part families. The first matching family supplies the CPU tag, FPU
flags, driver library variant and SDK selector. Adding a family is a one-entry
change to PART_FAMILIES; identifiers no family matches are rejected.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import ConfigError
from .platform_utils import HostPlatform, PlatformDetector

logger = logging.getLogger(__name__)

UNKNOWN_PART = "UnknownPart"

FLASH_ORIGIN = 0x00000000
RAM_ORIGIN = 0x20000000


@dataclass(frozen=True)
class PartFamily:
    """Fixed configuration bundle for one family of parts."""

    pattern: str  # Glob matched against the upper-cased part identifier
    name: str
    cpu: str
    fpu_flags: Tuple[str, ...]
    sdk: str  # Key into SDK_ROOTS
    driverlib_variant: str
    driverlib_file: str  # Relative to the SDK root
    defines: Tuple[str, ...] = ()
    flash_size: int = 256 * 1024
    ram_size: int = 32 * 1024


_M4F_FPU = ("-mfpu=fpv4-sp-d16", "-mfloat-abi=softfp")

# Ordered; first match wins.
PART_FAMILIES: Tuple[PartFamily, ...] = (
    PartFamily(
        pattern="LM3*",
        name="Stellaris Cortex-M3",
        cpu="cortex-m3",
        fpu_flags=(),
        sdk="stellarisware",
        driverlib_variant="cm3",
        driverlib_file="driverlib/gcc-cm3/libdriver-cm3.a",
        flash_size=256 * 1024,
        ram_size=64 * 1024,
    ),
    PartFamily(
        pattern="LM4*",
        name="Stellaris Cortex-M4F",
        cpu="cortex-m4",
        fpu_flags=_M4F_FPU,
        sdk="stellarisware",
        driverlib_variant="cm4f",
        driverlib_file="driverlib/gcc-cm4f/libdriver-cm4f.a",
        defines=("TARGET_IS_BLIZZARD_RA1",),
    ),
    PartFamily(
        pattern="TM4*",
        name="Tiva C Cortex-M4F",
        cpu="cortex-m4",
        fpu_flags=_M4F_FPU,
        sdk="tivaware",
        driverlib_variant="tivaware",
        driverlib_file="driverlib/gcc/libdriver.a",
        defines=("TARGET_IS_TM4C123_RB1",),
    ),
)

SDK_ROOTS: Dict[str, Dict[str, str]] = {
    "stellarisware": {
        "macos": "/Developer/stellarisware",
        "linux": "/opt/ti/stellarisware",
        "windows": "C:/ti/stellarisware",
    },
    "tivaware": {
        "macos": "/Developer/tivaware",
        "linux": "/opt/ti/tivaware",
        "windows": "C:/ti/tivaware",
    },
}


@dataclass(frozen=True)
class TargetConfiguration:
    """Resolved toolchain and library configuration for one part."""

    part: str
    family: str
    cpu: str
    fpu_flags: Tuple[str, ...]
    driverlib_variant: str
    sdk_root: Path
    driverlib_file: str
    defines: Tuple[str, ...] = field(default_factory=tuple)
    flash_size: int = 256 * 1024
    ram_size: int = 32 * 1024
    flash_origin: int = FLASH_ORIGIN
    ram_origin: int = RAM_ORIGIN

    @property
    def driverlib_path(self) -> Path:
        """Absolute path of the prebuilt driver library archive."""
        return self.sdk_root / self.driverlib_file

    @property
    def has_fpu(self) -> bool:
        return bool(self.fpu_flags)

    def cpu_flags(self) -> List[str]:
        """Architecture flags shared by compiler, assembler and library lookup."""
        return ["-mthumb", f"-mcpu={self.cpu}", *self.fpu_flags]

    def define_flags(self) -> List[str]:
        return [f"-D{define}" for define in self.defines]


def match_family(part: str) -> Optional[PartFamily]:
    """Return the first family whose pattern matches the part, if any."""
    candidate = part.strip().upper()
    for family in PART_FAMILIES:
        if fnmatch.fnmatchcase(candidate, family.pattern):
            return family
    return None


def supported_patterns() -> List[str]:
    return [family.pattern for family in PART_FAMILIES]


def resolve(
    part: str,
    host_platform: Optional[str] = None,
    sdk_root: Optional[Path] = None,
    flash_size: Optional[int] = None,
    ram_size: Optional[int] = None,
) -> TargetConfiguration:
    """Resolve a part identifier into its target configuration.

    Args:
        part: Part identifier, e.g. 'LM4F120H5QR'
        host_platform: Host platform name (detected when None)
        sdk_root: Explicit SDK root, overrides the per-platform table
        flash_size: Flash size override in bytes
        ram_size: RAM size override in bytes

    Returns:
        TargetConfiguration for the part

    Raises:
        ConfigError: With reason 'UnknownPart' if no family matches
    """
    if not part or not part.strip():
        raise ConfigError("No part identifier configured", reason=UNKNOWN_PART)

    family = match_family(part)
    if family is None:
        raise ConfigError(
            f"Unsupported part '{part}'. "
            + f"Supported part prefixes: {', '.join(supported_patterns())}",
            reason=UNKNOWN_PART,
        )

    if sdk_root is None:
        platform_name: HostPlatform = PlatformDetector.detect_host_platform(host_platform)
        sdk_root = Path(SDK_ROOTS[family.sdk][platform_name])

    part_name = part.strip()
    config = TargetConfiguration(
        part=part_name,
        family=family.name,
        cpu=family.cpu,
        fpu_flags=family.fpu_flags,
        driverlib_variant=family.driverlib_variant,
        sdk_root=Path(sdk_root),
        driverlib_file=family.driverlib_file,
        defines=(f"PART_{part_name}", *family.defines),
        flash_size=flash_size if flash_size is not None else family.flash_size,
        ram_size=ram_size if ram_size is not None else family.ram_size,
    )
    logger.debug(f"Resolved part {part_name} to {family.name} ({config.cpu})")
    return config
