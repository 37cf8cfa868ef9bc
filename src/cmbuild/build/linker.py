"""
ARM linker wrapper for creating firmware images.

This module links object files, the vendor driver library and the toolchain
runtime libraries into one executable image (.axf) using arm-none-eabi-ld
and a linker script rendered from the memory layout model. After a
successful link the image is inspected with arm-none-eabi-size and
arm-none-eabi-nm to recover its sections, symbols and per-region occupancy.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..config.target_resolver import TargetConfiguration
from ..errors import ConfigError, LinkError
from .build_paths import BuildPaths
from .compiler import ObjectArtifact
from .memory_layout import HEAP_START_SYMBOL, STACK_TOP_SYMBOL, MemoryLayout
from .toolchain import ArmToolchain

logger = logging.getLogger(__name__)

# ld quotes names as `name' (older binutils) or 'name' / ‘name’ (newer)
_QUOTED = r"[`'‘]([^`'‘’]+)['’]"
UNDEFINED_REFERENCE_RE = re.compile(r"undefined reference to " + _QUOTED)
REGION_OVERFLOW_RE = re.compile(r"region " + _QUOTED + r" overflowed by (\d+) bytes")
SECTION_NO_FIT_RE = re.compile(r"will not fit in region " + _QUOTED)


@dataclass(frozen=True)
class ImageSection:
    """One output section of a linked image."""

    name: str
    size: int
    address: int


@dataclass
class ExecutableImage:
    """A linked firmware image and the facts recovered from it."""

    path: Path
    entry_point: Optional[int]
    symbols: Dict[str, int] = field(default_factory=dict)
    sections: List[ImageSection] = field(default_factory=list)
    region_usage: Dict[str, int] = field(default_factory=dict)
    region_lengths: Dict[str, int] = field(default_factory=dict)
    map_file: Optional[Path] = None

    @property
    def section_sizes(self) -> Dict[str, int]:
        return {section.name: section.size for section in self.sections}

    @property
    def heap_start(self) -> Optional[int]:
        return self.symbols.get(HEAP_START_SYMBOL)

    @property
    def stack_top(self) -> Optional[int]:
        return self.symbols.get(STACK_TOP_SYMBOL)

    def region_percent(self, region: str) -> Optional[float]:
        """Calculate region usage percentage."""
        length = self.region_lengths.get(region)
        if length:
            return (self.region_usage.get(region, 0) / length) * 100
        return None


def parse_size_output(output: str) -> List[ImageSection]:
    """
    Parse `size -A -d` output.

    Args:
        output: Output of `arm-none-eabi-size -A -d image.axf`

    Returns:
        Sections in output order (the Total line is skipped)
    """
    sections: List[ImageSection] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 3 or not parts[0].startswith("."):
            continue
        try:
            sections.append(ImageSection(parts[0], int(parts[1]), int(parts[2])))
        except ValueError:
            continue
    return sections


def parse_nm_output(output: str) -> Dict[str, int]:
    """
    Parse `nm` output into defined symbol addresses.

    Undefined symbols (no address) are skipped.
    """
    symbols: Dict[str, int] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 3:
            continue
        address, _kind, name = parts
        try:
            symbols[name] = int(address, 16)
        except ValueError:
            continue
    return symbols


def classify_link_failure(output: str) -> LinkError:
    """Turn linker output into the most specific LinkError."""
    match = UNDEFINED_REFERENCE_RE.search(output)
    if match:
        return LinkError(
            f"undefined reference to '{match.group(1)}'\n{output.strip()}",
            reason=LinkError.UNRESOLVED_SYMBOL,
            subject=match.group(1),
        )

    match = REGION_OVERFLOW_RE.search(output) or SECTION_NO_FIT_RE.search(output)
    if match:
        return LinkError(
            f"region {match.group(1)} overflowed\n{output.strip()}",
            reason=LinkError.REGION_OVERFLOW,
            subject=match.group(1),
        )

    return LinkError(output.strip() or "linker failed without output")


class ArmLinker:
    """
    Wrapper for the ARM linker tools.

    Links object files into an executable image using arm-none-eabi-ld,
    then inspects it with arm-none-eabi-size and arm-none-eabi-nm.
    """

    def __init__(self, toolchain: ArmToolchain, paths: BuildPaths, timeout: Optional[float] = 300):
        """
        Initialize linker.

        Args:
            toolchain: Toolchain providing ld, gcc, size and nm
            paths: Build paths of the environment
            timeout: Link timeout in seconds
        """
        self.toolchain = toolchain
        self.paths = paths
        self.timeout = timeout

    @property
    def command_file(self) -> Path:
        """Record of the last successful link command."""
        return self.paths.image.with_name(self.paths.image.name + ".cmd")

    def write_script(self, layout: MemoryLayout) -> Path:
        """
        Render the layout into the environment's linker script.

        The script is only rewritten when its content changes, so an
        unchanged layout never forces a relink.

        Raises:
            LayoutError: If the layout is invalid
        """
        script = layout.render()
        path = self.paths.linker_script
        if path.exists() and path.read_text(encoding="utf-8") == script:
            return path

        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_name(path.name + ".tmp")
        temp_file.write_text(script, encoding="utf-8")
        os.replace(temp_file, path)
        logger.debug(f"Wrote linker script {path}")
        return path

    def build_command(
        self,
        objects: Sequence[Path],
        libraries: Sequence[Path],
        script: Path,
        output: Path,
        entry: str,
    ) -> List[str]:
        cmd = [
            str(self.toolchain.get_ld_path()),
            "-T", str(script),
            "--gc-sections",        # Drop unreferenced sections
            "--entry", entry,
            "-Map", str(self.paths.map_file),
            "-o", str(output),
        ]
        cmd.extend(str(obj) for obj in objects)
        cmd.extend(str(lib) for lib in libraries)
        return cmd

    def needs_relink(self, objects: Sequence[Path], inputs: Sequence[Path], command: List[str]) -> bool:
        """
        Check if the image is older than any link input.

        Args:
            objects: Object files
            inputs: Other link inputs (libraries, linker script)
            command: Link command that would be run
        """
        image = self.paths.image
        if not image.exists() or not self.command_file.exists():
            return True

        # A changed object set or flag set changes the command
        if self.command_file.read_text(encoding="utf-8") != "\n".join(command):
            return True

        image_mtime = image.stat().st_mtime
        for path in [*objects, *inputs]:
            if not path.exists() or path.stat().st_mtime > image_mtime:
                return True
        return False

    def link(
        self,
        objects: Sequence[Union[ObjectArtifact, Path]],
        config: TargetConfiguration,
        layout: MemoryLayout,
    ) -> ExecutableImage:
        """
        Link object files into an executable image.

        Process:
        1. Validate the layout and render the linker script
        2. Locate the driver library and the runtime libraries
        3. Link into a temporary file and move it into place
        4. Inspect sections and symbols, check region occupancy

        Args:
            objects: Objects of the build
            config: Target configuration (driver library, CPU flags)
            layout: Memory layout model

        Returns:
            ExecutableImage

        Raises:
            LayoutError: If the layout is invalid (before ld is run)
            ConfigError: If a library cannot be located
            LinkError: On unresolved symbols, region overflow or other failures
        """
        object_paths = [obj.path if isinstance(obj, ObjectArtifact) else Path(obj) for obj in objects]
        if not object_paths:
            raise LinkError("No object files to link")

        script = self.write_script(layout)

        driverlib = config.driverlib_path
        if not driverlib.exists():
            raise ConfigError(
                f"Driver library not found: {driverlib}. "
                + f"Check that the {config.family} SDK is installed or set sdk_root."
            )
        libraries = [driverlib, *self.toolchain.runtime_libraries(config.cpu_flags())]

        image = self.paths.image
        command = self.build_command(object_paths, libraries, script, image, layout.entry)

        if not self.needs_relink(object_paths, [driverlib, script], command):
            logger.debug(f"{image.name} is up to date")
            return self.inspect(image, layout)

        temp_image = image.with_name(image.name + ".tmp")
        temp_command = self.build_command(object_paths, libraries, script, temp_image, layout.entry)
        self._remove(self.command_file)

        logger.debug("Running: " + " ".join(temp_command))
        try:
            result = subprocess.run(
                temp_command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            self._remove(temp_image, image)
            raise LinkError(f"Link timeout after {self.timeout}s")
        except OSError as e:
            self._remove(temp_image, image)
            raise LinkError(f"Failed to run linker: {e}")

        if result.returncode != 0 or not temp_image.exists():
            self._remove(temp_image, image)
            raise classify_link_failure(result.stderr + result.stdout)

        os.replace(temp_image, image)

        try:
            linked = self.inspect(image, layout)
            layout.check_occupancy(linked.region_usage)
        except LinkError:
            self._remove(image)
            raise

        self.command_file.write_text("\n".join(command), encoding="utf-8")
        return linked

    def inspect(self, image: Path, layout: MemoryLayout) -> ExecutableImage:
        """
        Recover sections, symbols and region usage of a linked image.

        Raises:
            LinkError: If size or nm fail
        """
        sections = parse_size_output(
            self._run_tool(self.toolchain.get_size_path(), ["-A", "-d", str(image)])
        )
        symbols = parse_nm_output(self._run_tool(self.toolchain.get_nm_path(), [str(image)]))
        usage = layout.occupancy({section.name: section.size for section in sections})

        return ExecutableImage(
            path=image,
            entry_point=symbols.get(layout.entry),
            symbols=symbols,
            sections=sections,
            region_usage=usage,
            region_lengths={region.name: region.length for region in layout.regions},
            map_file=self.paths.map_file if self.paths.map_file.exists() else None,
        )

    def _run_tool(self, tool_path: Path, args: List[str]) -> str:
        tool = tool_path.name
        cmd = [str(tool_path), *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            raise LinkError(f"Failed to run {tool}: {e}")
        if result.returncode != 0:
            raise LinkError(f"{tool} failed: {result.stderr.strip()}")
        return result.stdout

    @staticmethod
    def _remove(*paths: Path) -> None:
        for path in paths:
            if path.exists():
                path.unlink()
