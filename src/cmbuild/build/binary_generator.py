"""Binary Generation Utilities.

This module derives the flashable and inspectable artifacts of a linked
image:

- Raw binary (objcopy -O binary), the image programmed into flash
- Intel-hex image (objcopy -O ihex)
- Disassembly listing interleaved with source (objdump -S)
- Size report (bytes per region and per section)

Design:
    - Every derivation reads the image and never modifies it
    - Every derivation is independent and can be re-run at any time
    - Outputs are written to a temporary file and renamed into place
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional

from ..errors import ExternalToolError
from .build_paths import BuildPaths
from .linker import ExecutableImage
from .memory_layout import format_hex
from .toolchain import ArmToolchain

logger = logging.getLogger(__name__)


class BinaryGeneratorError(ExternalToolError):
    """Raised when objcopy or objdump fails."""

    pass


def _atomic_output(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.with_name(path.name + ".tmp")


def render_size_report(image: ExecutableImage) -> str:
    """Render the size report of an image.

    Example:
        Region      Used       Size   Use%
        FLASH       1424     262144   0.54%
        RAM          520      32768   1.59%
    """
    lines = [f"Size report for {image.path.name}", ""]
    lines.append(f"{'Region':<12}{'Used':>10}{'Size':>11}{'Use%':>9}")
    for region, used in image.region_usage.items():
        length = image.region_lengths.get(region, 0)
        percent = image.region_percent(region)
        shown = f"{percent:.2f}%" if percent is not None else "-"
        lines.append(f"{region:<12}{used:>10}{length:>11}{shown:>9}")

    lines.append("")
    lines.append(f"{'Section':<20}{'Size':>10}  Address")
    for section in image.sections:
        lines.append(f"{section.name:<20}{section.size:>10}  {format_hex(section.address)}")

    if image.heap_start is not None:
        lines.append("")
        lines.append(f"Heap start (end):  {format_hex(image.heap_start)}")
    if image.stack_top is not None:
        lines.append(f"Stack top:         {format_hex(image.stack_top)}")
    return "\n".join(lines) + "\n"


class BinaryGenerator:
    """Handles artifact generation from linked images.

    This class provides:
    - Image to BIN and HEX conversion using objcopy
    - Source-annotated disassembly using objdump
    - Size reports rendered from the image's region usage
    """

    def __init__(self, toolchain: ArmToolchain, paths: BuildPaths, show_progress: bool = False):
        """Initialize binary generator.

        Args:
            toolchain: Toolchain providing objcopy and objdump
            paths: Build paths (default output locations)
            show_progress: Whether to print generation progress
        """
        self.toolchain = toolchain
        self.paths = paths
        self.show_progress = show_progress

    def _run(self, tool: str, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug("Running: " + " ".join(cmd))
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
            raise BinaryGeneratorError(tool, -1, str(e))
        if result.returncode != 0:
            raise BinaryGeneratorError(tool, result.returncode, result.stderr or result.stdout)
        return result

    def _objcopy(self, image: ExecutableImage, output: Path, output_format: str) -> Path:
        temp_file = _atomic_output(output)
        tool = self.toolchain.get_objcopy_path()
        try:
            self._run(tool.name, [str(tool), "-O", output_format, str(image.path), str(temp_file)])
            if not temp_file.exists():
                raise BinaryGeneratorError(tool.name, 0, f"{output.name} was not created")
            os.replace(temp_file, output)
        finally:
            if temp_file.exists():
                temp_file.unlink()

        if self.show_progress:
            print(f"Created {output.name} ({output.stat().st_size} bytes)")
        return output

    def generate_bin(self, image: ExecutableImage, output_bin: Optional[Path] = None) -> Path:
        """Generate the raw flash image.

        Args:
            image: Linked image
            output_bin: Optional path for output .bin file

        Returns:
            Path to generated .bin

        Raises:
            BinaryGeneratorError: If conversion fails
        """
        return self._objcopy(image, output_bin or self.paths.binary, "binary")

    def generate_hex(self, image: ExecutableImage, output_hex: Optional[Path] = None) -> Path:
        """Generate the Intel-hex image.

        Raises:
            BinaryGeneratorError: If conversion fails
        """
        return self._objcopy(image, output_hex or self.paths.hex, "ihex")

    def generate_listing(self, image: ExecutableImage, output_listing: Optional[Path] = None) -> Path:
        """Generate an address-annotated disassembly with interleaved source.

        Raises:
            BinaryGeneratorError: If objdump fails
        """
        output = output_listing or self.paths.listing
        tool = self.toolchain.get_objdump_path()
        result = self._run(tool.name, [str(tool), "-S", str(image.path)])

        temp_file = _atomic_output(output)
        temp_file.write_text(result.stdout, encoding="utf-8")
        os.replace(temp_file, output)
        return output

    def generate_size_report(self, image: ExecutableImage, output_report: Optional[Path] = None) -> Path:
        """Write the size report of an image."""
        output = output_report or self.paths.size_report
        temp_file = _atomic_output(output)
        temp_file.write_text(render_size_report(image), encoding="utf-8")
        os.replace(temp_file, output)
        return output
