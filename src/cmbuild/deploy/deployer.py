"""
Firmware deployment module for flashing Stellaris/Tiva boards.

This module hands the raw binary to an external flashing tool (lm4flash by
default). The tool's wire protocol is its own business; a non-zero exit is
reported with the tool's output verbatim and is never retried.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    """Result of a firmware deployment operation."""

    success: bool
    message: str
    binary: Optional[Path] = None
    output: str = ""


class Flasher:
    """Handles firmware deployment through an external flashing tool."""

    def __init__(self, tool: str = "lm4flash", flags: Sequence[str] = (), verbose: bool = False):
        """Initialize flasher.

        Args:
            tool: Flashing tool executable
            flags: Extra flags passed before the binary
            verbose: Whether to stream the tool's output to the console
        """
        self.tool = tool
        self.flags = list(flags)
        self.verbose = verbose

    def build_command(self, binary: Path) -> List[str]:
        return [self.tool, *self.flags, str(binary)]

    def flash(self, binary: Path) -> DeploymentResult:
        """Flash a raw binary to the connected board.

        Args:
            binary: Raw flash image (.bin)

        Returns:
            DeploymentResult on success

        Raises:
            ExternalToolError: If the binary is missing or the tool fails
        """
        binary = Path(binary)
        if not binary.exists():
            raise ExternalToolError(self.tool, -1, f"Firmware not found at {binary}. Run 'cmb build' first.")

        cmd = self.build_command(binary)
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
            raise ExternalToolError(self.tool, -1, f"Failed to run {self.tool}: {e}")

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise ExternalToolError(self.tool, result.returncode, output)

        if self.verbose and output:
            print(output.rstrip())

        return DeploymentResult(
            success=True,
            message="Firmware flashed successfully",
            binary=binary,
            output=output,
        )
