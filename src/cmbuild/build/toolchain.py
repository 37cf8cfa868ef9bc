"""ARM GNU toolchain discovery.

Locates the arm-none-eabi executables either in an explicit toolchain
directory or on PATH, and asks gcc where the target-specific runtime
libraries (libc, libm, libgcc) live for a given set of CPU flags.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ConfigError

logger = logging.getLogger(__name__)


class ToolchainError(ConfigError):
    """Raised when a toolchain executable or library cannot be found."""

    pass


class ArmToolchain:
    """Resolves paths of the cross toolchain executables.

    Tool names follow the GNU convention ``<prefix>-<tool>``, e.g.
    ``arm-none-eabi-gcc``.
    """

    TOOLS = ["as", "gcc", "g++", "ld", "objcopy", "objdump", "size", "nm", "gdb"]

    def __init__(self, prefix: str = "arm-none-eabi", bin_dir: Optional[Path] = None):
        """Initialize toolchain.

        Args:
            prefix: Tool name prefix
            bin_dir: Directory containing the tools (searches PATH when None)
        """
        self.prefix = prefix
        self.bin_dir = Path(bin_dir) if bin_dir is not None else None
        self._resolved: Dict[str, Path] = {}
        self._libraries: Dict[str, Path] = {}

    def tool_name(self, tool: str) -> str:
        return f"{self.prefix}-{tool}" if self.prefix else tool

    def get_tool_path(self, tool: str) -> Path:
        """Get the path of one tool.

        Raises:
            ToolchainError: If the tool cannot be found
        """
        if tool in self._resolved:
            return self._resolved[tool]

        name = self.tool_name(tool)
        if self.bin_dir is not None:
            found = shutil.which(name, path=str(self.bin_dir))
        else:
            found = shutil.which(name)
        if found is None:
            where = str(self.bin_dir) if self.bin_dir is not None else "PATH"
            raise ToolchainError(
                f"{name} not found in {where}. Ensure the ARM GNU toolchain is installed."
            )

        path = Path(found)
        self._resolved[tool] = path
        logger.debug(f"Resolved {name} -> {path}")
        return path

    def get_as_path(self) -> Path:
        return self.get_tool_path("as")

    def get_gcc_path(self) -> Path:
        return self.get_tool_path("gcc")

    def get_gxx_path(self) -> Path:
        return self.get_tool_path("g++")

    def get_ld_path(self) -> Path:
        return self.get_tool_path("ld")

    def get_objcopy_path(self) -> Path:
        return self.get_tool_path("objcopy")

    def get_objdump_path(self) -> Path:
        return self.get_tool_path("objdump")

    def get_size_path(self) -> Path:
        return self.get_tool_path("size")

    def get_nm_path(self) -> Path:
        return self.get_tool_path("nm")

    def get_gdb_path(self) -> Path:
        return self.get_tool_path("gdb")

    def _print_file_name(self, cpu_flags: Sequence[str], query: str) -> Path:
        cache_key = " ".join([*cpu_flags, query])
        if cache_key in self._libraries:
            return self._libraries[cache_key]

        cmd = [str(self.get_gcc_path()), *cpu_flags, query]
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
        answer = result.stdout.strip()
        # gcc echoes the bare name back when it cannot locate the file
        if result.returncode != 0 or not answer or not Path(answer).is_absolute():
            raise ToolchainError(f"gcc could not locate library for '{query}': {result.stderr.strip()}")

        path = Path(answer)
        self._libraries[cache_key] = path
        return path

    def runtime_libraries(self, cpu_flags: Sequence[str]) -> List[Path]:
        """Math, C and compiler support libraries for the given CPU flags.

        Returns:
            [libm.a, libc.a, libgcc.a] in link order
        """
        return [
            self._print_file_name(cpu_flags, "-print-file-name=libm.a"),
            self._print_file_name(cpu_flags, "-print-file-name=libc.a"),
            self._print_file_name(cpu_flags, "-print-libgcc-file-name"),
        ]
