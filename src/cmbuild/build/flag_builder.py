"""Compilation Flag Builder.

This module builds assembler and compiler flags from a resolved target
configuration.

Design:
    - Architecture flags (-mthumb, -mcpu, FPU) come from the target
    - Part defines (PART_<part>, target silicon revision) come from the target
    - User build flags from cmbuild.ini are appended last so they can override
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config.target_resolver import TargetConfiguration


class FlagBuilder:
    """Builds compilation flags for one target.

    This class handles:
    - Parsing flag strings with quoted values
    - Architecture and FPU flags
    - Part-specific defines
    - Merging user build flags
    """

    def __init__(
        self,
        target: TargetConfiguration,
        include_paths: Optional[Sequence[Path]] = None,
        optimization: str = "-O3",
        c_std: str = "c99",
        user_build_flags: Optional[Sequence[str]] = None,
    ):
        """Initialize flag builder.

        Args:
            target: Resolved target configuration
            include_paths: Include directories (the SDK root is always added)
            optimization: Optimization flag, e.g. '-O3' or '-Os'
            c_std: C language standard
            user_build_flags: Build flags from cmbuild.ini
        """
        self.target = target
        self.include_paths = list(include_paths or [])
        self.optimization = optimization
        self.c_std = c_std
        self.user_build_flags = list(user_build_flags or [])

    def include_flags(self) -> List[str]:
        paths = [*self.include_paths, self.target.sdk_root]
        seen: List[str] = []
        for path in paths:
            flag = f"-I{str(path).replace(chr(92), '/')}"
            if flag not in seen:
                seen.append(flag)
        return seen

    def build_flags(self) -> Dict[str, List[str]]:
        """Build flags for every source kind.

        Returns:
            Dictionary with 'asflags', 'common', 'cflags' and 'cxxflags' keys.
            C and C++ compilations use 'common' followed by their own list.
        """
        common = [
            *self.target.cpu_flags(),
            self.optimization,
            "-Wall",
            "-g",
            "-ffunction-sections",  # Function sections for linker GC
            "-fdata-sections",      # Data sections for linker GC
            *self.include_flags(),
            *self.target.define_flags(),
        ]
        common.extend(self.user_build_flags)

        return {
            "asflags": self.target.cpu_flags(),
            "common": common,
            "cflags": [f"-std={self.c_std}"],
            "cxxflags": [],
        }
