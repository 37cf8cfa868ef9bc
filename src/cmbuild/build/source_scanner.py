"""
Source file discovery.

This module enumerates the source artifacts of a firmware project:
- Assembly (.s)
- C (.c)
- C++ (.cpp, .cc, .cxx)

Discovery is a pure function of the tree under the scanned root. Results are
deduplicated and sorted so repeated scans return identical collections.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set


class SourceKind(Enum):
    """Kind of a source artifact, selecting the tool that compiles it."""

    ASSEMBLY = "asm"
    C = "c"
    CXX = "cxx"


SUFFIX_KINDS: Dict[str, SourceKind] = {
    ".s": SourceKind.ASSEMBLY,
    ".c": SourceKind.C,
    ".cpp": SourceKind.CXX,
    ".cc": SourceKind.CXX,
    ".cxx": SourceKind.CXX,
}

HEADER_SUFFIXES = {".h", ".hpp", ".hh"}

# Directories to exclude from scanning
EXCLUDED_DIRS = {".cmbuild", "build", ".git", "__pycache__", "node_modules"}

_KIND_ORDER = {SourceKind.ASSEMBLY: 0, SourceKind.C: 1, SourceKind.CXX: 2}


@dataclass(frozen=True)
class SourceArtifact:
    """A source file, identified by its path relative to the source root."""

    path: Path
    kind: SourceKind

    def absolute(self, root: Path) -> Path:
        return Path(root) / self.path


class SourceScanner:
    """
    Scans a source tree for assembly, C and C++ sources.

    Usage:
        scanner = SourceScanner(Path("firmware"))
        for source in scanner.discover():
            print(source.kind, source.path)
    """

    def __init__(self, root: Path):
        """
        Initialize source scanner.

        Args:
            root: Root directory of the source tree
        """
        self.root = Path(root)

    @staticmethod
    def kind_of(path: Path) -> Optional[SourceKind]:
        """Source kind for a file name, or None if it is not a source."""
        return SUFFIX_KINDS.get(Path(path).suffix)

    def _walk(self) -> List[Path]:
        files: List[Path] = []
        if not self.root.is_dir():
            return files
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in EXCLUDED_DIRS]
            for filename in filenames:
                files.append(Path(dirpath) / filename)
        return files

    def discover(self) -> List[SourceArtifact]:
        """
        Enumerate every source artifact under the root.

        Returns:
            Sorted, deduplicated list of SourceArtifact (by kind, then path)
        """
        found: Set[SourceArtifact] = set()
        for file_path in self._walk():
            kind = self.kind_of(file_path)
            if kind is None:
                continue
            found.add(SourceArtifact(file_path.relative_to(self.root), kind))

        return sorted(found, key=lambda s: (_KIND_ORDER[s.kind], s.path.as_posix()))

    def find_headers(self) -> List[Path]:
        """
        Find all header files in the source tree.

        Returns:
            Sorted list of header paths relative to the root
        """
        headers = {
            path.relative_to(self.root)
            for path in self._walk()
            if path.suffix in HEADER_SUFFIXES
        }
        return sorted(headers, key=lambda p: p.as_posix())
