"""Dependency Store.

Each object artifact owns one dependency record: the set of headers observed
during its last successful compilation. Records are persisted as make-style
depfiles stored alongside the object (``a.c.o.d`` next to ``a.c.o``) and
reloaded on the next invocation.

Design:
    - Parses the depfiles gcc emits with -MD/-MF
    - Rewrites them in a normalized form holding only header paths
    - Replaces records atomically (temp file, then rename)
    - Guards every record and output directory with a per-path lock so two
      compilation workers never write the same record concurrently
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .build_paths import BuildPaths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyRecord:
    """Headers an object depended on at its last successful compilation."""

    object_path: Path
    headers: FrozenSet[Path] = field(default_factory=frozenset)


def _split_depfile_words(text: str) -> List[str]:
    """Split depfile text on unescaped whitespace, undoing make escapes."""
    words: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text) and text[i + 1] in " #":
            current.append(text[i + 1])
            i += 2
            continue
        if char == "$" and i + 1 < len(text) and text[i + 1] == "$":
            current.append("$")
            i += 2
            continue
        if char.isspace():
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(char)
        i += 1
    if current:
        words.append("".join(current))
    return words


def _split_rule(line: str) -> Optional[Tuple[str, str]]:
    """Split 'target: prerequisites' at the rule colon.

    Colons that belong to Windows drive letters ('C:/x' or 'C:\\x') are
    skipped.
    """
    i = 0
    while True:
        i = line.find(":", i)
        if i < 0:
            return None
        follows = line[i + 1 : i + 2]
        if i == 1 and follows in ("/", "\\"):
            i += 1
            continue
        if follows in ("/", "\\") and line[i - 1 : i].isalpha() and (
            i < 2 or line[i - 2].isspace()
        ):
            i += 1
            continue
        return line[:i], line[i + 1 :]


def parse_depfile(text: str, base_dir: Optional[Path] = None) -> List[Path]:
    """Parse the prerequisites of the first rule of a make depfile.

    Args:
        text: Depfile content
        base_dir: Directory relative prerequisites are resolved against

    Returns:
        Prerequisite paths in file order, without duplicates
    """
    joined = text.replace("\\\r\n", " ").replace("\\\n", " ")
    for line in joined.splitlines():
        if not line.strip():
            continue
        rule = _split_rule(line)
        if rule is None:
            continue
        prerequisites: List[Path] = []
        for word in _split_depfile_words(rule[1]):
            path = Path(word)
            if base_dir is not None and not path.is_absolute():
                path = Path(base_dir) / path
            if path not in prerequisites:
                prerequisites.append(path)
        return prerequisites
    return []


def format_depfile(object_path: Path, headers: Iterable[Path]) -> str:
    """Render a normalized depfile for an object and its headers."""

    def escape(path: Path) -> str:
        return str(path).replace("$", "$$").replace(" ", "\\ ").replace("#", "\\#")

    lines = [f"{escape(object_path)}:"]
    for header in sorted(headers, key=lambda p: str(p)):
        lines[-1] += " \\"
        lines.append(f"  {escape(header)}")
    return "\n".join(lines) + "\n"


class DependencyStore:
    """Persistent per-object dependency records with per-path locking.

    Usage:
        store = DependencyStore(base_dir=project_dir)
        if store.is_stale(source, obj):
            ...
            store.replace(obj, headers)
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """Initialize dependency store.

        Args:
            base_dir: Directory relative header paths are resolved against
                (the directory compilations run in)
        """
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self._locks_lock = threading.Lock()  # Master lock for the lock table
        self._path_locks: Dict[Path, threading.Lock] = {}
        self._records: Dict[Path, DependencyRecord] = {}
        self._records_lock = threading.Lock()

    def lock_for(self, path: Path) -> threading.Lock:
        """Get or create the lock guarding one object/record or directory."""
        key = Path(path)
        with self._locks_lock:
            if key not in self._path_locks:
                self._path_locks[key] = threading.Lock()
            return self._path_locks[key]

    def ensure_directory(self, directory: Path) -> None:
        """Create an output directory (and its parents) under its path lock."""
        with self.lock_for(directory):
            directory.mkdir(parents=True, exist_ok=True)

    def load(self, object_path: Path) -> Optional[DependencyRecord]:
        """Return the record for an object, reading its depfile on first use.

        Returns:
            The record, or None if the object has no depfile
        """
        object_path = Path(object_path)
        with self._records_lock:
            cached = self._records.get(object_path)
        if cached is not None:
            return cached

        depfile = BuildPaths.depfile_path(object_path)
        if not depfile.exists():
            return None

        try:
            text = depfile.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read dependency record {depfile}: {e}")
            return None

        record = DependencyRecord(
            object_path=object_path,
            headers=frozenset(parse_depfile(text, self.base_dir)),
        )
        with self._records_lock:
            self._records[object_path] = record
        return record

    def load_all(self, object_paths: Iterable[Path]) -> int:
        """Preload the records of the given objects.

        Returns:
            Number of records found on disk
        """
        return sum(1 for path in object_paths if self.load(path) is not None)

    def replace(self, object_path: Path, headers: Iterable[Path]) -> DependencyRecord:
        """Atomically replace the record of an object.

        Callers must hold ``lock_for(object_path)``.
        """
        object_path = Path(object_path)
        record = DependencyRecord(object_path=object_path, headers=frozenset(headers))
        depfile = BuildPaths.depfile_path(object_path)
        temp_file = depfile.with_name(depfile.name + ".tmp")
        temp_file.write_text(format_depfile(object_path, record.headers), encoding="utf-8")
        os.replace(temp_file, depfile)
        with self._records_lock:
            self._records[object_path] = record
        return record

    def forget(self, object_path: Path) -> None:
        with self._records_lock:
            self._records.pop(Path(object_path), None)

    def is_stale(self, source_path: Path, object_path: Path) -> Tuple[bool, str]:
        """Decide whether an object must be rebuilt from its source.

        An object is stale if it is absent, older than its source, or older
        than any header in its dependency record. A recorded header that no
        longer exists also makes the object stale, so the next compilation
        reports the missing include.

        Returns:
            Tuple of (stale, reason)
        """
        object_path = Path(object_path)
        if not object_path.exists():
            return True, "object missing"

        obj_mtime = object_path.stat().st_mtime
        if Path(source_path).stat().st_mtime > obj_mtime:
            return True, "source newer than object"

        record = self.load(object_path)
        if record is None:
            return True, "dependency record missing"

        for header in sorted(record.headers, key=str):
            try:
                header_mtime = header.stat().st_mtime
            except FileNotFoundError:
                return True, f"dependency removed: {header}"
            if header_mtime > obj_mtime:
                return True, f"dependency newer than object: {header}"

        return False, "up to date"
