"""
ARM cross compiler wrapper for incremental builds.

This module wraps arm-none-eabi-as, -gcc and -g++ to compile assembly, C and
C++ sources into objects in a build tree that mirrors the source tree.

Incrementality:
    A source is recompiled only when its object is missing, older than the
    source, or older than (or missing) any header recorded in its dependency
    record. C and C++ compilations report their headers through -MD/-MF;
    assembly objects have an empty record.

Failure isolation:
    Compilation writes to temporary files. Only a successful compilation
    replaces the object and its dependency record, so a failed compilation
    leaves the previous object and record untouched.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import CompileError
from .build_paths import BuildPaths
from .dependency_store import DependencyStore, parse_depfile
from .source_scanner import SourceArtifact, SourceKind
from .toolchain import ArmToolchain, ToolchainError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectArtifact:
    """An object file produced from one source artifact."""

    path: Path
    kind: SourceKind
    built_at: float
    source: SourceArtifact
    rebuilt: bool = False


class ArmCompiler:
    """
    Incremental compiler for ARM Cortex-M sources.

    Usage:
        compiler = ArmCompiler(toolchain, flags, paths, source_root, store)
        obj = compiler.build(source)
    """

    def __init__(
        self,
        toolchain: ArmToolchain,
        flags: Dict[str, List[str]],
        paths: BuildPaths,
        source_root: Path,
        store: DependencyStore,
        timeout: Optional[float] = 300,
    ):
        """
        Initialize compiler.

        Args:
            toolchain: Toolchain providing as/gcc/g++
            flags: Flags from FlagBuilder.build_flags()
            paths: Build paths of the environment
            source_root: Root the source artifact paths are relative to
            store: Dependency store shared by all workers
            timeout: Per-file compilation timeout in seconds
        """
        self.toolchain = toolchain
        self.flags = flags
        self.paths = paths
        self.source_root = Path(source_root)
        self.store = store
        self.timeout = timeout

    def object_path(self, source: SourceArtifact) -> Path:
        return self.paths.object_path(source.path)

    def needs_rebuild(self, source: SourceArtifact) -> bool:
        """
        Check if a source needs to be recompiled.

        Returns:
            True if the object is absent or stale
        """
        stale, _ = self.store.is_stale(source.absolute(self.source_root), self.object_path(source))
        return stale

    def build_command(
        self,
        source: SourceArtifact,
        output: Path,
        depfile: Path,
        target: Optional[Path] = None,
    ) -> List[str]:
        """Build the tool command for one source.

        Args:
            source: Source to compile
            output: Object file to write
            depfile: Depfile to write (ignored for assembly)
            target: Make target named in the depfile (defaults to output)
        """
        source_path = str(source.absolute(self.source_root))

        if source.kind is SourceKind.ASSEMBLY:
            return [
                str(self.toolchain.get_as_path()),
                *self.flags.get("asflags", []),
                source_path,
                "-o", str(output),
            ]

        if source.kind is SourceKind.C:
            tool = self.toolchain.get_gcc_path()
            specific = self.flags.get("cflags", [])
        else:
            tool = self.toolchain.get_gxx_path()
            specific = self.flags.get("cxxflags", [])

        return [
            str(tool),
            *self.flags.get("common", []),
            *specific,
            "-MD",                  # Emit header dependencies
            "-MF", str(depfile),
            "-MT", str(target or output),
            "-c", source_path,
            "-o", str(output),
        ]

    def build(self, source: SourceArtifact) -> ObjectArtifact:
        """
        Bring the object of a source up to date.

        Args:
            source: Source artifact to compile

        Returns:
            ObjectArtifact (rebuilt=False if it was already up to date)

        Raises:
            CompileError: If compilation fails
        """
        obj = self.object_path(source)
        source_path = source.absolute(self.source_root)

        with self.store.lock_for(obj):
            stale, reason = self.store.is_stale(source_path, obj)
            if not stale:
                logger.debug(f"{source.path}: {reason}")
                return ObjectArtifact(obj, source.kind, obj.stat().st_mtime, source)

            logger.debug(f"{source.path}: rebuilding ({reason})")
            self.store.ensure_directory(obj.parent)

            temp_obj = obj.with_name(obj.name + ".tmp")
            temp_dep = obj.with_name(obj.name + ".tmp.d")
            try:
                cmd = self.build_command(source, temp_obj, temp_dep, target=obj)
            except ToolchainError as e:
                raise CompileError(source.path, str(e))

            try:
                headers = self._run(source, source_path, cmd, temp_obj, temp_dep)
                # Record first, so a new object never pairs with an old record
                self.store.replace(obj, headers)
                os.replace(temp_obj, obj)
            finally:
                for leftover in (temp_obj, temp_dep):
                    if leftover.exists():
                        leftover.unlink()

            return ObjectArtifact(obj, source.kind, obj.stat().st_mtime, source, rebuilt=True)

    def _run(
        self,
        source: SourceArtifact,
        source_path: Path,
        cmd: List[str],
        temp_obj: Path,
        temp_dep: Path,
    ) -> List[Path]:
        """Execute the compiler and return the headers it reported."""
        logger.debug("Running: " + " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=self.source_root,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise CompileError(source.path, f"Compilation timeout after {self.timeout}s")
        except OSError as e:
            raise CompileError(source.path, f"Failed to run compiler: {e}")

        if result.returncode != 0 or not temp_obj.exists():
            diagnostic = result.stderr or result.stdout or f"exit code {result.returncode}"
            raise CompileError(source.path, diagnostic)

        if result.stderr:
            logger.info(result.stderr.rstrip())

        if source.kind is SourceKind.ASSEMBLY:
            return []

        if not temp_dep.exists():
            raise CompileError(source.path, "Compiler did not write a dependency file")

        source_key = os.path.normpath(str(source_path))
        return [
            path
            for path in parse_depfile(temp_dep.read_text(encoding="utf-8"), self.source_root)
            if os.path.normpath(str(path)) != source_key
        ]
