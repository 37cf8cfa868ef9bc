"""
Build orchestration for cmbuild projects.

This module coordinates the entire build process, from a resolved
BuildSettings to the derived firmware artifacts. It integrates all build
system components:
- Target resolution (part identifier -> CPU, FPU, driver library, SDK)
- Source scanning
- Incremental compilation (arm-none-eabi-as/gcc/g++)
- Linking against the rendered memory layout (arm-none-eabi-ld)
- Artifact derivation (bin, hex, listing, size report)
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

from ..config.settings import BuildSettings
from ..config.target_resolver import TargetConfiguration
from ..deploy.debugger import GdbBootstrap
from ..errors import CmbuildError, ConfigError
from .binary_generator import BinaryGenerator
from .build_paths import DEPFILE_SUFFIX, OBJECT_SUFFIX, BuildPaths
from .compilation_executor import CompilationExecutor
from .compiler import ArmCompiler, ObjectArtifact
from .dependency_store import DependencyStore
from .flag_builder import FlagBuilder
from .linker import ArmLinker, ExecutableImage
from .memory_layout import MemoryLayout, default_layout
from .source_scanner import SourceArtifact, SourceScanner
from .toolchain import ArmToolchain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildArtifactSet:
    """Artifacts derived from one executable image."""

    image: Path
    binary: Path
    hex: Path
    listing: Path
    size_report: Path
    map_file: Path


@dataclass
class BuildResult:
    """Result of a complete build operation."""

    success: bool
    artifacts: Optional[BuildArtifactSet]
    image: Optional[ExecutableImage]
    rebuilt: int
    build_time: float
    message: str
    error: Optional[CmbuildError] = None


class BuildOrchestrator:
    """
    Orchestrates the complete build process for one environment.

    This class coordinates all phases of the build:
    1. Resolve the target configuration from the part identifier
    2. Scan source files
    3. Compile stale sources in parallel
    4. Link objects against the memory layout
    5. Derive binary, hex, listing and size report
    6. Report sizes

    Example usage:
        settings = BuildSettings.from_project(Path("."))
        result = BuildOrchestrator(settings).build()
        if result.success:
            print(f"Firmware: {result.artifacts.binary}")
    """

    def __init__(
        self,
        settings: BuildSettings,
        toolchain: Optional[ArmToolchain] = None,
        layout: Optional[MemoryLayout] = None,
    ):
        """
        Initialize build orchestrator.

        Args:
            settings: Session settings
            toolchain: Toolchain (built from the settings when None)
            layout: Memory layout (the default Cortex-M layout when None)
        """
        self.settings = settings
        self.toolchain = toolchain or ArmToolchain(settings.toolchain_prefix, settings.toolchain_dir)
        self.layout = layout
        self.paths = BuildPaths(settings.project_dir, settings.env_name, settings.project_name)
        self.verbose = settings.verbose

    def _phase(self, message: str) -> None:
        if self.verbose:
            print(message)

    def build(self, clean: bool = False) -> BuildResult:
        """
        Execute complete build process.

        Args:
            clean: Remove all derived artifacts before building

        Returns:
            BuildResult with build status and output paths. Failures carry
            the CmbuildError that stopped the build.
        """
        start_time = time.time()
        rebuilt = 0

        try:
            if clean:
                self.clean()

            # Phase 1: Resolve target
            self._phase("[1/6] Resolving target configuration...")
            target = self.settings.resolve_target()
            self._phase(f"      Part: {target.part} ({target.family})")
            self._phase(f"      CPU: {target.cpu} {' '.join(target.fpu_flags)}".rstrip())
            self._phase(f"      SDK: {target.sdk_root}")

            # Phase 2: Scan sources
            self._phase("[2/6] Scanning source files...")
            sources = self._scan_sources()
            self._phase(f"      Sources: {len(sources)} files")
            if self.verbose:
                headers = SourceScanner(self.settings.source_root).find_headers()
                self._phase(f"      Headers: {len(headers)} files")

            # Phase 3: Compile
            self._phase("[3/6] Compiling sources...")
            objects = self._compile(target, sources)
            rebuilt = sum(1 for obj in objects if obj.rebuilt)
            self._phase(f"      Compiled {rebuilt} of {len(objects)} files")

            # Phase 4: Link
            self._phase("[4/6] Linking firmware...")
            layout = self.layout or default_layout(target)
            linker = ArmLinker(self.toolchain, self.paths)
            image = linker.link(objects, target, layout)
            self._phase(f"      Image: {image.path}")

            # Phase 5: Derive artifacts
            self._phase("[5/6] Generating artifacts...")
            artifacts = self._generate_artifacts(image)

            # Phase 6: Report
            build_time = time.time() - start_time
            if self.verbose:
                print("[6/6] Build complete!")
                print()
                print(self.paths.size_report.read_text(encoding="utf-8"))
                print(f"Build time: {build_time:.2f}s")

            return BuildResult(
                success=True,
                artifacts=artifacts,
                image=image,
                rebuilt=rebuilt,
                build_time=build_time,
                message="Build successful",
            )

        except CmbuildError as e:
            return BuildResult(
                success=False,
                artifacts=None,
                image=None,
                rebuilt=rebuilt,
                build_time=time.time() - start_time,
                message=str(e),
                error=e,
            )

    def _scan_sources(self) -> List[SourceArtifact]:
        root = self.settings.source_root
        if not root.is_dir():
            raise ConfigError(f"Source directory not found: {root}")
        sources = SourceScanner(root).discover()
        if not sources:
            raise ConfigError(f"No assembly, C or C++ sources found under {root}")
        return sources

    def _compile(self, target: TargetConfiguration, sources: List[SourceArtifact]) -> List[ObjectArtifact]:
        root = self.settings.source_root
        flags = FlagBuilder(
            target,
            include_paths=[root],
            optimization=self.settings.optimization,
            c_std=self.settings.c_std,
            user_build_flags=self.settings.build_flags,
        ).build_flags()

        store = DependencyStore(base_dir=root)
        store.load_all(self.paths.object_path(source.path) for source in sources)
        self._prune_orphans({self.paths.object_path(source.path) for source in sources})

        compiler = ArmCompiler(self.toolchain, flags, self.paths, root, store)
        executor = CompilationExecutor(compiler, show_progress=not self.verbose)
        summary = executor.compile_all(sources, jobs=self.settings.jobs)
        summary.raise_for_errors()
        return summary.objects

    def _prune_orphans(self, expected: Set[Path]) -> None:
        """Remove objects (and records) whose source no longer exists."""
        if not self.paths.obj_dir.exists():
            return
        for obj in self.paths.obj_dir.rglob(f"*{OBJECT_SUFFIX}"):
            if obj not in expected:
                logger.debug(f"Removing orphaned object {obj}")
                obj.unlink()
                depfile = BuildPaths.depfile_path(obj)
                if depfile.exists():
                    depfile.unlink()
        for depfile in self.paths.obj_dir.rglob(f"*{OBJECT_SUFFIX}{DEPFILE_SUFFIX}"):
            if depfile.with_suffix("") not in expected:
                depfile.unlink()

    def _generate_artifacts(self, image: ExecutableImage) -> BuildArtifactSet:
        generator = BinaryGenerator(self.toolchain, self.paths, show_progress=self.verbose)
        return BuildArtifactSet(
            image=image.path,
            binary=generator.generate_bin(image),
            hex=generator.generate_hex(image),
            listing=generator.generate_listing(image),
            size_report=generator.generate_size_report(image),
            map_file=self.paths.map_file,
        )

    def clean(self) -> List[Path]:
        """
        Remove every derived artifact of the environment.

        Deletes the environment's build directory (objects, dependency
        records, image and derived files) and the generated .gdbinit.
        Sources are never touched.

        Returns:
            Paths that were removed
        """
        removed: List[Path] = []
        if self.paths.build_dir.exists():
            shutil.rmtree(self.paths.build_dir)
            removed.append(self.paths.build_dir)
        gdbinit = self.paths.gdbinit
        if gdbinit.exists() and GdbBootstrap.is_generated(gdbinit):
            gdbinit.unlink()
            removed.append(gdbinit)
        for path in removed:
            logger.debug(f"Removed {path}")
        return removed
