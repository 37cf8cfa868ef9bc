"""
Build system components for cmbuild.

This module provides the build system implementation including:
- Source file discovery
- Incremental compilation (arm-none-eabi-as/gcc/g++)
- Memory layout model and linking (arm-none-eabi-ld)
- Artifact derivation (objcopy, objdump)
- Build orchestration
"""

from .binary_generator import BinaryGenerator, BinaryGeneratorError
from .build_paths import BuildPaths
from .compilation_executor import CompilationExecutor, CompilationSummary
from .compiler import ArmCompiler, ObjectArtifact
from .dependency_store import DependencyRecord, DependencyStore
from .flag_builder import FlagBuilder
from .linker import ArmLinker, ExecutableImage
from .memory_layout import MemoryLayout, MemoryRegion, SectionRule, default_layout
from .orchestrator import BuildArtifactSet, BuildOrchestrator, BuildResult
from .source_scanner import SourceArtifact, SourceKind, SourceScanner
from .toolchain import ArmToolchain, ToolchainError

__all__ = [
    "ArmCompiler",
    "ArmLinker",
    "ArmToolchain",
    "BinaryGenerator",
    "BinaryGeneratorError",
    "BuildArtifactSet",
    "BuildOrchestrator",
    "BuildPaths",
    "BuildResult",
    "CompilationExecutor",
    "CompilationSummary",
    "DependencyRecord",
    "DependencyStore",
    "ExecutableImage",
    "FlagBuilder",
    "MemoryLayout",
    "MemoryRegion",
    "ObjectArtifact",
    "SectionRule",
    "SourceArtifact",
    "SourceKind",
    "SourceScanner",
    "ToolchainError",
    "default_layout",
]
