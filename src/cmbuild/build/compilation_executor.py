"""Compilation Executor.

This module runs the compilations of one build pass on a bounded worker pool.

Design:
    - Submits every source to a ThreadPoolExecutor with at most `jobs` workers
    - Sources already up to date return immediately from ArmCompiler.build()
    - A failing compilation never cancels its siblings; every CompileError of
      the pass is collected and reported together
    - Shows a tqdm progress bar unless verbose output is requested
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from tqdm import tqdm

from ..errors import CompilationFailed, CompileError
from .compiler import ArmCompiler, ObjectArtifact
from .source_scanner import SourceArtifact

logger = logging.getLogger(__name__)


@dataclass
class CompilationSummary:
    """Outcome of one compilation pass."""

    objects: List[ObjectArtifact] = field(default_factory=list)
    errors: List[CompileError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def rebuilt(self) -> int:
        return sum(1 for obj in self.objects if obj.rebuilt)

    def raise_for_errors(self) -> None:
        """Raise CompilationFailed if any compilation failed."""
        if self.errors:
            raise CompilationFailed(self.errors)


class CompilationExecutor:
    """Compiles a set of sources in parallel.

    This class handles:
    - Bounding the number of concurrent compiler processes
    - Collecting objects in source order
    - Collecting all compile errors of the pass
    - Progress display
    """

    def __init__(self, compiler: ArmCompiler, show_progress: bool = True):
        """Initialize compilation executor.

        Args:
            compiler: Compiler used for every source
            show_progress: Whether to show a progress bar
        """
        self.compiler = compiler
        self.show_progress = show_progress

    def compile_all(self, sources: Sequence[SourceArtifact], jobs: int = 1) -> CompilationSummary:
        """Bring the objects of all sources up to date.

        Args:
            sources: Sources of the build
            jobs: Maximum number of concurrent compilations

        Returns:
            CompilationSummary with objects (in source order) and errors
        """
        summary = CompilationSummary()
        if not sources:
            return summary

        workers = max(1, min(jobs, len(sources)))
        logger.debug(f"Compiling {len(sources)} sources with {workers} workers")

        results: Dict[SourceArtifact, ObjectArtifact] = {}
        progress_bar = None
        if self.show_progress:
            progress_bar = tqdm(total=len(sources), unit="file", desc="Compiling")

        try:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures: Dict[Future, SourceArtifact] = {
                    executor.submit(self.compiler.build, source): source for source in sources
                }
                for future in as_completed(futures):
                    source = futures[future]
                    try:
                        results[source] = future.result()
                    except CompileError as e:
                        logger.debug(f"Compilation failed: {source.path}")
                        summary.errors.append(e)
                    if progress_bar:
                        progress_bar.update(1)
        finally:
            if progress_bar:
                progress_bar.close()

        summary.objects = [results[source] for source in sources if source in results]
        order = {source.path: i for i, source in enumerate(sources)}
        summary.errors.sort(key=lambda e: order.get(e.source, len(order)))
        return summary
