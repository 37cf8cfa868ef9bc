"""Error taxonomy for cmbuild.

Every fatal condition raised by the pipeline derives from CmbuildError. The
category names the failing stage and selects the process exit status:

- ConfigError: unknown part or invalid project configuration
- CompileError: a single source failed to compile (aggregated per pass)
- LayoutError: the memory layout model is invalid
- LinkError: unresolved symbol or region overflow
- ExternalToolError: a flashing/debugging tool exited non-zero
"""

from pathlib import Path
from typing import List, Optional


class CmbuildError(Exception):
    """Base class for all fatal cmbuild errors."""

    category = "Error"
    exit_code = 1

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        if self.reason:
            return f"{self.reason}: {self.message}"
        return self.message


class ConfigError(CmbuildError):
    """Raised when the target or project configuration cannot be resolved."""

    category = "ConfigError"
    exit_code = 3


class CompileError(CmbuildError):
    """Raised when one source artifact fails to compile.

    Carries the originating source path and the compiler's native diagnostic.
    """

    category = "CompileError"
    exit_code = 4

    def __init__(self, source: Path, diagnostic: str):
        self.source = Path(source)
        self.diagnostic = diagnostic.strip()
        super().__init__(f"{self.source}: {self.diagnostic}")


class CompilationFailed(CompileError):
    """Aggregate of every CompileError collected during one build pass."""

    def __init__(self, errors: List[CompileError]):
        self.errors = list(errors)
        first = self.errors[0]
        CmbuildError.__init__(
            self, f"{len(self.errors)} source file(s) failed to compile"
        )
        self.source = first.source
        self.diagnostic = first.diagnostic


class LayoutError(CmbuildError):
    """Raised when the memory layout model violates an invariant."""

    category = "LayoutError"
    exit_code = 5


class LinkError(CmbuildError):
    """Raised when linking fails.

    ``reason`` is one of ``UnresolvedSymbol``, ``RegionOverflow`` or
    ``LinkFailed``; ``subject`` names the offending symbol or region.
    """

    category = "LinkError"
    exit_code = 6

    UNRESOLVED_SYMBOL = "UnresolvedSymbol"
    REGION_OVERFLOW = "RegionOverflow"
    LINK_FAILED = "LinkFailed"

    def __init__(self, message: str, reason: str = LINK_FAILED, subject: Optional[str] = None):
        super().__init__(message, reason)
        self.subject = subject


class ExternalToolError(CmbuildError):
    """Raised when an external tool (flasher, debugger) exits non-zero."""

    category = "ExternalToolError"
    exit_code = 7

    def __init__(self, tool: str, returncode: int, output: str):
        self.tool = tool
        self.returncode = returncode
        self.output = output
        super().__init__(f"{tool} exited with code {returncode}\n{output}".rstrip())
