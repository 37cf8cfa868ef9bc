"""Build directory layout for cmbuild projects.

Build Structure:
    <project>/
    ├── .cmbuild/
    │   └── build/
    │       └── {env_name}/             # Build output per environment
    │           ├── obj/                # Objects mirroring the source tree
    │           │   └── src/a.c.o       # Object for src/a.c
    │           │   └── src/a.c.o.d     # Dependency record for that object
    │           ├── main.ld             # Rendered memory layout
    │           ├── main.axf            # Executable image
    │           ├── main.map            # Linker map
    │           ├── main.bin            # Raw flash image
    │           ├── main.hex            # Intel-hex image
    │           ├── main.lst            # Disassembly listing
    │           └── main.size           # Size report
    └── .gdbinit                        # Debugger bootstrap (generated)

Objects keep the full source file name (``a.c.o``) so that ``a.c`` and
``a.cpp`` in the same directory never share an object.
"""

from pathlib import Path

BUILD_DIR_NAME = ".cmbuild"
OBJECT_SUFFIX = ".o"
DEPFILE_SUFFIX = ".d"


class BuildPaths:
    """Resolves every derived-artifact path for one environment."""

    def __init__(self, project_dir: Path, env_name: str, project_name: str = "main"):
        """Initialize build paths.

        Args:
            project_dir: Project root directory
            env_name: Environment name (e.g., 'launchpad')
            project_name: Base name of the image artifacts
        """
        self.project_dir = Path(project_dir).resolve()
        self.env_name = env_name
        self.project_name = project_name
        self.build_root = self.project_dir / BUILD_DIR_NAME / "build"

    @property
    def build_dir(self) -> Path:
        """Build directory for this environment."""
        return self.build_root / self.env_name

    @property
    def obj_dir(self) -> Path:
        return self.build_dir / "obj"

    def object_path(self, relative_source: Path) -> Path:
        """Mirrored object path for a source path relative to the source root."""
        relative_source = Path(relative_source)
        return self.obj_dir / relative_source.parent / (relative_source.name + OBJECT_SUFFIX)

    @staticmethod
    def depfile_path(object_path: Path) -> Path:
        """Dependency record stored alongside an object."""
        return object_path.with_name(object_path.name + DEPFILE_SUFFIX)

    def _artifact(self, suffix: str) -> Path:
        return self.build_dir / f"{self.project_name}{suffix}"

    @property
    def linker_script(self) -> Path:
        return self._artifact(".ld")

    @property
    def image(self) -> Path:
        return self._artifact(".axf")

    @property
    def map_file(self) -> Path:
        return self._artifact(".map")

    @property
    def binary(self) -> Path:
        return self._artifact(".bin")

    @property
    def hex(self) -> Path:
        return self._artifact(".hex")

    @property
    def listing(self) -> Path:
        return self._artifact(".lst")

    @property
    def size_report(self) -> Path:
        return self._artifact(".size")

    @property
    def gdbinit(self) -> Path:
        return self.project_dir / ".gdbinit"
