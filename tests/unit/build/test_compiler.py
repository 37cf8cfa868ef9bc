"""
Unit tests for ArmCompiler.

Tests incremental compilation against the emulated ARM toolchain.
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from cmbuild.build.build_paths import BuildPaths
from cmbuild.build.compiler import ArmCompiler
from cmbuild.build.dependency_store import DependencyStore
from cmbuild.build.flag_builder import FlagBuilder
from cmbuild.build.source_scanner import SourceArtifact, SourceKind
from cmbuild.build.toolchain import ArmToolchain
from cmbuild.config.target_resolver import resolve
from cmbuild.errors import CompileError


def _set_mtime(path: Path, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


class TestArmCompiler:
    """Test suite for ArmCompiler."""

    @pytest.fixture
    def project(self, tmp_path):
        root = tmp_path / "project"
        (root / "drivers").mkdir(parents=True)
        (root / "foo.h").write_text("#define FOO 1\n")
        (root / "a.c").write_text('#include "foo.h"\nint main(void) { return FOO; }\n')
        (root / "b.cpp").write_text("int b() { return 2; }\n")
        (root / "start.s").write_text(".section .isr_vector\n")
        (root / "drivers" / "uart.c").write_text("void uart(void) {}\n")
        return root

    @pytest.fixture
    def paths(self, project):
        return BuildPaths(project, "launchpad")

    @pytest.fixture
    def compiler(self, project, paths, toolchain, arm_tools, sdk_root):
        flags = FlagBuilder(resolve("LM4F120H5QR", sdk_root=sdk_root), include_paths=[project]).build_flags()
        return ArmCompiler(toolchain, flags, paths, project, DependencyStore(base_dir=project))

    def test_compile_c(self, compiler, paths, arm_tools):
        """C sources are compiled with gcc and record their headers."""
        obj = compiler.build(SourceArtifact(Path("a.c"), SourceKind.C))

        assert obj.rebuilt
        assert obj.path == paths.obj_dir / "a.c.o"
        assert obj.path.exists()
        record = compiler.store.load(obj.path)
        assert record.headers == frozenset([compiler.source_root / "foo.h"])

        cmd = arm_tools.calls_to("gcc")[0]
        assert "-mcpu=cortex-m4" in cmd
        assert "-std=c99" in cmd
        assert "-MD" in cmd
        assert cmd[cmd.index("-MT") + 1] == str(obj.path)

    def test_compile_cxx_uses_gxx(self, compiler, arm_tools):
        compiler.build(SourceArtifact(Path("b.cpp"), SourceKind.CXX))

        cmd = arm_tools.calls_to("g++")[0]
        assert "-std=c99" not in cmd

    def test_compile_assembly_has_empty_record(self, compiler, arm_tools):
        obj = compiler.build(SourceArtifact(Path("start.s"), SourceKind.ASSEMBLY))

        assert obj.kind is SourceKind.ASSEMBLY
        assert compiler.store.load(obj.path).headers == frozenset()
        assert "-mfloat-abi=softfp" in arm_tools.calls_to("as")[0]

    def test_object_mirrors_source_tree(self, compiler, paths):
        obj = compiler.build(SourceArtifact(Path("drivers/uart.c"), SourceKind.C))
        assert obj.path == paths.obj_dir / "drivers" / "uart.c.o"

    def test_up_to_date_object_is_not_rebuilt(self, compiler, arm_tools):
        source = SourceArtifact(Path("a.c"), SourceKind.C)
        compiler.build(source)
        second = compiler.build(source)

        assert not second.rebuilt
        assert len(arm_tools.calls_to("gcc")) == 1
        assert not compiler.needs_rebuild(source)

    def test_touched_header_triggers_rebuild(self, compiler, project, arm_tools):
        source = SourceArtifact(Path("a.c"), SourceKind.C)
        obj = compiler.build(source)
        _set_mtime(project / "a.c", 1000)
        _set_mtime(project / "foo.h", 1000)
        _set_mtime(obj.path, 2000)
        assert not compiler.needs_rebuild(source)

        _set_mtime(project / "foo.h", 3000)

        assert compiler.needs_rebuild(source)
        assert compiler.build(source).rebuilt

    def test_touched_source_triggers_rebuild(self, compiler, project):
        source = SourceArtifact(Path("b.cpp"), SourceKind.CXX)
        obj = compiler.build(source)
        _set_mtime(obj.path, 2000)
        _set_mtime(project / "b.cpp", 3000)

        assert compiler.build(source).rebuilt

    def test_failure_raises_compile_error(self, compiler, project):
        (project / "bad.c").write_text("#error broken\n")

        with pytest.raises(CompileError) as exc_info:
            compiler.build(SourceArtifact(Path("bad.c"), SourceKind.C))

        assert exc_info.value.source == Path("bad.c")
        assert "#error directive" in exc_info.value.diagnostic

    def test_failure_keeps_previous_object_and_record(self, compiler, project, paths):
        """A failed compile leaves the last good object and record untouched."""
        source = SourceArtifact(Path("a.c"), SourceKind.C)
        obj = compiler.build(source)
        before = obj.path.read_text()
        depfile = BuildPaths.depfile_path(obj.path)
        record_before = depfile.read_text()

        (project / "foo.h").unlink()
        with pytest.raises(CompileError, match="foo.h: No such file or directory"):
            compiler.build(source)

        assert obj.path.read_text() == before
        assert depfile.read_text() == record_before
        assert not list(paths.obj_dir.glob("*.tmp*"))

    def test_missing_compiler_is_compile_error(self, project, paths, tmp_path, arm_tools, sdk_root):
        flags = FlagBuilder(resolve("LM4F120H5QR", sdk_root=sdk_root)).build_flags()
        compiler = ArmCompiler(
            ArmToolchain(bin_dir=tmp_path / "nowhere"), flags, paths, project, DependencyStore(project)
        )
        with pytest.raises(CompileError, match="not found"):
            compiler.build(SourceArtifact(Path("a.c"), SourceKind.C))

    def test_record_is_written_before_object(self, compiler):
        """The object only appears once its dependency record is in place."""
        replaced = []
        real_replace = os.replace

        def tracking_replace(src, dst):
            replaced.append(Path(dst).name)
            real_replace(src, dst)

        with patch.object(os, "replace", side_effect=tracking_replace):
            obj = compiler.build(SourceArtifact(Path("a.c"), SourceKind.C))

        assert replaced == ["a.c.o.d", "a.c.o"]
        assert compiler.store.load(obj.path) is not None

    @pytest.mark.skipif(sys.platform == "win32", reason="Requires POSIX shell tools")
    def test_undecodable_diagnostic_is_compile_error(self, project, paths, tool_dir, sdk_root):
        """Non-UTF-8 compiler output is reported as a compile error, not a crash."""
        gcc = tool_dir / "arm-none-eabi-gcc"
        gcc.write_text("#!/bin/sh\nprintf 'a.c:1: error: caf\\351\\n' >&2\nexit 1\n")
        flags = FlagBuilder(resolve("LM4F120H5QR", sdk_root=sdk_root)).build_flags()
        compiler = ArmCompiler(
            ArmToolchain(bin_dir=tool_dir), flags, paths, project, DependencyStore(project)
        )

        with pytest.raises(CompileError) as exc_info:
            compiler.build(SourceArtifact(Path("a.c"), SourceKind.C))

        assert "error: caf\ufffd" in exc_info.value.diagnostic
        assert not (paths.obj_dir / "a.c.o").exists()
