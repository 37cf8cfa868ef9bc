"""
Shared fixtures for the cmbuild test suite.

FakeArmTools stands in for the arm-none-eabi executables by answering
subprocess.run calls the way the real tools would: compilers write objects
and depfiles (following quoted #include lines), ld writes an image, size and
nm print canned section and symbol tables, objcopy and objdump write or print
derived output.
"""

import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from cmbuild.build.toolchain import ArmToolchain

PREFIX = "arm-none-eabi-"
TOOLS = ["as", "gcc", "g++", "ld", "objcopy", "objdump", "size", "nm", "gdb"]

INCLUDE_RE = re.compile(r'^\s*#\s*include\s+"([^"]+)"', re.MULTILINE)
UNDEFINED_RE = re.compile(r"UNDEFINED\((\w+)\)")


def _arg_after(cmd: List[str], flag: str) -> Optional[str]:
    if flag in cmd:
        return cmd[cmd.index(flag) + 1]
    return None


class FakeArmTools:
    """Callable replacement for subprocess.run emulating the ARM toolchain."""

    def __init__(self, lib_dir: Path):
        self.lib_dir = lib_dir
        self.calls: List[List[str]] = []
        self.section_sizes: Dict[str, int] = {
            ".isr_vector": 620,
            ".text": 1024,
            ".ARM.exidx": 8,
            ".data": 16,
            ".bss": 512,
        }
        self.symbols: Dict[str, int] = {
            "reset_handler": 0x0000026D,
            "_ebss": 0x20000210,
            "end": 0x20000210,
            "_stack_top": 0x20008000,
        }

    def calls_to(self, tool: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if Path(cmd[0]).name == PREFIX + tool]

    def __call__(self, cmd, cwd=None, **kwargs):
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        tool = Path(cmd[0]).name
        if tool.startswith(PREFIX):
            tool = tool[len(PREFIX):]
        handler = getattr(self, "_" + tool.replace("+", "x"), None)
        if handler is None:
            return subprocess.CompletedProcess(cmd, 127, "", f"{tool}: not emulated")
        return handler(cmd, Path(cwd) if cwd else None)

    @staticmethod
    def _ok(cmd, stdout: str = "") -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(cmd, 0, stdout, "")

    @staticmethod
    def _fail(cmd, stderr: str, code: int = 1) -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(cmd, code, "", stderr)

    def _gcc(self, cmd, cwd):
        for arg in cmd[1:]:
            if arg.startswith("-print-file-name="):
                return self._ok(cmd, str(self.lib_dir / arg.split("=", 1)[1]) + "\n")
            if arg == "-print-libgcc-file-name":
                return self._ok(cmd, str(self.lib_dir / "libgcc.a") + "\n")

        source = Path(_arg_after(cmd, "-c"))
        output = Path(_arg_after(cmd, "-o"))
        depfile = _arg_after(cmd, "-MF")
        target = _arg_after(cmd, "-MT") or str(output)

        text = source.read_text()
        if "#error" in text:
            return self._fail(cmd, f"{source}:1:2: error: #error directive\n")

        headers = []
        for name in INCLUDE_RE.findall(text):
            header = source.parent / name
            if not header.exists():
                return self._fail(
                    cmd,
                    f"{source}:1:10: fatal error: {name}: No such file or directory\n"
                    + "compilation terminated.\n",
                )
            headers.append(header)

        output.write_text(f"OBJ {source.name}\n{text}")
        if depfile:
            prerequisites = " \\\n  ".join(str(p) for p in [source, *headers])
            Path(depfile).write_text(f"{target}: {prerequisites}\n")
        return self._ok(cmd)

    _gxx = _gcc

    def _as(self, cmd, cwd):
        output = Path(_arg_after(cmd, "-o"))
        source = Path(cmd[-3])
        output.write_text(f"OBJ {source.name}\n")
        return self._ok(cmd)

    def _ld(self, cmd, cwd):
        output = Path(_arg_after(cmd, "-o"))
        map_file = _arg_after(cmd, "-Map")
        objects = [Path(arg) for arg in cmd if arg.endswith(".o")]
        for obj in objects:
            match = UNDEFINED_RE.search(obj.read_text())
            if match:
                return self._fail(
                    cmd,
                    f"{obj}: In function `main':\n"
                    + f"a.c:(.text.main+0x4): undefined reference to `{match.group(1)}'\n",
                )
        output.write_text("ELF\n" + "".join(obj.read_text() for obj in objects))
        if map_file:
            Path(map_file).write_text("Memory Configuration\n")
        return self._ok(cmd)

    def _size(self, cmd, cwd):
        lines = [f"{cmd[-1]}  :", "section           size         addr"]
        address = 0
        for name, size in self.section_sizes.items():
            lines.append(f"{name:<16}{size:>8}{address:>13}")
            address += size
        lines.append(f"Total{sum(self.section_sizes.values()):>19}")
        return self._ok(cmd, "\n".join(lines) + "\n")

    def _nm(self, cmd, cwd):
        lines = [f"{address:08x} T {name}" for name, address in self.symbols.items()]
        lines.append("         U __libc_init_array")
        return self._ok(cmd, "\n".join(lines) + "\n")

    def _objcopy(self, cmd, cwd):
        Path(cmd[-1]).write_text(f"{_arg_after(cmd, '-O')} of {Path(cmd[-2]).name}\n")
        return self._ok(cmd)

    def _objdump(self, cmd, cwd):
        return self._ok(cmd, f"{cmd[-1]}:     file format elf32-littlearm\n\n00000000 <g_pfnVectors>:\n")


@pytest.fixture
def tool_dir(tmp_path):
    """Directory holding executable stand-ins for every toolchain tool."""
    bin_dir = tmp_path / "toolchain" / "bin"
    bin_dir.mkdir(parents=True)
    for tool in TOOLS:
        exe = bin_dir / (PREFIX + tool)
        exe.write_text("#!/bin/sh\nexit 0\n")
        exe.chmod(0o755)
    return bin_dir


@pytest.fixture
def toolchain(tool_dir):
    return ArmToolchain(bin_dir=tool_dir)


@pytest.fixture
def arm_tools(tmp_path, monkeypatch):
    """Install FakeArmTools as subprocess.run."""
    lib_dir = tmp_path / "toolchain" / "lib"
    lib_dir.mkdir(parents=True, exist_ok=True)
    for lib in ("libm.a", "libc.a", "libgcc.a"):
        (lib_dir / lib).write_text("!<arch>\n")
    tools = FakeArmTools(lib_dir)
    monkeypatch.setattr(subprocess, "run", tools)
    return tools


@pytest.fixture
def sdk_root(tmp_path):
    """SDK tree with the Cortex-M4F and Cortex-M3 driver libraries."""
    root = tmp_path / "sdk"
    for relative in ("driverlib/gcc-cm4f/libdriver-cm4f.a", "driverlib/gcc-cm3/libdriver-cm3.a"):
        lib = root / relative
        lib.parent.mkdir(parents=True, exist_ok=True)
        lib.write_text("!<arch>\n")
    return root
