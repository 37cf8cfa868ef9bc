"""
Integration tests for a complete LaunchPad firmware build.

These tests drive `cmb` with a real arm-none-eabi toolchain. The driver
library is an empty archive, so no vendor SDK is needed.
"""

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

STARTUP_S = """\
    .syntax unified
    .thumb
    .section .isr_vector,"a",%progbits
    .word _stack_top
    .word reset_handler
"""

MAIN_C = """\
#include "board.h"

int main(void);

void reset_handler(void)
{
    main();
    for (;;) {}
}

int counter = LED_PIN;
int scratch[16];

int main(void)
{
    scratch[0] = counter;
    return 0;
}
"""


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("arm-none-eabi-gcc") is None, reason="arm-none-eabi-gcc not installed")
class TestLaunchpadBuild:
    """Integration tests for LM4F120H5QR firmware builds."""

    @pytest.fixture
    def project_dir(self, tmp_path):
        sdk = tmp_path / "sdk"
        driverlib = sdk / "driverlib" / "gcc-cm4f" / "libdriver-cm4f.a"
        driverlib.parent.mkdir(parents=True)
        driverlib.write_bytes(b"!<arch>\n")

        project = tmp_path / "blinky"
        project.mkdir()
        (project / "cmbuild.ini").write_text(f"[env:launchpad]\npart = LM4F120H5QR\nsdk_root = {sdk}\n")
        (project / "board.h").write_text("#define LED_PIN 3\n")
        (project / "main.c").write_text(MAIN_C)
        (project / "startup.s").write_text(STARTUP_S)
        return project

    def _cmb(self, *args):
        return subprocess.run(
            [sys.executable, "-m", "cmbuild.cli", *args],
            capture_output=True,
            text=True,
            timeout=120,
        )

    def test_full_build(self, project_dir):
        result = self._cmb("build", str(project_dir))
        assert result.returncode == 0, result.stdout + result.stderr

        build_dir = project_dir / ".cmbuild" / "build" / "launchpad"
        for name in ("main.axf", "main.bin", "main.hex", "main.lst", "main.map", "main.size", "main.ld"):
            assert (build_dir / name).exists(), name

        # First vector word is the initial stack pointer (top of 32K RAM)
        binary = (build_dir / "main.bin").read_bytes()
        assert int.from_bytes(binary[:4], "little") == 0x20008000
        assert (build_dir / "main.hex").read_text().startswith(":")
        assert "FLASH" in (build_dir / "main.size").read_text()

    def test_rebuild_is_idempotent(self, project_dir):
        assert self._cmb("build", str(project_dir)).returncode == 0
        image = project_dir / ".cmbuild" / "build" / "launchpad" / "main.axf"
        mtime = image.stat().st_mtime_ns

        result = self._cmb("build", str(project_dir))

        assert result.returncode == 0
        assert "Compiled: 0 file(s)" in result.stdout
        assert image.stat().st_mtime_ns == mtime

    def test_removed_header_fails_compile(self, project_dir):
        assert self._cmb("build", str(project_dir)).returncode == 0
        (project_dir / "board.h").unlink()

        result = self._cmb("build", str(project_dir))

        assert result.returncode == 4
        assert "board.h" in result.stderr

    def test_clean(self, project_dir):
        assert self._cmb("build", str(project_dir)).returncode == 0

        result = self._cmb("clean", str(project_dir))

        assert result.returncode == 0
        assert not (project_dir / ".cmbuild" / "build" / "launchpad").exists()
        assert (project_dir / "main.c").exists()
