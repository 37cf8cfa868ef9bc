"""
Unit tests for FlagBuilder.
"""

from pathlib import Path

from cmbuild.build.flag_builder import FlagBuilder
from cmbuild.config.target_resolver import resolve


class TestFlagBuilder:
    """Test suite for FlagBuilder."""

    def test_m4f_flags(self):
        target = resolve("LM4F120H5QR", sdk_root=Path("/sdk"))
        flags = FlagBuilder(target, include_paths=[Path("/proj")]).build_flags()

        assert flags["asflags"] == [
            "-mthumb",
            "-mcpu=cortex-m4",
            "-mfpu=fpv4-sp-d16",
            "-mfloat-abi=softfp",
        ]
        common = flags["common"]
        assert common[:4] == flags["asflags"]
        assert "-O3" in common
        assert "-Wall" in common
        assert "-g" in common
        assert "-ffunction-sections" in common
        assert "-I/proj" in common
        assert "-I/sdk" in common
        assert "-DPART_LM4F120H5QR" in common
        assert "-DTARGET_IS_BLIZZARD_RA1" in common
        assert flags["cflags"] == ["-std=c99"]
        assert flags["cxxflags"] == []

    def test_m3_has_no_fpu_flags(self):
        target = resolve("LM3S6965", sdk_root=Path("/sdk"))
        flags = FlagBuilder(target).build_flags()
        assert not any(flag.startswith("-mfpu") for flag in flags["common"])

    def test_user_flags_come_last(self):
        target = resolve("LM4F120H5QR", sdk_root=Path("/sdk"))
        flags = FlagBuilder(target, optimization="-Os", c_std="gnu99", user_build_flags=["-DDEBUG", "-O0"]).build_flags()

        assert flags["common"][-2:] == ["-DDEBUG", "-O0"]
        assert "-Os" in flags["common"]
        assert flags["cflags"] == ["-std=gnu99"]

    def test_include_flags_are_deduplicated(self):
        target = resolve("LM4F120H5QR", sdk_root=Path("/sdk"))
        builder = FlagBuilder(target, include_paths=[Path("/sdk"), Path("/proj"), Path("/proj")])
        assert builder.include_flags() == ["-I/sdk", "-I/proj"]
