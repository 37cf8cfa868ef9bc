"""
Unit tests for BuildSettings.
"""

from pathlib import Path

import pytest

from cmbuild.config.settings import BuildSettings
from cmbuild.errors import ConfigError


@pytest.fixture
def project(tmp_path):
    (tmp_path / "cmbuild.ini").write_text(
        """
[env:launchpad]
part = LM4F120H5QR
project_name = blinky
src_dir = firmware
build_flags = -DDEBUG -DNAME="a b"
flash_size = 128K
flasher_flags = -v -s 0E1234
jobs = 3
"""
    )
    return tmp_path


class TestBuildSettings:
    """Test suite for BuildSettings.from_project()."""

    def test_values_from_ini(self, project):
        settings = BuildSettings.from_project(project, environ={})

        assert settings.env_name == "launchpad"
        assert settings.part == "LM4F120H5QR"
        assert settings.project_name == "blinky"
        assert settings.source_root == project.resolve() / "firmware"
        assert settings.build_flags == ("-DDEBUG", "-DNAME=a b")
        assert settings.flash_size == 128 * 1024
        assert settings.flasher == "lm4flash"
        assert settings.flasher_flags == ("-v", "-s", "0E1234")
        assert settings.jobs == 3
        assert settings.gdb_endpoint == "localhost:7777"
        assert settings.verbose is False

    def test_defaults(self, tmp_path):
        (tmp_path / "cmbuild.ini").write_text("[env:a]\npart = LM3S6965\n")
        settings = BuildSettings.from_project(tmp_path, environ={})

        assert settings.project_name == "main"
        assert settings.source_root == tmp_path.resolve()
        assert settings.optimization == "-O3"
        assert settings.c_std == "c99"
        assert settings.toolchain_prefix == "arm-none-eabi"
        assert settings.debug_server == "lmicdi"
        assert settings.jobs >= 1

    def test_environment_overrides_ini(self, project):
        environ = {
            "CMBUILD_PART": "TM4C123GH6PM",
            "CMBUILD_JOBS": "7",
            "CMBUILD_SDK_ROOT": "/sdk",
            "CMBUILD_HOST_PLATFORM": "linux",
            "CMBUILD_VERBOSE": "1",
        }
        settings = BuildSettings.from_project(project, environ=environ)

        assert settings.part == "TM4C123GH6PM"
        assert settings.jobs == 7
        assert settings.sdk_root == Path("/sdk")
        assert settings.host_platform == "linux"
        assert settings.verbose is True

    def test_cli_overrides_environment(self, project):
        settings = BuildSettings.from_project(
            project, environ={"CMBUILD_PART": "TM4C123GH6PM", "CMBUILD_JOBS": "7"}, part="LM3S6965", jobs=2
        )

        assert settings.part == "LM3S6965"
        assert settings.jobs == 2

    @pytest.mark.parametrize("jobs", ["0", "-1", "many"])
    def test_invalid_jobs(self, project, jobs):
        with pytest.raises(ConfigError):
            BuildSettings.from_project(project, environ={"CMBUILD_JOBS": jobs})

    def test_unbalanced_quote_in_flags(self, project):
        ini = project / "cmbuild.ini"
        ini.write_text(ini.read_text() + "\n[env:broken]\npart = LM4F120H5QR\nflasher_flags = -s '0E12\n")

        with pytest.raises(ConfigError, match="Invalid flasher_flags"):
            BuildSettings.from_project(project, env_name="broken", environ={})

    def test_missing_config(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            BuildSettings.from_project(tmp_path, environ={})

    def test_resolve_target_uses_overrides(self, project, tmp_path):
        settings = BuildSettings.from_project(project, environ={"CMBUILD_SDK_ROOT": str(tmp_path)})
        target = settings.resolve_target()

        assert target.sdk_root == tmp_path
        assert target.flash_size == 128 * 1024
        assert target.cpu == "cortex-m4"
