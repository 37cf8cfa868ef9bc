"""
Unit tests for cmbuild.ini parser.
"""

import pytest

from cmbuild.config.ini_parser import ProjectConfig, ProjectConfigError, parse_size, split_flags


class TestProjectConfig:
    """Test suite for ProjectConfig parser."""

    @pytest.fixture
    def tmp_ini_path(self, tmp_path):
        """Fixture to provide a temporary INI file path."""
        return tmp_path / "cmbuild.ini"

    @pytest.fixture
    def minimal_config(self, tmp_ini_path):
        """Create minimal valid cmbuild.ini."""
        tmp_ini_path.write_text(
            """
[env:launchpad]
part = LM4F120H5QR
"""
        )
        return tmp_ini_path

    @pytest.fixture
    def multi_env_config(self, tmp_ini_path):
        """Create config with a base section and multiple environments."""
        tmp_ini_path.write_text(
            """
[cmbuild]
default_envs = stellaris

[env]
project_name = blinky
build_flags = -DBASE

[env:launchpad]
part = LM4F120H5QR

[env:stellaris]
part = LM3S6965
build_flags = ${env:build_flags} -DSTELLARIS -DNAME="two words"
"""
        )
        return tmp_ini_path

    def test_missing_file(self, tmp_path):
        with pytest.raises(ProjectConfigError, match="not found"):
            ProjectConfig(tmp_path / "cmbuild.ini")

    def test_get_environments(self, multi_env_config):
        config = ProjectConfig(multi_env_config)
        assert config.get_environments() == ["launchpad", "stellaris"]

    def test_get_env_config(self, minimal_config):
        config = ProjectConfig(minimal_config)
        assert config.get_env_config("launchpad")["part"] == "LM4F120H5QR"

    def test_base_section_is_inherited(self, multi_env_config):
        """Values from [env] apply to every environment."""
        config = ProjectConfig(multi_env_config)
        assert config.get_env_config("launchpad")["project_name"] == "blinky"

    def test_interpolation(self, multi_env_config):
        """${section:key} references are expanded."""
        config = ProjectConfig(multi_env_config)
        assert config.get_env_config("stellaris")["build_flags"].startswith("-DBASE -DSTELLARIS")

    def test_unknown_environment(self, minimal_config):
        config = ProjectConfig(minimal_config)
        with pytest.raises(ProjectConfigError, match="Environment 'mega' not found"):
            config.get_env_config("mega")

    def test_missing_part(self, tmp_ini_path):
        tmp_ini_path.write_text("[env:empty]\nbuild_flags = -DX\n")
        config = ProjectConfig(tmp_ini_path)
        with pytest.raises(ProjectConfigError, match="missing required fields: part"):
            config.get_env_config("empty")

    def test_split_flags_honours_quotes(self):
        assert split_flags('-DFOO="bar baz" -DTEST', "build_flags") == ["-DFOO=bar baz", "-DTEST"]

    def test_split_flags_rejects_unbalanced_quote(self):
        with pytest.raises(ProjectConfigError, match="Invalid build_flags"):
            split_flags('-DNAME="unterminated', "build_flags")

    def test_default_environment_from_default_envs(self, multi_env_config):
        assert ProjectConfig(multi_env_config).get_default_environment() == "stellaris"

    def test_default_environment_falls_back_to_first(self, minimal_config):
        assert ProjectConfig(minimal_config).get_default_environment() == "launchpad"


class TestParseSize:
    """Test suite for parse_size()."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("256K", 256 * 1024),
            ("32kb", 32 * 1024),
            ("1M", 1024 * 1024),
            ("0x8000", 0x8000),
            ("4096", 4096),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_size(value) == expected

    def test_invalid(self):
        with pytest.raises(ProjectConfigError, match="Invalid memory size"):
            parse_size("lots")
