"""Unit tests for the build configuration resolver."""

import dataclasses
from pathlib import Path

import pytest

from nbuild.config.build_config import (
    BuildConfig,
    BuildConfigResolver,
    BuildProfile,
    ConfigOverrides,
    DeviceType,
    PackageFormat,
    parse_screen_size,
    validate_config,
)
from nbuild.errors import ConfigurationError, ErrorKind


@pytest.fixture
def base_env(tmp_path):
    """Environment pointing every root into a temporary directory."""
    return {
        "NUTRIA_OUTPUT_ROOT": str(tmp_path / "output"),
        "NUTRIA_APPS_ROOT": str(tmp_path / "apps"),
        "NBUILD_CACHE_DIR": str(tmp_path / "cache"),
    }


class TestParseScreenSize:
    """Tests for parse_screen_size."""

    def test_valid(self):
        assert parse_screen_size("800x600") == (800, 600)
        assert parse_screen_size(" 1280x720 ") == (1280, 720)

    @pytest.mark.parametrize("value", ["800", "800x", "x600", "800*600", "axb", "0x600"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_screen_size(value)


class TestBuildConfigResolver:
    """Tests for BuildConfigResolver."""

    def test_defaults(self, base_env, tmp_path):
        """Test resolution with only roots configured."""
        config = BuildConfigResolver(base_env).resolve()

        assert config.output_root == tmp_path / "output"
        assert config.output_path == tmp_path / "output" / "dev"
        assert config.apps_root == tmp_path / "apps"
        assert config.daemon_port == 80
        assert config.device_type == DeviceType.DESKTOP
        assert config.profile == BuildProfile.DEV
        assert config.package_format == PackageFormat.RAW
        assert config.screen_size is None
        assert config.b2g_binary is None
        assert config.api_daemon_binary == tmp_path / "output" / "prebuilts" / "api-daemon" / "api-daemon"
        assert config.cache_root == tmp_path / "cache"

    def test_environment_overrides_defaults(self, base_env, tmp_path):
        env = dict(base_env)
        env["NUTRIA_API_DAEMON_PORT"] = "8080"
        env["NUTRIA_B2G_BINARY"] = "/opt/b2g/b2g"
        env["NUTRIA_API_DAEMON_ROOT"] = str(tmp_path / "daemon")

        config = BuildConfigResolver(env).resolve()

        assert config.daemon_port == 8080
        assert config.b2g_binary == Path("/opt/b2g/b2g")
        assert config.api_daemon_root == tmp_path / "daemon"
        assert config.api_daemon_binary == tmp_path / "daemon" / "api-daemon"

    def test_cli_overrides_environment(self, base_env, tmp_path):
        env = dict(base_env)
        env["NUTRIA_API_DAEMON_PORT"] = "8080"
        overrides = ConfigOverrides(daemon_port="9000", apps_root=str(tmp_path / "other_apps"))

        config = BuildConfigResolver(env).resolve(overrides)

        assert config.daemon_port == 9000
        assert config.apps_root == tmp_path / "other_apps"

    def test_legacy_output_root_variable(self, tmp_path):
        """The historical misspelled variable is still honored."""
        config = BuildConfigResolver({"NUTRIA_OUPUT_ROOT": str(tmp_path / "legacy")}).resolve()
        assert config.output_root == tmp_path / "legacy"

    def test_correct_output_root_variable_wins(self, tmp_path):
        env = {"NUTRIA_OUPUT_ROOT": str(tmp_path / "legacy"), "NUTRIA_OUTPUT_ROOT": str(tmp_path / "new")}
        assert BuildConfigResolver(env).resolve().output_root == tmp_path / "new"

    def test_empty_environment_value_is_ignored(self, base_env):
        env = dict(base_env)
        env["NUTRIA_API_DAEMON_PORT"] = ""
        assert BuildConfigResolver(env).resolve().daemon_port == 80

    def test_profile_selects_output_name(self, base_env, tmp_path):
        config = BuildConfigResolver(base_env).resolve(ConfigOverrides(profile="prod"))
        assert config.profile == BuildProfile.PROD
        assert config.output_path == tmp_path / "output" / "prod"

    def test_explicit_output_path(self, base_env, tmp_path):
        config = BuildConfigResolver(base_env).resolve(ConfigOverrides(output_path=str(tmp_path / "install")))
        assert config.output_path == tmp_path / "install"

    def test_device_and_screen(self, base_env):
        config = BuildConfigResolver(base_env).resolve(ConfigOverrides(device_type="mobile", screen_size="320x640"))
        assert config.device_type == DeviceType.MOBILE
        assert config.screen_size == (320, 640)

    def test_all_violations_are_reported(self, base_env):
        """Every violated rule is listed, not just the first one."""
        overrides = ConfigOverrides(
            daemon_port="99999",
            device_type="toaster",
            screen_size="big",
            profile="debug",
        )

        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfigResolver(base_env).resolve(overrides)

        error = exc_info.value
        assert error.kind == ErrorKind.INVALID_SETTING
        assert not error.retryable
        assert len(error.violations) == 4
        message = str(error)
        assert "99999" in message
        assert "toaster" in message
        assert "big" in message
        assert "debug" in message

    def test_non_integer_port(self, base_env):
        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfigResolver(base_env).resolve(ConfigOverrides(daemon_port="eighty"))
        assert "not an integer" in exc_info.value.violations[0]

    def test_output_root_that_is_a_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfigResolver({"NUTRIA_OUTPUT_ROOT": str(blocker)}).resolve()
        assert any("output root" in v for v in exc_info.value.violations)

    def test_debian_package_requires_desktop(self, base_env):
        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfigResolver(base_env).resolve(ConfigOverrides(package_format="deb", device_type="pinephone"))
        assert any("desktop" in v for v in exc_info.value.violations)

    def test_describe_environment(self, base_env):
        described = dict(BuildConfigResolver(base_env).describe_environment())
        assert described["NUTRIA_APPS_ROOT"] == base_env["NUTRIA_APPS_ROOT"]
        assert described["NUTRIA_B2G_PACKAGE"] == ""


class TestBuildConfig:
    """Tests for the BuildConfig snapshot."""

    def test_snapshot_is_frozen(self, base_env):
        config = BuildConfigResolver(base_env).resolve()
        with pytest.raises(Exception):
            config.daemon_port = 1  # type: ignore[misc]

    def test_resolved_snapshot_is_valid(self, base_env):
        config = BuildConfigResolver(base_env).resolve()
        assert validate_config(config) == []

    def test_derive_revalidates(self, base_env):
        config = BuildConfigResolver(base_env).resolve()

        derived = config.derive(daemon_port=8081)
        assert derived.daemon_port == 8081
        assert config.daemon_port == 80

        with pytest.raises(ConfigurationError):
            config.derive(daemon_port=0)

    def test_direct_construction_is_validated(self, base_env):
        config = BuildConfigResolver(base_env).resolve()
        fields = {f.name: getattr(config, f.name) for f in dataclasses.fields(BuildConfig)}
        fields.update(daemon_port=70000, package_format=PackageFormat.DEB, device_type=DeviceType.MOBILE)

        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfig(**fields)

        assert len(exc_info.value.violations) == 2
        assert "70000" in str(exc_info.value)
        assert "desktop" in str(exc_info.value)

    def test_direct_construction_rejects_unknown_device_type(self, base_env):
        config = BuildConfigResolver(base_env).resolve()
        fields = {f.name: getattr(config, f.name) for f in dataclasses.fields(BuildConfig)}
        fields["device_type"] = "watch"

        with pytest.raises(ConfigurationError) as exc_info:
            BuildConfig(**fields)

        assert exc_info.value.violations == ["device type 'watch' is not one of: desktop, mobile, pinephone"]

    def test_replace_is_validated(self, base_env):
        config = BuildConfigResolver(base_env).resolve()
        with pytest.raises(ConfigurationError):
            dataclasses.replace(config, daemon_port=-1)

    def test_paths(self, base_env, tmp_path):
        config = BuildConfigResolver(base_env).resolve()
        assert config.webapps_dir == tmp_path / "output" / "dev" / "webapps"
        assert config.prebuilts_dir == tmp_path / "output" / "prebuilts"

    def test_to_dict(self, base_env):
        config = BuildConfigResolver(base_env).resolve(ConfigOverrides(screen_size="800x600"))
        data = config.to_dict()
        assert data["device_type"] == "desktop"
        assert data["screen_size"] == "800x600"
        assert data["daemon_port"] == 80
        assert isinstance(data["output_root"], str)
