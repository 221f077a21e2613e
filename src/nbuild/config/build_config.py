"""Build configuration snapshot and resolver.

The resolver is the only place where process environment variables are read.
It merges three layers, highest precedence first:

    CLI overrides  >  NUTRIA_* environment variables  >  built-in defaults

and produces a frozen :class:`BuildConfig`. Validation is all-or-nothing:
every violated rule is collected and reported in a single
:class:`~nbuild.errors.ConfigurationError`, and no snapshot is returned.

Environment variables:
    NUTRIA_OUTPUT_ROOT          Root of all build output (NUTRIA_OUPUT_ROOT accepted)
    NUTRIA_API_DAEMON_ROOT      api-daemon installation root
    NUTRIA_API_DAEMON_BINARY    api-daemon executable
    NUTRIA_API_DAEMON_PORT      api-daemon HTTP port
    NUTRIA_APPS_ROOT            Source directory of the web apps
    NUTRIA_APPSCMD_BINARY       appscmd helper executable
    NUTRIA_B2GHALD_BINARY       b2ghald helper executable
    NUTRIA_B2G_BINARY           Desktop b2g executable
    NUTRIA_B2G_PACKAGE          Gecko package used by push-b2g
    NUTRIA_PREBUILTS_MANIFEST   Prebuilts manifest (path or URL)
    NBUILD_CACHE_DIR            Artifact cache directory
"""

import dataclasses
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from nbuild.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_OUTPUT_ROOT = "NUTRIA_OUTPUT_ROOT"
ENV_OUTPUT_ROOT_LEGACY = "NUTRIA_OUPUT_ROOT"
ENV_API_DAEMON_ROOT = "NUTRIA_API_DAEMON_ROOT"
ENV_API_DAEMON_BINARY = "NUTRIA_API_DAEMON_BINARY"
ENV_API_DAEMON_PORT = "NUTRIA_API_DAEMON_PORT"
ENV_APPS_ROOT = "NUTRIA_APPS_ROOT"
ENV_APPSCMD_BINARY = "NUTRIA_APPSCMD_BINARY"
ENV_B2GHALD_BINARY = "NUTRIA_B2GHALD_BINARY"
ENV_B2G_BINARY = "NUTRIA_B2G_BINARY"
ENV_B2G_PACKAGE = "NUTRIA_B2G_PACKAGE"
ENV_PREBUILTS_MANIFEST = "NUTRIA_PREBUILTS_MANIFEST"
ENV_CACHE_DIR = "NBUILD_CACHE_DIR"

ENVIRONMENT_VARIABLES = [
    ENV_OUTPUT_ROOT,
    ENV_API_DAEMON_ROOT,
    ENV_API_DAEMON_BINARY,
    ENV_API_DAEMON_PORT,
    ENV_APPS_ROOT,
    ENV_APPSCMD_BINARY,
    ENV_B2GHALD_BINARY,
    ENV_B2G_BINARY,
    ENV_B2G_PACKAGE,
    ENV_PREBUILTS_MANIFEST,
    ENV_CACHE_DIR,
]

DEFAULT_OUTPUT_ROOT = Path("builder") / "output"
DEFAULT_APPS_ROOT = Path("apps")
DEFAULT_DAEMON_PORT = 80
DEFAULT_PREBUILTS_MANIFEST = "prebuilts.json"
DEFAULT_CACHE_ROOT = Path.home() / ".nbuild" / "cache"

_SCREEN_SIZE_RE = re.compile(r"^(\d+)x(\d+)$")


class DeviceType(Enum):
    """Device profile the build targets."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    PINEPHONE = "pinephone"


class BuildProfile(Enum):
    """dev runs apps from source, prod runs packaged apps."""

    DEV = "dev"
    PROD = "prod"


class PackageFormat(Enum):
    """Output format produced by the packaging backend."""

    RAW = "raw"
    DEB = "deb"


@dataclass(frozen=True)
class BuildConfig:
    """Immutable, validated configuration for one invocation.

    Every snapshot is checked with :func:`validate_config` on construction,
    so an invalid one cannot exist even when built without the resolver.

    Attributes:
        output_root: Root directory for all build output
        output_path: Directory this invocation writes to
        apps_root: Source directory of the web apps
        api_daemon_root: api-daemon installation root
        api_daemon_binary: api-daemon executable
        daemon_port: api-daemon HTTP port
        appscmd_binary: appscmd helper executable
        b2ghald_binary: b2ghald helper executable
        b2g_binary: Desktop b2g executable (optional)
        b2g_package: Gecko package for push-b2g (optional)
        device_type: Targeted device profile
        screen_size: Emulated screen size as (width, height), if any
        profile: dev or prod
        package_format: raw directory install or debian package
        prebuilts_manifest: Path or URL of the prebuilts manifest
        cache_root: Artifact cache directory
    """

    output_root: Path
    output_path: Path
    apps_root: Path
    api_daemon_root: Path
    api_daemon_binary: Path
    daemon_port: int
    appscmd_binary: Path
    b2ghald_binary: Path
    b2g_binary: Optional[Path]
    b2g_package: Optional[Path]
    device_type: DeviceType
    screen_size: Optional[Tuple[int, int]]
    profile: BuildProfile
    package_format: PackageFormat
    prebuilts_manifest: str
    cache_root: Path

    def __post_init__(self):
        violations = validate_config(self)
        if violations:
            raise ConfigurationError(violations)

    @property
    def webapps_dir(self) -> Path:
        """Directory holding packaged apps for this output."""
        return self.output_path / "webapps"

    @property
    def prebuilts_dir(self) -> Path:
        """Directory holding extracted prebuilt binaries."""
        return self.output_root / "prebuilts"

    def derive(self, **changes: object) -> "BuildConfig":
        """Return a new validated snapshot with some fields replaced.

        Raises:
            ConfigurationError: If the derived snapshot is invalid
        """
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, object]:
        """Convert to a plain dictionary (enums and paths as strings)."""
        result: Dict[str, object] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Path):
                value = str(value)
            elif f.name == "screen_size" and value is not None:
                value = f"{value[0]}x{value[1]}"
            result[f.name] = value
        return result

    def log(self) -> None:
        """Log every resolved setting."""
        for name, value in self.to_dict().items():
            logger.info("%-26s = %s", name, value)


@dataclass
class ConfigOverrides:
    """Values given explicitly on the command line.

    ``None`` means "not given"; the environment or the default applies.
    """

    output_root: Optional[str] = None
    output_name: Optional[str] = None
    output_path: Optional[str] = None
    apps_root: Optional[str] = None
    daemon_port: Optional[str] = None
    device_type: Optional[str] = None
    screen_size: Optional[str] = None
    profile: Optional[str] = None
    package_format: Optional[str] = None
    b2g_package: Optional[str] = None
    prebuilts_manifest: Optional[str] = None


def parse_screen_size(value: str) -> Tuple[int, int]:
    """Parse a WIDTHxHEIGHT string such as ``800x600``.

    Raises:
        ValueError: If the value is not formatted as WIDTHxHEIGHT
    """
    match = _SCREEN_SIZE_RE.match(value.strip())
    if not match:
        raise ValueError(f"screen size must look like 800x600, got '{value}'")
    width, height = int(match.group(1)), int(match.group(2))
    if width == 0 or height == 0:
        raise ValueError(f"screen size must be non-zero, got '{value}'")
    return width, height


def _is_creatable_dir(path: Path) -> bool:
    if path.exists():
        return path.is_dir()
    parent = path.absolute().parent
    while not parent.exists():
        if parent == parent.parent:
            return False
        parent = parent.parent
    return parent.is_dir() and os.access(parent, os.W_OK)


def validate_config(config: BuildConfig) -> List[str]:
    """Check a snapshot against all rules.

    Returns:
        List of violated rules (empty when the snapshot is valid)
    """
    violations = []
    if not _is_creatable_dir(config.output_root):
        violations.append(f"output root '{config.output_root}' is not an existing or creatable directory")
    if not _is_creatable_dir(config.output_path):
        violations.append(f"output path '{config.output_path}' is not an existing or creatable directory")
    if not isinstance(config.daemon_port, int) or not 1 <= config.daemon_port <= 65535:
        violations.append(f"daemon port {config.daemon_port} is outside the range 1-65535")
    if not isinstance(config.device_type, DeviceType):
        valid = ", ".join(d.value for d in DeviceType)
        violations.append(f"device type '{config.device_type}' is not one of: {valid}")
    if not isinstance(config.profile, BuildProfile):
        violations.append(f"build profile '{config.profile}' is not one of: dev, prod")
    if not isinstance(config.package_format, PackageFormat):
        violations.append(f"package format '{config.package_format}' is not one of: raw, deb")
    elif config.package_format == PackageFormat.DEB and config.device_type != DeviceType.DESKTOP:
        device = getattr(config.device_type, "value", config.device_type)
        violations.append(f"debian packages can only be built for 'desktop', not '{device}'")
    return violations


class BuildConfigResolver:
    """Resolves CLI overrides, environment and defaults into a BuildConfig."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """Initialize resolver.

        Args:
            environ: Environment mapping (defaults to os.environ)
        """
        self.environ = dict(os.environ if environ is None else environ)

    def _env(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        if value is None and name == ENV_OUTPUT_ROOT:
            value = self.environ.get(ENV_OUTPUT_ROOT_LEGACY)
        if value is not None and value.strip() == "":
            return None
        return value

    def _pick(self, override: Optional[str], env_name: Optional[str]) -> Optional[str]:
        if override is not None:
            return override
        if env_name is not None:
            return self._env(env_name)
        return None

    def describe_environment(self) -> List[Tuple[str, str]]:
        """Return the raw value of every recognized environment variable."""
        return [(name, self.environ.get(name, "")) for name in ENVIRONMENT_VARIABLES]

    def resolve(self, overrides: Optional[ConfigOverrides] = None) -> BuildConfig:
        """Build and validate a configuration snapshot.

        Args:
            overrides: Explicit CLI values

        Returns:
            Validated BuildConfig

        Raises:
            ConfigurationError: Listing every violated rule
        """
        overrides = overrides or ConfigOverrides()
        violations: List[str] = []

        output_root = Path(self._pick(overrides.output_root, ENV_OUTPUT_ROOT) or DEFAULT_OUTPUT_ROOT)

        profile = BuildProfile.DEV
        profile_value = overrides.profile
        if profile_value is not None:
            try:
                profile = BuildProfile(profile_value)
            except ValueError:
                violations.append(f"build profile '{profile_value}' is not one of: dev, prod")

        if overrides.output_path is not None:
            output_path = Path(overrides.output_path)
        else:
            output_path = output_root / (overrides.output_name or profile.value)

        apps_root = Path(self._pick(overrides.apps_root, ENV_APPS_ROOT) or DEFAULT_APPS_ROOT)
        prebuilts = output_root / "prebuilts"
        api_daemon_root = Path(self._env(ENV_API_DAEMON_ROOT) or prebuilts / "api-daemon")
        api_daemon_binary = Path(self._env(ENV_API_DAEMON_BINARY) or api_daemon_root / "api-daemon")
        appscmd_binary = Path(self._env(ENV_APPSCMD_BINARY) or prebuilts / "appscmd" / "appscmd")
        b2ghald_binary = Path(self._env(ENV_B2GHALD_BINARY) or prebuilts / "b2ghald" / "b2ghald")

        b2g_binary_value = self._env(ENV_B2G_BINARY)
        b2g_binary = Path(b2g_binary_value) if b2g_binary_value else None
        b2g_package_value = self._pick(overrides.b2g_package, ENV_B2G_PACKAGE)
        b2g_package = Path(b2g_package_value) if b2g_package_value else None

        daemon_port = DEFAULT_DAEMON_PORT
        port_value = self._pick(overrides.daemon_port, ENV_API_DAEMON_PORT)
        if port_value is not None:
            try:
                daemon_port = int(port_value)
            except ValueError:
                violations.append(f"daemon port '{port_value}' is not an integer")

        device_type = DeviceType.DESKTOP
        if overrides.device_type is not None:
            try:
                device_type = DeviceType(overrides.device_type)
            except ValueError:
                valid = ", ".join(d.value for d in DeviceType)
                violations.append(f"device type '{overrides.device_type}' is not one of: {valid}")

        screen_size = None
        if overrides.screen_size is not None:
            try:
                screen_size = parse_screen_size(overrides.screen_size)
            except ValueError as e:
                violations.append(str(e))

        package_format = PackageFormat.RAW
        if overrides.package_format is not None:
            try:
                package_format = PackageFormat(overrides.package_format)
            except ValueError:
                violations.append(f"package format '{overrides.package_format}' is not one of: raw, deb")

        prebuilts_manifest = self._pick(overrides.prebuilts_manifest, ENV_PREBUILTS_MANIFEST) or DEFAULT_PREBUILTS_MANIFEST
        cache_root = Path(self._env(ENV_CACHE_DIR) or DEFAULT_CACHE_ROOT)

        try:
            config = BuildConfig(
                output_root=output_root,
                output_path=output_path,
                apps_root=apps_root,
                api_daemon_root=api_daemon_root,
                api_daemon_binary=api_daemon_binary,
                daemon_port=daemon_port,
                appscmd_binary=appscmd_binary,
                b2ghald_binary=b2ghald_binary,
                b2g_binary=b2g_binary,
                b2g_package=b2g_package,
                device_type=device_type,
                screen_size=screen_size,
                profile=profile,
                package_format=package_format,
                prebuilts_manifest=prebuilts_manifest,
                cache_root=cache_root,
            )
        except ConfigurationError as e:
            violations.extend(e.violations)

        if violations:
            raise ConfigurationError(violations)
        return config
