"""api-daemon configuration writer.

The api-daemon reads a ``config.toml`` describing the port it listens on and
where the packaged apps live. Each output tree gets its own copy.
"""

import logging
from pathlib import Path
from typing import Optional

from nbuild.config.build_config import BuildConfig
from nbuild.errors import FileSystemError

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """\
[general]
host = "0.0.0.0"
port = {port}
message_max_time = 10
verbose_log = false
log_path = "{log_path}"

[http]
root_path = "{http_root}"

[vhost]
root_path = "{webapps_root}"
csp = "default-src * data: blob:; script-src 'self' http://127.0.0.1 http://shared.localhost:{port}"
report_csp = true

[apps_service]
root_path = "{webapps_root}"
data_path = "{data_path}"
uds_path = "/tmp/apps_service_uds.sock"
cert_type = "test"

[procmanager_service]
socket_path = "/tmp/b2gkiller_hints.sock"
"""


def render_daemon_config(config: BuildConfig, runtime_root: Path) -> str:
    """Render the api-daemon config for an install found at runtime_root."""
    runtime_root = Path(runtime_root).absolute()
    daemon_root = runtime_root / "api-daemon"
    return CONFIG_TEMPLATE.format(
        port=config.daemon_port,
        log_path=(daemon_root / "logs").as_posix(),
        http_root=(daemon_root / "http_root").as_posix(),
        webapps_root=(runtime_root / "webapps").as_posix(),
        data_path=(daemon_root / "data").as_posix(),
    )


def write_daemon_config(
    config: BuildConfig,
    install_root: Path,
    runtime_root: Optional[Path] = None,
) -> Path:
    """Write ``api-daemon/config.toml`` below install_root.

    Args:
        config: Build configuration
        install_root: Directory the file is written into
        runtime_root: Where the tree lives when it runs (default: install_root)

    Returns:
        Path of the written file

    Raises:
        FileSystemError: If the file cannot be written
    """
    target = install_root / "api-daemon" / "config.toml"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        (target.parent / "logs").mkdir(exist_ok=True)
        (target.parent / "data").mkdir(exist_ok=True)
        target.write_text(render_daemon_config(config, runtime_root or install_root), encoding="utf-8")
    except OSError as e:
        raise FileSystemError(f"Failed to write api-daemon config {target}: {e}") from e
    logger.info(f"Wrote api-daemon config to {target} (port {config.daemon_port})")
    return target
