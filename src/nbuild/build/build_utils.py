"""Filesystem helpers for build output trees."""

import os
import shutil
import stat
import time
from pathlib import Path
from typing import Any, Callable


def remove_readonly(func: Callable[[str], None], path: str, excinfo: Any) -> None:
    """
    Error handler for shutil.rmtree.

    Read-only files (prebuilt binaries are often installed read-only) make
    rmtree fail. This handler adds write permission and retries.
    """
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def safe_rmtree(path: Path, max_retries: int = 3) -> None:
    """
    Remove a directory tree, retrying on transient failures.

    Args:
        path: Path to directory to remove
        max_retries: Maximum number of attempts

    Raises:
        OSError: If directory cannot be removed after all retries
    """
    if not path.exists():
        return

    for attempt in range(max_retries):
        try:
            shutil.rmtree(path, onerror=remove_readonly)
            return
        except OSError as e:
            if attempt < max_retries - 1:
                time.sleep(0.5)
            else:
                raise OSError(f"Failed to remove directory {path} after {max_retries} attempts: {e}") from e


def copy_tree(src: Path, dst: Path) -> None:
    """Copy a directory tree over an existing one, keeping file modes."""
    shutil.copytree(src, dst, dirs_exist_ok=True)


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
