"""
.env file support for tasksync.

The variable named by ``remote.api_key_env`` and the TASKSYNC_* overrides
can live in .env files instead of the shell. The user file
(``$XDG_CONFIG_HOME/tasksync/.env``) is read first, then the project's
``.env`` and ``.env.local``; a later file wins over an earlier one. A value
from a file never replaces a variable that is already set in the process.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

from .loader import get_xdg_config_home

PROJECT_ENV_FILES = (".env", ".env.local")


def get_user_env_path() -> Path:
    """Path to ~/.config/tasksync/.env (or XDG equivalent)."""
    return get_xdg_config_home() / "tasksync" / ".env"


def read_env_files(paths: Iterable[Path]) -> dict[str, str]:
    """
    Merge the assignments of several .env files; later files win.

    Missing files are skipped. A bare ``KEY`` line has no value and is
    ignored.
    """
    merged: dict[str, str] = {}
    for path in map(Path, paths):
        if not path.is_file():
            continue
        merged.update(
            {key: value for key, value in dotenv_values(path).items() if value is not None}
        )
    return merged


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """
    Export .env values that the process environment does not define yet.

    Args:
        project_dir: Where the project .env files live (defaults to cwd)
        user_env_paths: Override the user file location
        project_env_paths: Override the project file locations

    Returns:
        Names of the variables that were exported
    """
    if project_dir is None:
        project_dir = Path.cwd()
    if user_env_paths is None:
        user_env_paths = [get_user_env_path()]
    if project_env_paths is None:
        project_env_paths = [project_dir / name for name in PROJECT_ENV_FILES]

    values = read_env_files([*user_env_paths, *project_env_paths])
    exported = {key for key in values if key not in os.environ}
    for key in exported:
        os.environ[key] = values[key]
    return exported
