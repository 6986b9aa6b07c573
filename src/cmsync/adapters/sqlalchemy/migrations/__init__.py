"""Alembic helpers for the cmsync bookkeeping database."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from cmsync.config import get_database_config

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parents[5]
PYPROJECT_PATH: Final[Path] = PROJECT_ROOT / "pyproject.toml"
MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent

_RESOLVED_KEYS: Final[frozenset[str]] = frozenset({"script_location", "prepend_sys_path"})

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def _pyproject_options() -> dict[str, str]:
    """Return the ``[tool.alembic]`` table of pyproject.toml as strings."""

    try:
        with PYPROJECT_PATH.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError:
        return {}
    section = document.get("tool", {}).get("alembic", {})
    return {str(key): str(value) for key, value in section.items()}


def _resolve(path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else (PROJECT_ROOT / candidate).resolve()


def _build_config() -> Config:
    """Alembic config seeded from pyproject; falls back to this package for scripts."""

    options = _pyproject_options()
    # An installed wheel has no pyproject next to it; the scripts ship inside the package.
    config = Config(toml_file=str(PYPROJECT_PATH)) if PYPROJECT_PATH.exists() else Config()

    script_location = options.get("script_location")
    script_path = _resolve(script_location) if script_location else MIGRATIONS_PATH
    if not script_path.exists():
        script_path = MIGRATIONS_PATH
    config.set_main_option("script_location", str(script_path))
    config.set_main_option("prepend_sys_path", str(_resolve(options.get("prepend_sys_path", "."))))

    for key, value in options.items():
        if key not in _RESOLVED_KEYS:
            config.set_main_option(key, value)

    config.attributes["pyproject_options"] = options
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Upgrade the bookkeeping schema to the latest revision."""

    config = _build_config()
    if engine is not None:
        with engine.begin() as connection:
            config.attributes["connection"] = connection
            command.upgrade(config, "head")
        return
    config.set_main_option("sqlalchemy.url", database_uri or get_database_config().uri)
    command.upgrade(config, "head")
