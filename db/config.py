"""
db/config.py

Environment loading and database connection settings.

`.env` and `.env.local` at the project root are read once per process; real
environment variables always win over file values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILES = (".env", ".env.local")

_TRUTHY = {"1", "true", "yes", "on"}
_CLOUD_LIKE_ENVIRONMENTS = {"prod", "production", "staging", "cloud"}
_DRIVER_PREFIX = "postgresql+psycopg://"


def _parse_env_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def load_env_files(root: Path = PROJECT_ROOT) -> None:
    """
    Copy KEY=VALUE pairs from the project env files into ``os.environ``.

    Blank lines, ``#`` comments and an optional ``export`` prefix are
    tolerated. Keys already present in the environment are left alone.
    """

    for filename in ENV_FILES:
        env_path = root / filename
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(raw_line)
            if parsed is None:
                continue
            key, value = parsed
            os.environ.setdefault(key, value)


def get_bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def normalize_postgres_url(url: str) -> str:
    """Force the psycopg 3 driver onto bare ``postgres://``/``postgresql://`` URLs."""
    url = url.strip()
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return _DRIVER_PREFIX + url[len(prefix):]
    return url


def resolve_database_url() -> str:
    """
    Pick the engine's database URL.

    ``DATABASE_URL`` wins; ``CLOUD_DATABASE_URL`` is used when ``ENVIRONMENT``
    names a deployed tier; ``LOCAL_DATABASE_URL`` is the last resort.
    """

    load_env_files()

    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return normalize_postgres_url(direct_url)

    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    cloud_url = os.getenv("CLOUD_DATABASE_URL")
    if environment in _CLOUD_LIKE_ENVIRONMENTS and cloud_url:
        return normalize_postgres_url(cloud_url)

    local_url = os.getenv("LOCAL_DATABASE_URL")
    if local_url:
        return normalize_postgres_url(local_url)

    raise RuntimeError(
        "No database URL configured. Set DATABASE_URL, or configure "
        "LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle_seconds: int = 1800

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        url = resolve_database_url()
        if not url.startswith("postgresql"):
            raise RuntimeError("Only PostgreSQL URLs are supported.")
        return cls(
            url=url,
            echo=get_bool_env("SQL_ECHO", default=False),
            pool_size=max(1, get_int_env("DB_POOL_SIZE", 5)),
            max_overflow=max(0, get_int_env("DB_MAX_OVERFLOW", 10)),
            pool_recycle_seconds=max(60, get_int_env("DB_POOL_RECYCLE", 1800)),
        )
