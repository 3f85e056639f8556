from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config

from wgsync.observability import configure_logging
from wgsync.settings import get_settings


def _sync_database_url(url: str) -> str:
    # App uses asyncpg/aiosqlite; Alembic uses a sync engine.
    return url.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


def _alembic_config(*, sync_database_url: str) -> Config:
    ini_path = os.getenv("WGSYNC_ALEMBIC_INI") or "alembic.ini"
    path = Path(ini_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    if not path.exists():
        raise RuntimeError(f"alembic.ini not found: {path}")

    cfg = Config(str(path))
    cfg.set_main_option("sqlalchemy.url", sync_database_url)
    cfg.attributes["configure_logger"] = False
    return cfg


def migrate_db() -> None:
    """Apply Alembic migrations up to head; an empty database gets the whole schema."""
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required")

    cfg = _alembic_config(sync_database_url=_sync_database_url(settings.database_url))
    command.upgrade(cfg, "head")


def main() -> None:
    configure_logging(get_settings().log_level)
    migrate_db()


if __name__ == "__main__":
    main()
