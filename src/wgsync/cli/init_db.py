import asyncio
import logging

from wgsync.db import get_store
from wgsync.observability import configure_logging
from wgsync.settings import get_settings

logger = logging.getLogger("wgsync.init_db")


async def init_db() -> None:
    """Create the schema directly, for development databases that skip Alembic."""
    store = get_store()
    try:
        await store.create_all()
        logger.info("schema_created url=%s", store.engine.url.render_as_string(hide_password=True))
    finally:
        await store.dispose()


def main() -> None:
    configure_logging(get_settings().log_level)
    asyncio.run(init_db())


if __name__ == "__main__":
    main()
