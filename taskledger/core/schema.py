"""SQLite schema management (code-first, contributed by registered modules)."""

import logging

from taskledger.core import db_client
from taskledger.core.module_registry import get_all_indexes, get_all_table_schemas


logger = logging.getLogger(__name__)


async def init_db(*, db_path: str | None = None) -> None:
    """Create every table and index declared by the registered modules.

    Statements are idempotent (``IF NOT EXISTS``), so this is safe to run at every startup.
    """
    schemas = get_all_table_schemas()
    indexes = get_all_indexes()

    async with db_client.transaction(db_path=db_path) as conn:
        for table_name, ddl in schemas.items():
            await conn.execute(ddl)
            logger.debug("Ensured table", extra={"table": table_name})
        for index_sql in indexes:
            await conn.execute(index_sql)

    logger.info("Database schema initialized", extra={"tables": sorted(schemas), "index_count": len(indexes)})
