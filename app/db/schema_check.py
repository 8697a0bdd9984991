import asyncio
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

import app.core.models  # noqa: F401  (registers tables on Base.metadata)
from app.db.session import Base, engine


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Create any promotion tables missing from the database. Existing tables are left untouched.
    Returns the names of the tables that were created.
    """
    async with db_engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        missing = [t.name for t in Base.metadata.sorted_tables if t.name not in existing]
        await conn.run_sync(Base.metadata.create_all)
    return missing


async def main() -> None:
    created = await ensure_tables(engine)
    if created:
        print("Created tables:", ", ".join(created))
    else:
        print("All tables present.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
