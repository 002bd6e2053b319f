from urllib.parse import parse_qs, urlsplit

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from poolsync.config import settings


def _disable_prepared_statements(database_url: str) -> bool:
    parts = urlsplit(database_url)
    if "asyncpg" not in parts.scheme:
        return False
    host = (parts.hostname or "").lower()
    if "pooler" in host or "pgbouncer" in host:
        return True
    if parts.port == 6543:
        return True
    query = parse_qs(parts.query)
    pool_mode = (query.get("pool_mode") or [""])[0].lower()
    if pool_mode in {"transaction", "statement"}:
        return True
    return False


connect_args = {}
if _disable_prepared_statements(settings.database_url):
    connect_args["statement_cache_size"] = 0

engine = create_async_engine(settings.database_url, echo=False, connect_args=connect_args)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def dispose_engine() -> None:
    await engine.dispose()


async def insert_ignore(db: AsyncSession, model, values: dict, index_elements: list[str]) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True when a row was written.

    ``values`` is keyed by column name, not attribute name.
    """
    dialect = db.get_bind().dialect.name
    insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert_fn(model.__table__).values(values).on_conflict_do_nothing(index_elements=index_elements)
    result = await db.execute(stmt)
    return (result.rowcount or 0) > 0
