from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

def upsert_insert(session: AsyncSession, model):
    """
    Returns a dialect specific INSERT that supports ON CONFLICT DO UPDATE.

    Production runs on Postgres; the test suite runs on sqlite. Both expose
    the same on_conflict_do_update(index_elements=..., set_=..., where=...)
    signature.
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "sqlite":
        return sqlite_insert(model)
    if dialect_name == "postgresql":
        return pg_insert(model)
    raise NotImplementedError(f"Upsert is not supported on dialect {dialect_name!r}")
