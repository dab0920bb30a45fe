from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from community.config import settings


def install_sqlite_pragmas(engine: AsyncEngine, immediate: bool = False) -> None:
    """
    Make a SQLite *engine* behave like the production database where the
    schema relies on it.

    - ``PRAGMA foreign_keys=ON`` on every new connection so that
      ``ON DELETE CASCADE`` removes a deleted user's posts, comments and
      likes.
    - With *immediate*, every transaction starts with ``BEGIN IMMEDIATE``
      so concurrent writers queue on SQLite's write lock instead of
      failing with "database is locked" when both try to upgrade a read
      lock.

    No-op for other dialects.
    """
    if engine.dialect.name != "sqlite":
        return
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        if immediate:
            # Let SQLAlchemy's "begin" hook own transaction start.
            dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    if immediate:
        @event.listens_for(sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")


# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)
install_sqlite_pragmas(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
