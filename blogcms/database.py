from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from blogcms.config import settings
from blogcms.middleware import install_query_counter


def install_foreign_keys(engine) -> None:
    """
    Turn on foreign-key enforcement for every new SQLite connection made by
    *engine*.  Comment cascades and the category RESTRICT rule depend on it.
    No-op for other backends.
    """
    sync_engine = engine.sync_engine
    if sync_engine.dialect.name != "sqlite":
        return

    @event.listens_for(sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs["pool_timeout"] = settings.DB_POOL_TIMEOUT
    return kwargs


# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

install_query_counter(engine)
install_foreign_keys(engine)

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
