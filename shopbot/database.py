from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from shopbot.config import get_settings

DATABASE_URL = get_settings().database_url

if "+" not in DATABASE_URL.split("://", 1)[0]:
    raise RuntimeError(
        f"DATABASE_URL must use an async driver (e.g. sqlite+aiosqlite://), got {DATABASE_URL!r}"
    )


def make_engine(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("sqlite"):
        # Wait for concurrent writers instead of failing with "database is locked"
        kwargs.setdefault("connect_args", {"timeout": 15})
    return create_async_engine(url, **kwargs)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


# One pool per process, shared by every request
engine = make_engine(DATABASE_URL)
SessionLocal = make_sessionmaker(engine)
Base = declarative_base()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the tables that do not exist yet."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db(bind: AsyncEngine | None = None) -> None:
    await (bind or engine).dispose()
