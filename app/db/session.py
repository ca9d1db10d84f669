from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.settings import settings

engine = create_async_engine(settings.database_url, future=True, echo=False, pool_pre_ping=True)
# Stores read rows after commit, so attributes must not expire.
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
