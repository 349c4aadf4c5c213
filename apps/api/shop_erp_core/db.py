from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from shop_erp_core.config import settings
from shop_erp_core.row_store import RowStore, SqlRowStore

DATABASE_URL = settings.database_url

engine = create_async_engine(
    DATABASE_URL,
    future=True,
    echo=False,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

_store = SqlRowStore(AsyncSessionLocal)


async def get_store() -> RowStore:
    return _store
