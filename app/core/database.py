# ============================================================================
# Database Connection
# ============================================================================
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import logging

from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Define Base FIRST (very important)
class Base(DeclarativeBase):
    pass

def _async_database_url(url: str) -> str:
    # Convert postgresql:// to postgresql+asyncpg://
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url

database_url = _async_database_url(settings.DATABASE_URL)

logger.info(f"📦 Connecting to database: {database_url.split('@')[1] if '@' in database_url else database_url}")

engine = create_async_engine(
    database_url,
    echo=settings.DEBUG,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)
