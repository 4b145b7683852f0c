from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv
from pathlib import Path
import logging

from config import get_settings
from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the async engine on first use. The audit database is optional."""
    global _engine, _session_factory

    if _engine is None:
        database_url = get_settings().DATABASE_URL
        if not database_url:
            raise ConfigurationError("DATABASE_URL environment variable is not set")

        _engine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10
        )
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    return _engine


def get_session_factory() -> async_sessionmaker:
    get_engine()
    return _session_factory


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
