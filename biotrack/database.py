import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from biotrack.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    def __init__(self):
        self.engine = None
        self.async_session = None
        self.is_connected = False

    async def connect(self, url: Optional[str] = None) -> bool:
        """Connect to the attendance database"""
        settings = get_settings()
        connection_string = url or settings.database_url

        try:
            if connection_string.startswith("sqlite"):
                # In-memory SQLite must share one connection across sessions
                self.engine = create_async_engine(
                    connection_string,
                    echo=settings.db_echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool
                )
            else:
                self.engine = create_async_engine(
                    connection_string,
                    echo=settings.db_echo,
                    pool_pre_ping=True,
                    pool_recycle=3600,
                    poolclass=NullPool
                )

            self.async_session = sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            self.is_connected = True
            logger.info(f"Connected to database: {self.engine.url.render_as_string(hide_password=True)}")
            return True

        except Exception as e:
            logger.error(f"Error connecting to database: {e}")
            self.is_connected = False
            return False

    async def disconnect(self):
        """Disconnect from database"""
        if self.engine:
            await self.engine.dispose()
            self.is_connected = False
            logger.info("Database connection closed")

    def get_session(self) -> AsyncSession:
        """Get async database session"""
        if not self.is_connected:
            raise RuntimeError("Database is not connected. Call connect() first.")
        return self.async_session()

    async def create_tables(self):
        """Create all tables defined in Base metadata"""
        # Register models on the metadata
        from biotrack.models import attendance, identity, school_class  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully")
        except Exception as e:
            logger.error(f"Error creating tables: {e}")
            raise

    async def check_connection(self) -> bool:
        """Run a trivial query to confirm the database answers"""
        if not self.is_connected:
            return False
        try:
            async with self.async_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


# Create global database instance
database = Database()
