import asyncio
import logging

from databases import Database


logger = logging.getLogger(__name__)


class StoreHandle:
    """Owns the database connection. Connects on first use and reuses it after."""

    def __init__(self, url: str | None) -> None:
        self.url = url or None
        self._db: Database | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<StoreHandle(url={self.url}, connected={self.connected})>"

    @property
    def connected(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def connect_or_reuse(self) -> Database | None:
        """The connected database, or None when running without one."""
        if self.connected:
            return self._db

        if self.url is None:
            logger.warning("No database url configured, running without a database.")
            return None

        # Overlapping callers wait for the first connect instead of opening their own.
        async with self._lock:
            if self.connected:
                return self._db

            db = Database(self.url)
            try:
                await db.connect()
            except Exception:
                logger.exception("Failed to connect to the database.")
                return None

            logger.info("Connected to the database.")
            self._db = db
            return db

    async def disconnect(self) -> None:
        async with self._lock:
            if self._db is None:
                return
            await self._db.disconnect()
            self._db = None
