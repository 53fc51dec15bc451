from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    @asynccontextmanager
    async def transaction(self):
        """Multi-document transaction; yields the session to pass to every read and write.

        Requires a replica set (Atlas or `--replSet` locally).
        """
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def _create_indexes(self):
        """Create MongoDB indexes for ownership lookups and subscription reads."""
        await self.db.accounts.create_index("account_id", unique=True)
        try:
            await self.db.accounts.create_index("email", unique=True, sparse=True)
        except Exception as e:
            logger.warning(f"Account email index not created: {e}")

        # Ownership walks: account -> properties -> units
        await self.db.properties.create_index("property_id", unique=True)
        await self.db.properties.create_index("account_id")
        await self.db.units.create_index("unit_id", unique=True)
        await self.db.units.create_index("property_id")
        await self.db.units.create_index("account_id")

        # One subscription document per account; history is embedded
        await self.db.subscriptions.create_index("account_id", unique=True)
        await self.db.subscriptions.create_index([("tier", 1), ("status", 1)])

        await self.db.audit_logs.create_index([("account_id", 1), ("timestamp", -1)])
        await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
        logger.info("Database indexes ensured")

# Global database instance
database = Database()

