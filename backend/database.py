from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

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

    async def _create_indexes(self):
        """Create MongoDB indexes for efficient queries."""
        try:
            # Submissions - one per wizard run, listed by client email for staff
            await self.db.submissions.create_index("submission_id", unique=True)
            await self.db.submissions.create_index([("client_email", 1), ("created_at", -1)])

            # Paid orders - session_id is the dedup key for repeated verification
            try:
                await self.db.payment_orders.create_index("session_id", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.payment_orders.create_index("customer_email")

            # Refunds - append-only, never mutate payment_orders
            try:
                await self.db.refunds.create_index("refund_id", unique=True)
            except Exception:
                pass
            await self.db.refunds.create_index("session_id", sparse=True)

            # File index - explicit (client, batch) -> object mapping
            await self.db.file_index.create_index("file_id", unique=True)
            await self.db.file_index.create_index([("client_email", 1), ("scope", 1), ("created_at", -1)])
            await self.db.file_index.create_index("batch_id")

            # Identity directory lookup
            await self.db.portal_users.create_index("auth_email")

            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("timestamp")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

