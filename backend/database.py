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
            # Clients - list view sorts by created_at, filter tabs use stored_status
            await self.db.clients.create_index("client_id", unique=True)
            try:
                await self.db.clients.create_index("email", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.clients.create_index("stored_status")
            await self.db.clients.create_index([("created_at", -1)])

            await self.db.portals.create_index("portal_id", unique=True)
            await self.db.portals.create_index("client_id", unique=True)

            # Proposals and questionnaires are always read per client
            await self.db.proposals.create_index("proposal_id", unique=True)
            await self.db.proposals.create_index([("client_id", 1), ("created_at", -1)])
            await self.db.questionnaires.create_index("questionnaire_id", unique=True)
            await self.db.questionnaires.create_index([("client_id", 1), ("created_at", -1)])
            await self.db.questionnaire_templates.create_index("template_id", unique=True)

            await self.db.content_items.create_index("content_id", unique=True)
            await self.db.content_items.create_index([("category", 1), ("created_at", -1)])
            await self.db.content_items.create_index("client_ids")

            # Analytics events are append-only; aggregation reads by entity
            await self.db.analytics_events.create_index([("entity_id", 1), ("timestamp", -1)])
            await self.db.analytics_events.create_index("entity_type")

            # Stripe webhook idempotency - duplicate event_id must not process twice
            try:
                await self.db.stripe_events.create_index("event_id", unique=True)
            except Exception:
                pass

            await self.db.audit_logs.create_index([("client_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("resource_type", 1), ("resource_id", 1)])
            await self.db.audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

