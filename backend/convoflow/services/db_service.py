# /convoflow/services/db_service.py

import logging
from motor.motor_asyncio import AsyncIOMotorClient

from convoflow.config.settings import settings
from convoflow.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

# Collection names
FLOWS_COLLECTION = "conversation_flows"
SCENARIOS_COLLECTION = "automation_scenarios"
ESCALATION_RULES_COLLECTION = "escalation_rules"
HANDOFFS_COLLECTION = "escalation_handoffs"
ORDERS_COLLECTION = "orders"
PRODUCTS_COLLECTION = "products"
TICKETS_COLLECTION = "complaint_tickets"


class DatabaseService:
    """
    Owns the MongoDB client and the index definitions of every collection the
    automation engine reads or writes.
    """

    def __init__(self, mongo_uri: str, database: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                tz_aware=True,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client[database]
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            (SCENARIOS_COLLECTION, [("company_id", 1), ("created_at", 1)], {}),
            (ESCALATION_RULES_COLLECTION, [("company_id", 1)], {}),
            (HANDOFFS_COLLECTION, [("conversation_id", 1), ("created_at", -1)], {}),
            (ORDERS_COLLECTION, [("customer_id", 1), ("created_at", -1)], {}),
            (TICKETS_COLLECTION, [("customer_id", 1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                database_operations_counter.labels(operation="create_index", status="failed").inc()
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False

    def close(self):
        self.client.close()


# Globally accessible instance
db_service = DatabaseService(settings.mongo_uri, settings.mongo_database)
