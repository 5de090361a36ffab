# /convoflow/services/commerce_actions.py

import re
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from convoflow.services.action_provider import ActionProvider
from convoflow.services.db_service import ORDERS_COLLECTION, PRODUCTS_COLLECTION, TICKETS_COLLECTION
from convoflow.workflows.errors import ActionExecutionError

# The commerce actions the seeded scenarios use, backed by the platform's
# MongoDB collections. Each handler returns the keys it adds to the flow context.

logger = logging.getLogger(__name__)

RECENT_ORDERS_LIMIT = 3
PRODUCT_SEARCH_LIMIT = 5


def _customer_id(params: Dict[str, Any], context: Dict[str, Any]) -> str:
    customer_id = params.get("customer_id") or context.get("customer_id")
    if not customer_id:
        raise ActionExecutionError("customer lookup", "no customer_id in params or flow context")
    return str(customer_id)


def build_commerce_action_provider(db) -> ActionProvider:
    provider = ActionProvider()

    async def fetch_customer_orders(params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        """Most recent orders of the flow's customer, newest first."""
        customer_id = _customer_id(params, context)
        limit = int(params.get("limit") or RECENT_ORDERS_LIMIT)
        result_key = params.get("result_key") or "recent_orders"
        cursor = db[ORDERS_COLLECTION].find(
            {"customer_id": customer_id},
            {"_id": 0, "order_number": 1, "status": 1, "total": 1},
        ).sort("created_at", -1)
        orders = await cursor.to_list(length=limit)
        return {result_key: [
            {"id": o.get("order_number"), "status": o.get("status"), "total": o.get("total")}
            for o in orders
        ]}

    async def search_products(params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        category = (params.get("category") or "").strip()
        limit = int(params.get("limit") or PRODUCT_SEARCH_LIMIT)
        query = {"category": {"$regex": re.escape(category), "$options": "i"}} if category else {}
        cursor = db[PRODUCTS_COLLECTION].find(query, {"_id": 0, "title": 1, "price": 1, "currency": 1})
        products = await cursor.to_list(length=limit)
        lines = [
            f"{p.get('title', 'Product')} - {p.get('price', '')} {p.get('currency', '')}".strip()
            for p in products
        ]
        return {"product_results": lines}

    async def create_complaint_ticket(params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        ticket = {
            "customer_id": _customer_id(params, context),
            "conversation_id": context.get("conversation_id"),
            "type": params.get("type") or "other",
            "priority": params.get("priority") or "medium",
            "status": "open",
            "created_at": datetime.now(timezone.utc),
        }
        result = await db[TICKETS_COLLECTION].insert_one(ticket)
        ticket_id = str(result.inserted_id)
        logger.info(f"Created complaint ticket {ticket_id} for customer {ticket['customer_id']}.")
        return {"ticket_id": ticket_id}

    provider.register("fetch_customer_orders", fetch_customer_orders)
    provider.register("search_products", search_products)
    provider.register("create_complaint_ticket", create_complaint_ticket)
    return provider
