# backend/tests/unit/test_services.py
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import httpx
import pytest
from pymongo.errors import DuplicateKeyError

from convoflow.models.flow import ConversationFlow, FlowStatus
from convoflow.services.action_provider import ActionProvider
from convoflow.services.commerce_actions import build_commerce_action_provider
from convoflow.services.flow_store import MongoFlowStore
from convoflow.services.providers import (
    DatabaseCustomerFactsProvider,
    KeywordClassificationProvider,
    LoggingEscalationSink,
    start_of_business_day,
)
from convoflow.utils.alerting import WebhookEscalationSink
from convoflow.utils.locks import ConversationLocks, ConversationLockTimeout
from convoflow.utils.logging import add_service_context
from convoflow.workflows.errors import ActionExecutionError, ActionNotSupported, ActiveFlowConflict


# --- ActionProvider ---

async def test_action_provider_invokes_registered_handler():
    provider = ActionProvider()
    provider.register("echo", AsyncMock(return_value={"echo": "hi"}))

    assert provider.capabilities() == ["echo"]
    assert await provider.invoke("echo", {"text": "hi"}, {}) == {"echo": "hi"}


async def test_action_provider_unknown_action():
    with pytest.raises(ActionNotSupported):
        await ActionProvider().invoke("missing", {}, {})


async def test_action_provider_wraps_handler_errors():
    provider = ActionProvider()
    provider.register("boom", AsyncMock(side_effect=KeyError("order_number")))

    with pytest.raises(ActionExecutionError) as exc_info:
        await provider.invoke("boom", {}, {})
    assert exc_info.value.action == "boom"
    assert isinstance(exc_info.value.__cause__, KeyError)


# --- Classification ---

@pytest.mark.parametrize("text, intent, sentiment", [
    ("Where is my order?", "order_inquiry", "neutral"),
    ("This is terrible, the item arrived broken", "complaint", "negative"),
    ("Hello there", "greeting", "neutral"),
    ("Thanks, how much is this product?", "product_inquiry", "positive"),
    ("I want to talk to human", "human_escalation", "neutral"),
    ("", None, "neutral"),
])
async def test_keyword_classifier(text, intent, sentiment):
    result = await KeywordClassificationProvider().classify(text)
    assert result == {"intent": intent, "sentiment": sentiment}


def test_start_of_business_day_uses_local_midnight():
    # 22:30 UTC on May 5th is already May 6th in Riyadh (UTC+3)
    now = datetime(2024, 5, 5, 22, 30, tzinfo=timezone.utc)
    assert start_of_business_day(now, ZoneInfo("Asia/Riyadh")) == datetime(2024, 5, 5, 21, 0, tzinfo=timezone.utc)


# --- Conversation locks ---

async def test_local_lock_serializes_one_conversation():
    locks = ConversationLocks(timeout=5)
    order = []

    async def worker(name):
        async with locks.hold("CONV1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert locks._local_locks == {}


async def test_local_lock_times_out():
    locks = ConversationLocks(timeout=0.05)

    async with locks.hold("CONV1"):
        with pytest.raises(ConversationLockTimeout):
            async with locks.hold("CONV1"):
                pass


async def test_redis_lock_is_used_when_configured():
    redis_lock = MagicMock()
    redis_lock.acquire = AsyncMock(return_value=True)
    redis_lock.release = AsyncMock()
    redis_client = MagicMock()
    redis_client.lock.return_value = redis_lock

    async with ConversationLocks(redis_client, timeout=7).hold("CONV1"):
        pass

    redis_client.lock.assert_called_once_with("flow_lock:CONV1", timeout=7, blocking_timeout=7)
    redis_lock.release.assert_awaited_once()


# --- MongoFlowStore ---

def _flow():
    return ConversationFlow(id="FLOW1", conversation_id="CONV1", scenario_id="S", customer_id="C",
                            company_id="1", current_step_id="s1")


async def test_mongo_flow_store_round_trips_documents():
    collection = MagicMock()
    collection.replace_one = AsyncMock()
    store = MongoFlowStore({"conversation_flows": collection})

    await store.save(_flow())

    filter_doc, document = collection.replace_one.await_args.args
    assert filter_doc == {"_id": "FLOW1"}
    assert document["_id"] == "FLOW1" and "id" not in document
    assert document["status"] == "active"

    collection.find_one = AsyncMock(return_value=document)
    loaded = await store.get_active("CONV1")
    assert loaded.id == "FLOW1"
    assert loaded.status == FlowStatus.ACTIVE
    collection.find_one.assert_awaited_once_with({"conversation_id": "CONV1", "status": "active"})


async def test_mongo_flow_store_maps_duplicate_key_to_conflict():
    collection = MagicMock()
    collection.replace_one = AsyncMock(side_effect=DuplicateKeyError("E11000"))
    store = MongoFlowStore({"conversation_flows": collection})

    with pytest.raises(ActiveFlowConflict):
        await store.save(_flow())


# --- Escalation sinks ---

async def test_logging_sink_records_handoff():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    sink = LoggingEscalationSink({"escalation_handoffs": collection})

    await sink.handoff("CONV1", "sales", "high", "Customer asked for an agent")

    record = collection.insert_one.await_args.args[0]
    assert record["conversation_id"] == "CONV1"
    assert record["status"] == "pending"


async def test_webhook_sink_posts_payload():
    client = MagicMock()
    client.post = AsyncMock(return_value=MagicMock(raise_for_status=MagicMock()))
    sink = WebhookEscalationSink("https://hooks.example.com/handoff", client=client)

    await sink.handoff("CONV1", "technical", "urgent", "Route choice")

    url = client.post.await_args.args[0]
    payload = client.post.await_args.kwargs["json"]
    assert url == "https://hooks.example.com/handoff"
    assert payload["department"] == "technical"
    assert payload["priority"] == "urgent"


async def test_webhook_sink_retries_network_errors(mocker):
    mocker.patch("asyncio.sleep", new_callable=AsyncMock)
    client = MagicMock()
    client.post = AsyncMock(side_effect=[
        httpx.ConnectError("refused"),
        MagicMock(raise_for_status=MagicMock()),
    ])
    sink = WebhookEscalationSink("https://hooks.example.com/handoff", client=client)

    await sink.handoff("CONV1", "technical", "urgent", "Route choice")

    assert client.post.await_count == 2


# --- Commerce actions ---

def _cursor(documents):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=documents)
    return cursor


async def test_fetch_customer_orders_uses_flow_customer():
    orders = MagicMock()
    orders.find.return_value = _cursor([{"order_number": "#1001", "status": "shipped", "total": 99}])
    provider = build_commerce_action_provider({"orders": orders})

    result = await provider.invoke("fetch_customer_orders", {}, {"customer_id": "CUST1"})

    assert result == {"recent_orders": [{"id": "#1001", "status": "shipped", "total": 99}]}
    assert orders.find.call_args.args[0] == {"customer_id": "CUST1"}


async def test_commerce_action_without_customer_fails():
    provider = build_commerce_action_provider({"orders": MagicMock()})

    with pytest.raises(ActionExecutionError):
        await provider.invoke("fetch_customer_orders", {}, {})


async def test_search_products_formats_results():
    products = MagicMock()
    products.find.return_value = _cursor([{"title": "Desk Lamp", "price": 25, "currency": "SAR"}])
    provider = build_commerce_action_provider({"products": products})

    result = await provider.invoke("search_products", {"category": "Home & Garden", "limit": 5}, {})

    assert result == {"product_results": ["Desk Lamp - 25 SAR"]}
    query = products.find.call_args.args[0]
    assert query["category"]["$options"] == "i"


async def test_usage_count_is_scoped_to_business_day():
    flow_store = MagicMock()
    flow_store.count_started_since = AsyncMock(return_value=3)
    now = datetime(2024, 5, 5, 22, 30, tzinfo=timezone.utc)
    facts = DatabaseCustomerFactsProvider({}, flow_store, ZoneInfo("Asia/Riyadh"), clock=lambda: now)

    assert await facts.usage_count_today("SCENARIO001", "CUST1") == 3
    flow_store.count_started_since.assert_awaited_once_with(
        "SCENARIO001", "CUST1", datetime(2024, 5, 5, 21, 0, tzinfo=timezone.utc)
    )


# --- Logging ---

def test_service_context_is_added_to_log_records():
    event = add_service_context(None, "info", {"event": "Flow started", "conversation_id": "CONV1"})

    assert event["service"] == "convoflow"
    assert event["environment"] == "test"
    assert event["conversation_id"] == "CONV1"
