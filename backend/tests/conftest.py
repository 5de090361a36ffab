# backend/tests/conftest.py

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv

# Load the test environment FIRST, before any app imports, so that the
# module-level settings instance is built from it.
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env.test")

# Now it's safe to import the application and its components
from convoflow.main import app  # noqa: E402
from convoflow.models.scenario import Scenario  # noqa: E402
from convoflow.services.action_provider import ActionProvider  # noqa: E402
from convoflow.services.escalation_service import EscalationRuleService  # noqa: E402
from convoflow.services.flow_orchestrator import FlowOrchestrator  # noqa: E402
from convoflow.services.flow_store import InMemoryFlowStore  # noqa: E402
from convoflow.services.providers import (  # noqa: E402
    CustomerFactsProvider,
    KeywordClassificationProvider,
)
from convoflow.services.scenario_registry import ScenarioRegistry  # noqa: E402
from convoflow.utils.locks import ConversationLocks  # noqa: E402
from convoflow.workflows.engine import StepExecutor  # noqa: E402
from convoflow.workflows.matcher import WorkingHours  # noqa: E402

# Monday 10:00 UTC, inside the default 9-18 working hours
FIXED_NOW = datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc)

RECENT_ORDERS = [
    {"id": "ORD001", "status": "shipped", "total": 250},
    {"id": "ORD002", "status": "delivered", "total": 180},
]


class StaticFactsProvider(CustomerFactsProvider):
    def __init__(self, has_history: bool = True, usage: Optional[Dict[str, int]] = None):
        self.has_history = has_history
        self.usage = usage or {}

    async def has_order_history(self, customer_id: str) -> bool:
        return self.has_history

    async def usage_count_today(self, scenario_id: str, customer_id: str) -> int:
        return self.usage.get(scenario_id, 0)


def build_scenario(scenario_id: str, steps: List[Dict[str, Any]], **overrides) -> Scenario:
    definition = {
        "id": scenario_id,
        "name": f"Scenario {scenario_id}",
        "company_id": "1",
        "steps": steps,
    }
    definition.update(overrides)
    return Scenario.model_validate(definition)


@pytest.fixture
def make_scenario():
    """Factory for scenarios of company "1" built from plain step dicts."""
    return build_scenario


@pytest.fixture
def action_provider():
    """Action provider with in-memory commerce actions and one that always fails."""
    provider = ActionProvider()
    orders_by_customer = {"CUST1": RECENT_ORDERS, "CUST_NEW": []}

    async def fetch_customer_orders(params, context):
        return {params.get("result_key") or "recent_orders": orders_by_customer.get(context.get("customer_id"), [])}

    async def search_products(params, context):
        return {"product_results": [f"{params.get('category')} item {i}" for i in range(1, 3)]}

    async def create_complaint_ticket(params, context):
        return {"ticket_id": "TICKET42"}

    async def explode(params, context):
        raise RuntimeError("upstream timeout")

    provider.register("fetch_customer_orders", fetch_customer_orders)
    provider.register("search_products", search_products)
    provider.register("create_complaint_ticket", create_complaint_ticket)
    provider.register("explode", explode)
    return provider


@pytest.fixture
def facts_provider():
    return StaticFactsProvider()


@pytest.fixture
def escalation_sink():
    return AsyncMock()


@pytest.fixture
def flow_store():
    return InMemoryFlowStore()


@pytest.fixture
def registry(action_provider):
    return ScenarioRegistry(action_provider.capabilities)


@pytest.fixture
def orchestrator(registry, flow_store, action_provider, facts_provider, escalation_sink):
    return FlowOrchestrator(
        registry=registry,
        flow_store=flow_store,
        executor=StepExecutor(action_provider, max_steps=20, clock=lambda: FIXED_NOW),
        classifier=KeywordClassificationProvider(),
        facts_provider=facts_provider,
        escalation_sink=escalation_sink,
        locks=ConversationLocks(timeout=5),
        working_hours=WorkingHours(ZoneInfo("UTC"), 9, 18),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture(scope="function")
def test_client(orchestrator, escalation_sink):
    """
    Provides a TestClient wired to the in-memory engine. The app's lifespan is
    not entered, so no MongoDB or Redis connection is made.
    """
    app.state.orchestrator = orchestrator
    app.state.escalation_rules = EscalationRuleService(escalation_sink)
    client = TestClient(app)
    yield client
    del app.state.orchestrator
    del app.state.escalation_rules
