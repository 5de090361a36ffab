# backend/tests/unit/test_scenario_registry.py
from unittest.mock import AsyncMock, MagicMock

import pytest

from convoflow.config.scenarios import DEFAULT_SCENARIOS
from convoflow.models.scenario import Scenario
from convoflow.services.scenario_registry import ScenarioRegistry
from convoflow.utils.lifecycle import AutomationComponents, seed_default_scenarios, start_automation
from convoflow.workflows.errors import ScenarioDefinitionError, ScenarioNotFound
from convoflow.workflows.validator import validate_scenario

LINEAR_STEPS = [
    {"id": "s1", "type": "message", "content": "Hi"},
    {"id": "s2", "type": "question", "content": "Name?", "bind_to": "name"},
    {"id": "s3", "type": "message", "content": "Thanks {{name}}"},
]


def _problem_codes(scenario, **kwargs):
    return [r["error_code"] for r in validate_scenario(scenario, **kwargs)]


def test_register_normalizes_sequential_order(registry, make_scenario):
    registry.register(make_scenario("S1", LINEAR_STEPS))

    scenario = registry.get("S1")
    assert [s.next_step for s in scenario.steps] == ["s2", "s3", None]


def test_explicit_null_next_step_ends_the_flow(registry, make_scenario):
    steps = [
        {"id": "s1", "type": "message", "content": "Done here", "next_step": None},
        {"id": "s2", "type": "message", "content": "Only reached by branch"},
    ]
    registry.register(make_scenario("S1", steps))

    assert registry.get("S1").steps[0].next_step is None


def test_register_rejects_duplicate_scenario_id(registry, make_scenario):
    registry.register(make_scenario("S1", LINEAR_STEPS))
    with pytest.raises(ScenarioDefinitionError):
        registry.register(make_scenario("S1", LINEAR_STEPS))


def test_register_rejects_empty_steps(registry, make_scenario):
    with pytest.raises(ScenarioDefinitionError) as exc_info:
        registry.register(make_scenario("S1", []))
    assert exc_info.value.scenario_id == "S1"


def test_register_rejects_unknown_action(registry, make_scenario):
    steps = [{"id": "s1", "type": "action", "action": "launch_rocket"}]
    with pytest.raises(ScenarioDefinitionError) as exc_info:
        registry.register(make_scenario("S1", steps))
    assert "launch_rocket" in str(exc_info.value)


def test_validator_reports_every_structural_problem(make_scenario):
    scenario = make_scenario("S1", [
        {"id": "s1", "type": "message", "content": "Hi", "next_step": "nowhere"},
        {"id": "s1", "type": "condition", "predicate": "has_orders", "true_step": "s1", "false_step": "missing"},
        {"id": "s3", "type": "route", "options": {"Go": "SCENARIO_UNKNOWN", "Agent": "escalate_sales"}},
    ])

    codes = _problem_codes(scenario, known_actions=[])

    assert codes.count("UNKNOWN_STEP") == 2
    assert "DUPLICATE_STEP" in codes
    assert "UNKNOWN_ROUTE_TARGET" in codes


def test_route_target_must_be_registered_before(registry, make_scenario):
    router = make_scenario("ROUTER", [{"id": "r", "type": "route", "options": {"Orders": "ORDERS"}}])
    with pytest.raises(ScenarioDefinitionError):
        registry.register(router)

    registry.register(make_scenario("ORDERS", LINEAR_STEPS))
    assert registry.register(router) == "ROUTER"


def test_get_unknown_scenario_raises(registry):
    with pytest.raises(ScenarioNotFound):
        registry.get("NOPE")
    assert registry.find("NOPE") is None


def test_list_active_filters_company_and_status(registry, make_scenario):
    registry.register(make_scenario("A", LINEAR_STEPS))
    registry.register(make_scenario("B", LINEAR_STEPS, is_active=False))
    registry.register(make_scenario("C", LINEAR_STEPS, company_id="2"))
    registry.register(make_scenario("D", LINEAR_STEPS))

    assert [s.id for s in registry.list_active("1")] == ["A", "D"]


def test_default_scenarios_are_valid(registry):
    seeded = seed_default_scenarios(registry, "1")

    assert seeded == len(DEFAULT_SCENARIOS)
    assert [s.id for s in registry.list_active("1")] == [d["id"] for d in DEFAULT_SCENARIOS]
    # Seeding again skips what is already registered
    assert seed_default_scenarios(registry, "1") == 0


def test_scenario_step_union_parses_each_type():
    scenario = Scenario.model_validate({
        "id": "S", "name": "All types", "company_id": "1",
        "steps": [
            {"id": "m", "type": "message", "content": "x"},
            {"id": "q", "type": "question", "content": "x", "bind_to": "k"},
            {"id": "a", "type": "action", "action": "fetch_customer_orders"},
            {"id": "c", "type": "condition", "predicate": "p", "true_step": "m", "false_step": "q"},
            {"id": "e", "type": "escalate", "department": "sales", "message": "x"},
            {"id": "r", "type": "route", "options": {"x": "m"}},
        ],
    })
    assert [type(s).__name__ for s in scenario.steps] == [
        "MessageStep", "QuestionStep", "ActionStep", "ConditionStep", "EscalateStep", "RouteStep",
    ]


# --- Loading stored scenarios ---

def _scenario_collection():
    """A stand-in Mongo collection that keeps replaced documents in order."""
    stored = {}
    collection = MagicMock()

    async def replace_one(filter_doc, doc, upsert=False):
        stored[filter_doc["_id"]] = doc

    def find(query):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.to_list = AsyncMock(side_effect=lambda length=None: list(stored.values()))
        return cursor

    collection.replace_one = AsyncMock(side_effect=replace_one)
    collection.find.side_effect = find
    return collection


async def test_restart_keeps_scenario_routing_to_default_scenario(action_provider, make_scenario):
    collection = _scenario_collection()
    before = ScenarioRegistry(action_provider.capabilities, collection=collection)
    seed_default_scenarios(before, "1")
    custom = make_scenario("CUSTOM", [{"id": "r1", "type": "route", "options": {"orders": "SCENARIO001"}}])
    before.register(custom)
    await before.persist(before.get("CUSTOM"))

    after = ScenarioRegistry(action_provider.capabilities, collection=collection)
    orchestrator = MagicMock(registry=after)
    orchestrator.flow_store.create_indexes = AsyncMock()
    escalation_rules = MagicMock(load_rules=AsyncMock())
    await start_automation(AutomationComponents(orchestrator, escalation_rules))

    assert after.find("CUSTOM") is not None
    assert after.find("SCENARIO001") is not None


async def test_load_retries_scenarios_routing_forward(action_provider, make_scenario):
    collection = _scenario_collection()
    writer = ScenarioRegistry(action_provider.capabilities, collection=collection)
    menu = make_scenario("MENU", [{"id": "r1", "type": "route", "options": {"Orders": "ORDERS"}}])
    broken = make_scenario("BROKEN", [{"id": "r1", "type": "route", "options": {"Go": "NOWHERE"}}])
    # Stored in this order, MENU comes before the scenario it routes to
    for scenario in (menu, broken, make_scenario("ORDERS", LINEAR_STEPS)):
        await writer.persist(scenario)

    registry = ScenarioRegistry(action_provider.capabilities, collection=collection)
    loaded = await registry.load_from_db()

    assert loaded == 2
    assert [s.id for s in registry.list_active("1")] == ["ORDERS", "MENU"]
    assert registry.find("BROKEN") is None


def test_definition_error_carries_error_codes(registry, make_scenario):
    router = make_scenario("ROUTER", [{"id": "r", "type": "route", "options": {"Orders": "ORDERS"}}])

    with pytest.raises(ScenarioDefinitionError) as exc_info:
        registry.register(router)

    assert exc_info.value.error_codes == ["UNKNOWN_ROUTE_TARGET"]
