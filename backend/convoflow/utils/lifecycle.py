# /convoflow/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from fastapi import FastAPI
from pydantic import ValidationError

from convoflow.config.scenarios import DEFAULT_SCENARIOS
from convoflow.config.settings import settings
from convoflow.models.scenario import Scenario
from convoflow.services.cache_service import cache_service
from convoflow.services.commerce_actions import build_commerce_action_provider
from convoflow.services.db_service import ESCALATION_RULES_COLLECTION, SCENARIOS_COLLECTION, db_service
from convoflow.services.escalation_service import EscalationRuleService
from convoflow.services.flow_orchestrator import FlowOrchestrator
from convoflow.services.flow_store import MongoFlowStore
from convoflow.services.providers import (
    DatabaseCustomerFactsProvider,
    KeywordClassificationProvider,
    LoggingEscalationSink,
)
from convoflow.services.scenario_registry import ScenarioRegistry
from convoflow.utils.alerting import WebhookEscalationSink
from convoflow.utils.locks import ConversationLocks
from convoflow.utils.logging import setup_logging
from convoflow.workflows.engine import StepExecutor
from convoflow.workflows.errors import ScenarioDefinitionError
from convoflow.workflows.matcher import WorkingHours

# This file manages the application's lifespan: it wires the automation engine
# together on startup and closes connections on shutdown.

logger = logging.getLogger(__name__)


@dataclass
class AutomationComponents:
    orchestrator: FlowOrchestrator
    escalation_rules: EscalationRuleService
    webhook_sink: WebhookEscalationSink | None = None


def build_automation(db, redis_client=None) -> AutomationComponents:
    """Wire the engine against MongoDB (and Redis for locks, when available)."""
    flow_store = MongoFlowStore(db)
    actions = build_commerce_action_provider(db)

    webhook_sink = None
    if settings.escalation_webhook_url:
        webhook_sink = WebhookEscalationSink(settings.escalation_webhook_url)
    sink = webhook_sink or LoggingEscalationSink(db)

    orchestrator = FlowOrchestrator(
        registry=ScenarioRegistry(actions.capabilities, collection=db[SCENARIOS_COLLECTION]),
        flow_store=flow_store,
        executor=StepExecutor(actions, max_steps=settings.max_steps_per_message),
        classifier=KeywordClassificationProvider(),
        facts_provider=DatabaseCustomerFactsProvider(db, flow_store, settings.tz),
        escalation_sink=sink,
        locks=ConversationLocks(redis_client, timeout=settings.conversation_lock_timeout_seconds),
        working_hours=WorkingHours(settings.tz, settings.working_hours_start, settings.working_hours_end),
    )
    escalation_rules = EscalationRuleService(sink, collection=db[ESCALATION_RULES_COLLECTION])
    return AutomationComponents(orchestrator, escalation_rules, webhook_sink)


def seed_default_scenarios(registry: ScenarioRegistry, company_id: str) -> int:
    """Register the bundled scenarios that are not already registered."""
    seeded = 0
    for definition in DEFAULT_SCENARIOS:
        if registry.find(definition["id"]) is not None:
            continue
        try:
            registry.register(Scenario.model_validate({**definition, "company_id": company_id}))
            seeded += 1
        except (ScenarioDefinitionError, ValidationError) as e:
            logger.error(f"Default scenario {definition['id']} was not registered: {e}")
    logger.info(f"Seeded {seeded} default scenarios for company {company_id}.")
    return seeded


async def start_automation(components: AutomationComponents) -> None:
    orchestrator = components.orchestrator
    await orchestrator.flow_store.create_indexes()
    # Stored scenarios may route to the bundled ones, so those are registered first
    if settings.seed_default_scenarios:
        seed_default_scenarios(orchestrator.registry, settings.default_company_id)
    await orchestrator.registry.load_from_db()
    await components.escalation_rules.load_rules()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")

    await db_service.create_indexes()
    components = build_automation(db_service.db, cache_service.redis)
    await start_automation(components)

    app.state.orchestrator = components.orchestrator
    app.state.escalation_rules = components.escalation_rules

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    if components.webhook_sink:
        await components.webhook_sink.cleanup()
    await cache_service.close()
    db_service.close()
