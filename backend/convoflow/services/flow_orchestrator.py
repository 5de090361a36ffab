# /convoflow/services/flow_orchestrator.py

import time
import logging

import structlog
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from convoflow.config import strings
from convoflow.models.api import InboundMessage, InboundResult, OutboundMessage
from convoflow.models.flow import ConversationFlow, FlowStatus
from convoflow.models.scenario import Scenario
from convoflow.services.flow_store import FlowStore
from convoflow.services.providers import ClassificationProvider, CustomerFactsProvider, EscalationSink
from convoflow.services.scenario_registry import ScenarioRegistry
from convoflow.utils.locks import ConversationLocks
from convoflow.utils.metrics import (
    escalations_counter,
    flow_transitions_counter,
    flows_started_counter,
    inbound_handling_histogram,
    trigger_evaluations_counter,
)
from convoflow.workflows.engine import EscalationRequest, StepExecutor, StepRunResult, render_template
from convoflow.workflows.errors import (
    ActionError,
    ActiveFlowConflict,
    FlowCycleError,
    FlowNotFound,
    ScenarioDefinitionError,
    ScenarioNotFound,
)
from convoflow.workflows.matcher import MatchFacts, MatchRequest, WorkingHours, find_matching_scenario

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowOrchestrator:
    """
    Entry point of the automation engine. Every inbound message either resumes
    the conversation's active flow or goes through the Trigger Matcher to start
    a new one. The orchestrator is the only writer of the Flow Store and runs
    each conversation's messages one at a time under its lock.
    """

    def __init__(
        self,
        registry: ScenarioRegistry,
        flow_store: FlowStore,
        executor: StepExecutor,
        classifier: ClassificationProvider,
        facts_provider: CustomerFactsProvider,
        escalation_sink: EscalationSink,
        locks: ConversationLocks,
        working_hours: WorkingHours,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.flow_store = flow_store
        self.executor = executor
        self.classifier = classifier
        self.facts_provider = facts_provider
        self.escalation_sink = escalation_sink
        self.locks = locks
        self.working_hours = working_hours
        self._clock = clock

    # ==================== Public operations ====================

    async def handle_inbound_message(self, message: InboundMessage) -> InboundResult:
        start_time = time.perf_counter()
        with structlog.contextvars.bound_contextvars(
            conversation_id=message.conversation_id, company_id=message.company_id
        ):
            async with self.locks.hold(message.conversation_id):
                result = await self._handle_locked(message)
        inbound_handling_histogram.observe(time.perf_counter() - start_time)
        return result

    async def get_active_flow(self, conversation_id: str) -> Optional[ConversationFlow]:
        return await self.flow_store.get_active(conversation_id)

    async def register_scenario(self, scenario: Scenario) -> str:
        scenario_id = self.registry.register(scenario)
        await self.registry.persist(self.registry.get(scenario_id))
        return scenario_id

    async def cancel_flow(self, conversation_id: str, reason: str = "agent_takeover") -> ConversationFlow:
        """
        Abandon the conversation's active flow, e.g. when an agent takes over.

        Raises:
            FlowNotFound: the conversation has no active flow
        """
        async with self.locks.hold(conversation_id):
            flow = await self.flow_store.get_active(conversation_id)
            if flow is None:
                raise FlowNotFound(conversation_id)
            self._abandon(flow, reason, self._clock())
            await self._save(flow)
        logger.info(f"Cancelled flow {flow.id} of conversation {conversation_id}: {reason}")
        return flow

    async def expire_flow(self, conversation_id: str, cutoff: datetime, now: Optional[datetime] = None) -> Optional[ConversationFlow]:
        """
        Abandon the conversation's active flow if it has been idle since before
        cutoff. Hands off when the flow's scenario falls back to a human.
        Returns the expired flow, or None when there was nothing to expire.
        """
        now = now or self._clock()
        async with self.locks.hold(conversation_id):
            flow = await self.flow_store.get_active(conversation_id)
            # The customer may have replied since the sweep listed this flow
            if flow is None or flow.last_activity_at >= cutoff:
                return None
            self._abandon(flow, "stale", now)
            await self._save(flow)

        scenario = self.registry.find(flow.scenario_id)
        if scenario is not None and scenario.fallback.escalate_to_human:
            reason = strings.STALE_FLOW_HANDOFF_REASON.format(scenario_name=scenario.name)
            await self._hand_off(
                flow.conversation_id,
                EscalationRequest(strings.DEFAULT_ESCALATION_DEPARTMENT, scenario.priority, reason),
                source="stale",
            )
        logger.info(f"Expired stale flow {flow.id} of conversation {conversation_id}.")
        return flow

    # ==================== Inbound handling ====================

    async def _handle_locked(self, message: InboundMessage) -> InboundResult:
        now = self._clock()
        flow = await self.flow_store.get_active(message.conversation_id)

        if flow is not None:
            scenario = self.registry.find(flow.scenario_id)
            if scenario is not None:
                logger.debug(f"Resuming flow {flow.id} at step {flow.current_step_id}")
                return await self._run(flow, scenario, flow.current_step_id, message.text, now)

            logger.warning(
                f"Scenario {flow.scenario_id} of flow {flow.id} is no longer registered; starting fresh."
            )
            self._abandon(flow, "scenario_removed", now)
            await self._save(flow)

        return await self._start(message, now)

    async def _start(self, message: InboundMessage, now: datetime) -> InboundResult:
        intent, sentiment = message.intent, message.sentiment
        if intent is None or sentiment is None:
            classification = await self.classifier.classify(message.text)
            intent = intent if intent is not None else classification.get("intent")
            sentiment = sentiment if sentiment is not None else classification.get("sentiment")

        candidates = self.registry.list_active(message.company_id)
        facts = await self._gather_facts(candidates, message.customer_id, now)
        request = MatchRequest(
            message_text=message.text,
            customer_id=message.customer_id,
            company_id=message.company_id,
            intent=intent,
            sentiment=sentiment,
        )
        scenario = find_matching_scenario(candidates, request, facts, self.working_hours)
        if scenario is None:
            trigger_evaluations_counter.labels(result="no_match").inc()
            logger.debug(f"No scenario matched message in conversation {message.conversation_id}")
            return InboundResult()

        trigger_evaluations_counter.labels(result="matched").inc()
        logger.info(f"Scenario {scenario.id} matched for conversation {message.conversation_id}")
        flow = self._new_flow(scenario, message.conversation_id, message.customer_id, now)
        return await self._run(flow, scenario, scenario.entry_step_id, None, now)

    async def _gather_facts(self, candidates: List[Scenario], customer_id: str, now: datetime) -> MatchFacts:
        has_history = False
        if any(s.conditions.requires_customer_history for s in candidates):
            has_history = await self.facts_provider.has_order_history(customer_id)

        usage: Dict[str, int] = {}
        for scenario in candidates:
            if scenario.conditions.max_daily_uses_per_customer is not None:
                usage[scenario.id] = await self.facts_provider.usage_count_today(scenario.id, customer_id)

        return MatchFacts(now=now, has_order_history=has_history, usage_today=usage)

    def _new_flow(self, scenario: Scenario, conversation_id: str, customer_id: str, now: datetime) -> ConversationFlow:
        flows_started_counter.labels(scenario_id=scenario.id).inc()
        return ConversationFlow(
            conversation_id=conversation_id,
            scenario_id=scenario.id,
            customer_id=customer_id,
            company_id=scenario.company_id,
            current_step_id=scenario.entry_step_id,
            context={
                "conversation_id": conversation_id,
                "customer_id": customer_id,
                "company_id": scenario.company_id,
            },
            started_at=now,
            last_activity_at=now,
        )

    async def _run(
        self,
        flow: ConversationFlow,
        scenario: Scenario,
        start_step_id: str,
        user_input: Optional[str],
        now: datetime,
    ) -> InboundResult:
        try:
            run = await self.executor.run(flow, scenario, start_step_id, user_input, now)
        except ActionError as e:
            return await self._fail(flow, scenario, e, e.partial_outbound or [], now)
        except (FlowCycleError, ScenarioDefinitionError) as e:
            return await self._fail(flow, scenario, e, [], now)

        try:
            await self._save(run.flow)
        except ActiveFlowConflict:
            logger.warning(
                f"Conversation {flow.conversation_id} got an active flow from another worker; dropping {run.flow.id}"
            )
            return InboundResult()

        if run.escalation is not None:
            if not await self._hand_off(run.flow.conversation_id, run.escalation, source="flow"):
                return await self._hand_off_failed(run, now)

        result = InboundResult(
            outbound_messages=list(run.outbound),
            escalated=run.escalation is not None,
            flow_id=run.flow.id,
            scenario_id=run.flow.scenario_id,
            flow_status=run.flow.status,
        )

        if run.route_to is not None:
            routed = await self._start_routed(run.route_to, run.flow, now)
            routed.outbound_messages = result.outbound_messages + routed.outbound_messages
            return routed

        return result

    async def _start_routed(self, scenario_id: str, previous: ConversationFlow, now: datetime) -> InboundResult:
        """Start a fresh flow of scenario_id after a route step left `previous`."""
        try:
            scenario = self.registry.get(scenario_id)
        except ScenarioNotFound:
            logger.error(f"Route target scenario {scenario_id} of flow {previous.id} is not registered")
            return InboundResult(
                outbound_messages=[OutboundMessage(content=strings.GENERIC_FALLBACK)],
                flow_id=previous.id,
                scenario_id=previous.scenario_id,
                flow_status=previous.status,
            )

        logger.info(f"Flow {previous.id} routed conversation {previous.conversation_id} to scenario {scenario.id}")
        flow = self._new_flow(scenario, previous.conversation_id, previous.customer_id, now)
        return await self._run(flow, scenario, scenario.entry_step_id, None, now)

    async def _fail(
        self,
        flow: ConversationFlow,
        scenario: Scenario,
        error: Exception,
        partial: List[OutboundMessage],
        now: datetime,
    ) -> InboundResult:
        """Turn an execution failure into the scenario's fallback response."""
        logger.error(f"Flow {flow.id} of scenario {scenario.id} failed: {error}")

        failed = flow.model_copy(deep=True)
        self._abandon(failed, f"{type(error).__name__}: {error}", now)
        await self._save(failed)

        message = scenario.fallback.message or strings.GENERIC_FALLBACK
        outbound = list(partial) + [OutboundMessage(content=render_template(message, failed.context))]

        escalated = False
        if scenario.fallback.escalate_to_human:
            reason = strings.FALLBACK_HANDOFF_REASON.format(detail=type(error).__name__)
            escalated = await self._hand_off(
                failed.conversation_id,
                EscalationRequest(strings.DEFAULT_ESCALATION_DEPARTMENT, scenario.priority, reason),
                source="fallback",
            )

        return InboundResult(
            outbound_messages=outbound,
            escalated=escalated,
            flow_id=failed.id,
            scenario_id=failed.scenario_id,
            flow_status=failed.status,
        )

    async def _hand_off_failed(self, run: StepRunResult, now: datetime) -> InboundResult:
        """No human queue took the conversation: close the flow and tell the customer."""
        flow = run.flow
        self._abandon(flow, "handoff_failed", now)
        await self._save(flow)

        # The last message announced the hand-off
        outbound = list(run.outbound[:-1]) + [OutboundMessage(content=strings.GENERIC_FALLBACK)]
        return InboundResult(
            outbound_messages=outbound,
            escalated=False,
            flow_id=flow.id,
            scenario_id=flow.scenario_id,
            flow_status=flow.status,
        )

    # ==================== Helper Methods ====================

    def _abandon(self, flow: ConversationFlow, reason: str, now: datetime) -> None:
        flow.status = FlowStatus.ABANDONED
        flow.abandon_reason = reason
        flow.completed_at = now
        flow.last_activity_at = now

    async def _save(self, flow: ConversationFlow) -> None:
        await self.flow_store.save(flow)
        if flow.status != FlowStatus.ACTIVE:
            flow_transitions_counter.labels(status=flow.status.value).inc()

    async def _hand_off(self, conversation_id: str, escalation: EscalationRequest, source: str) -> bool:
        """Returns False when the sink did not take the conversation."""
        priority = getattr(escalation.priority, "value", escalation.priority)
        try:
            await self.escalation_sink.handoff(conversation_id, escalation.department, priority, escalation.reason)
        except Exception as e:
            logger.error(f"Hand-off of conversation {conversation_id} failed: {e}", exc_info=True)
            return False
        escalations_counter.labels(source=source).inc()
        return True
