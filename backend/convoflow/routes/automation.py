# /convoflow/routes/automation.py

import structlog
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status

from convoflow.config.settings import settings
from convoflow.models.api import APIResponse, CancelFlowRequest, InboundMessage
from convoflow.models.escalation import ConversationSnapshot, EscalationRule
from convoflow.models.scenario import Priority, Scenario
from convoflow.services.escalation_service import EscalationRuleError, EscalationRuleService
from convoflow.services.flow_orchestrator import FlowOrchestrator
from convoflow.utils.dependencies import get_escalation_rules, get_orchestrator
from convoflow.utils.locks import ConversationLockTimeout
from convoflow.utils.rate_limiter import limiter
from convoflow.workflows.errors import FlowNotFound, ScenarioDefinitionError, ScenarioNotFound

# Endpoints of the automation engine: the inbound message entry point used by
# the messaging channels, and the administrative scenario/flow/escalation API.

log = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/automation",
    tags=["Automation"],
)


@router.post("/messages", response_model=APIResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_message(
    request: Request,
    message: InboundMessage,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
):
    """Run an inbound customer message through the automation engine."""
    try:
        result = await orchestrator.handle_inbound_message(message)
    except ConversationLockTimeout:
        log.warning("Conversation busy", conversation_id=message.conversation_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Conversation is busy, retry shortly")

    log.info(
        "Inbound message handled",
        conversation_id=message.conversation_id,
        scenario_id=result.scenario_id,
        flow_status=result.flow_status,
        outbound_count=len(result.outbound_messages),
        escalated=result.escalated,
    )
    return APIResponse(
        success=True,
        message="Message handled" if result.flow_id else "No automation matched",
        data=result.model_dump(mode="json"),
        version=settings.api_version
    )


# ==================== Scenarios ====================

@router.post("/scenarios", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def register_scenario(scenario: Scenario, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """Validate and register a scenario definition."""
    try:
        scenario_id = await orchestrator.register_scenario(scenario)
    except ScenarioDefinitionError as e:
        log.warning("Scenario rejected", scenario_id=e.scenario_id, problems=e.problems)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"scenario_id": e.scenario_id, "problems": e.problems},
        )
    return APIResponse(
        success=True,
        message=f"Scenario {scenario_id} registered",
        data={"scenario_id": scenario_id},
        version=settings.api_version
    )


@router.get("/scenarios", response_model=APIResponse)
async def list_scenarios(company_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """Active scenarios of a company in registration order."""
    scenarios = orchestrator.registry.list_active(company_id)
    return APIResponse(
        success=True,
        message=f"Retrieved {len(scenarios)} scenarios",
        data={"scenarios": [s.model_dump(mode="json") for s in scenarios]},
        version=settings.api_version
    )


@router.get("/scenarios/{scenario_id}", response_model=APIResponse)
async def get_scenario(scenario_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    try:
        scenario = orchestrator.registry.get(scenario_id)
    except ScenarioNotFound:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return APIResponse(
        success=True,
        message="Scenario retrieved successfully.",
        data={"scenario": scenario.model_dump(mode="json")},
        version=settings.api_version
    )


# ==================== Flows ====================

@router.get("/flows/{conversation_id}", response_model=APIResponse)
async def get_active_flow(conversation_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """The conversation's active flow, if it has one."""
    flow = await orchestrator.get_active_flow(conversation_id)
    if not flow:
        raise HTTPException(status_code=404, detail="No active flow for this conversation")
    return APIResponse(
        success=True,
        message="Active flow retrieved successfully.",
        data={"flow": flow.model_dump(mode="json")},
        version=settings.api_version
    )


@router.post("/flows/{conversation_id}/cancel", response_model=APIResponse)
async def cancel_flow(
    conversation_id: str,
    body: Optional[CancelFlowRequest] = None,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
):
    """Abandon the active flow, e.g. when an agent takes over the conversation."""
    reason = body.reason if body else CancelFlowRequest().reason
    try:
        flow = await orchestrator.cancel_flow(conversation_id, reason)
    except FlowNotFound:
        raise HTTPException(status_code=404, detail="No active flow for this conversation")
    except ConversationLockTimeout:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Conversation is busy, retry shortly")

    log.info("Flow cancelled", conversation_id=conversation_id, flow_id=flow.id, reason=reason)
    return APIResponse(
        success=True,
        message="Flow cancelled",
        data={"flow": flow.model_dump(mode="json")},
        version=settings.api_version
    )


# ==================== Escalation rules ====================

@router.get("/escalation-rules", response_model=APIResponse)
async def list_escalation_rules(
    company_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    priority: Optional[Priority] = None,
    service: EscalationRuleService = Depends(get_escalation_rules),
):
    rules = service.get_rules(company_id=company_id, is_active=is_active, priority=priority)
    return APIResponse(
        success=True,
        message=f"Retrieved {len(rules)} escalation rules",
        data={"rules": [r.model_dump(mode="json") for r in rules]},
        version=settings.api_version
    )


@router.post("/escalation-rules", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def register_escalation_rule(
    rule: EscalationRule,
    service: EscalationRuleService = Depends(get_escalation_rules),
):
    try:
        rule_id = service.register_rule(rule)
    except EscalationRuleError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    await service.persist(rule)
    return APIResponse(
        success=True,
        message=f"Escalation rule {rule_id} registered",
        data={"rule_id": rule_id},
        version=settings.api_version
    )


@router.post("/escalations/check", response_model=APIResponse)
async def check_escalation(
    snapshot: ConversationSnapshot,
    service: EscalationRuleService = Depends(get_escalation_rules),
):
    """Evaluate the escalation rules against a conversation and hand it off on a match."""
    rule = await service.check(snapshot)
    if rule:
        log.info("Escalation rule matched", conversation_id=snapshot.conversation_id, rule_id=rule.id)
    return APIResponse(
        success=True,
        message="Conversation escalated" if rule else "No escalation rule matched",
        data={"escalated": rule is not None, "rule_id": rule.id if rule else None},
        version=settings.api_version
    )
