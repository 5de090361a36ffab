# /convoflow/utils/dependencies.py

import secrets
import structlog
from fastapi import Request, HTTPException, status

from convoflow.config.settings import settings
from convoflow.services.escalation_service import EscalationRuleService
from convoflow.services.flow_orchestrator import FlowOrchestrator

log = structlog.get_logger(__name__)


def get_orchestrator(request: Request) -> FlowOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        log.error("Automation engine requested before startup completed.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Automation engine is not ready")
    return orchestrator


def get_escalation_rules(request: Request) -> EscalationRuleService:
    service = getattr(request.app.state, "escalation_rules", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Automation engine is not ready")
    return service


async def verify_metrics_access(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
