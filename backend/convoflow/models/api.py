# /convoflow/models/api.py

from pydantic import BaseModel, Field
from typing import List, Dict, Optional
from datetime import datetime, timezone

from convoflow.models.flow import FlowStatus

# This file contains Pydantic models that define the structure of data for
# API requests and responses, and the engine's inbound/outbound contract.


class InboundMessage(BaseModel):
    conversation_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    company_id: str = Field(..., min_length=1)
    text: str = ""
    # Optional pre-computed classification; classified on demand when absent
    intent: Optional[str] = None
    sentiment: Optional[str] = None


class OutboundMessage(BaseModel):
    content: str
    options: Optional[List[str]] = None
    delay_ms: int = 0


class InboundResult(BaseModel):
    outbound_messages: List[OutboundMessage] = Field(default_factory=list)
    escalated: bool = False
    flow_id: Optional[str] = None
    scenario_id: Optional[str] = None
    flow_status: Optional[FlowStatus] = None


class CancelFlowRequest(BaseModel):
    reason: str = "agent_takeover"


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str
