# /convoflow/models/escalation.py

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from convoflow.models.scenario import Priority

# Models for the escalation-rule matcher, which decides whether a conversation
# should be handed to a human regardless of any automated flow.


class EscalationConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    keywords: Optional[List[str]] = None
    sentiment: Optional[str] = None
    min_response_minutes: Optional[int] = Field(default=None, ge=0, description="Minutes since the last agent response")
    customer_type: Optional[str] = None
    min_message_count: Optional[int] = Field(default=None, ge=1)


class EscalationActions(BaseModel):
    model_config = ConfigDict(frozen=True)

    escalate_to: str = "supervisor"
    priority: Priority = Priority.MEDIUM
    add_tags: List[str] = Field(default_factory=list)


class EscalationRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    company_id: str
    is_active: bool = True
    conditions: EscalationConditions = Field(default_factory=EscalationConditions)
    actions: EscalationActions = Field(default_factory=EscalationActions)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationSnapshot(BaseModel):
    """The facts about a conversation that escalation rules are evaluated against."""
    conversation_id: str
    customer_id: str
    company_id: str
    messages: List[str] = Field(default_factory=list)
    sentiment: Optional[str] = None
    customer_type: Optional[str] = None
    minutes_since_agent_response: Optional[float] = None
