# /convoflow/models/flow.py

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ESCALATED = "escalated"
    ABANDONED = "abandoned"


class FlowHistoryEntry(BaseModel):
    step_id: str
    timestamp: datetime
    user_input: Optional[str] = None
    completed: bool = True


class ConversationFlow(BaseModel):
    """
    The live execution record of a scenario for one conversation.

    At most one flow per conversation_id may be ACTIVE at a time; the
    orchestrator is the only writer.
    """
    id: str = Field(default_factory=lambda: f"FLOW{uuid.uuid4().hex[:12].upper()}")
    conversation_id: str
    scenario_id: str
    customer_id: str
    company_id: str
    current_step_id: str
    context: Dict[str, Any] = Field(default_factory=dict, description="Question answers and action outputs")
    history: List[FlowHistoryEntry] = Field(default_factory=list)
    status: FlowStatus = FlowStatus.ACTIVE
    started_at: datetime = Field(default_factory=_utcnow)
    last_activity_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    abandon_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == FlowStatus.ACTIVE

