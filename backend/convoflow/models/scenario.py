# /convoflow/models/scenario.py

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

# This file defines the authored, immutable automation definitions: scenarios,
# their trigger/condition predicates and the tagged union of step nodes.


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class StepType(str, Enum):
    MESSAGE = "message"
    QUESTION = "question"
    ACTION = "action"
    CONDITION = "condition"
    ESCALATE = "escalate"
    ROUTE = "route"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ScenarioTriggers(_FrozenModel):
    """A field left as None means "don't constrain on this dimension"."""
    keywords: Optional[List[str]] = None
    intent: Optional[str] = None
    sentiment: Optional[str] = None


class ScenarioConditions(_FrozenModel):
    working_hours_only: bool = False
    requires_customer_history: bool = False
    max_daily_uses_per_customer: Optional[int] = Field(default=None, ge=1)


class ScenarioFallback(_FrozenModel):
    escalate_to_human: bool = False
    message: str = ""


# ---------------- Steps ---------------- #

class MessageStep(_FrozenModel):
    type: Literal["message"] = "message"
    id: str
    content: str
    delay_ms: int = 0
    options: Optional[List[str]] = None
    next_step: Optional[str] = None


class QuestionStep(_FrozenModel):
    type: Literal["question"] = "question"
    id: str
    content: str
    bind_to: str
    options: Optional[List[str]] = None
    next_step: Optional[str] = None


class ActionStep(_FrozenModel):
    type: Literal["action"] = "action"
    id: str
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    next_step: Optional[str] = None


class ConditionStep(_FrozenModel):
    type: Literal["condition"] = "condition"
    id: str
    predicate: str
    true_step: str
    false_step: str


class EscalateStep(_FrozenModel):
    type: Literal["escalate"] = "escalate"
    id: str
    department: str
    priority: Priority = Priority.MEDIUM
    message: str


class RouteStep(_FrozenModel):
    type: Literal["route"] = "route"
    id: str
    content: str = ""
    options: Dict[str, str]


Step = Annotated[
    Union[MessageStep, QuestionStep, ActionStep, ConditionStep, EscalateStep, RouteStep],
    Field(discriminator="type"),
]

# Step types that advance to an explicit next_step instead of branching or stopping
SEQUENTIAL_STEP_TYPES = (MessageStep, QuestionStep, ActionStep)


class Scenario(_FrozenModel):
    """
    An authored automation definition. Never mutated by execution; the
    registry normalizes it once at registration time.
    """
    id: str
    name: str
    description: Optional[str] = None
    company_id: str
    is_active: bool = True
    priority: Priority = Priority.MEDIUM
    triggers: ScenarioTriggers = Field(default_factory=ScenarioTriggers)
    conditions: ScenarioConditions = Field(default_factory=ScenarioConditions)
    steps: List[Step]
    fallback: ScenarioFallback = Field(default_factory=ScenarioFallback)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def entry_step_id(self) -> str:
        return self.steps[0].id

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
