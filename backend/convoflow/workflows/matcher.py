# /convoflow/workflows/matcher.py

"""
Trigger matching: select at most one scenario to start for an inbound message.

Matching is a pure function of the message, the candidate scenarios and the
MatchFacts gathered by the caller. Scenarios are tried in priority order
(urgent first), ties keep registration order, and the first scenario whose
present predicates all hold wins.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional
from zoneinfo import ZoneInfo

from convoflow.models.scenario import Scenario
from convoflow.workflows.predicates import (
    exact_match,
    is_within_working_hours,
    keyword_match,
    order_by_priority,
)


@dataclass(frozen=True)
class MatchRequest:
    message_text: str
    customer_id: str
    company_id: str
    intent: Optional[str] = None
    sentiment: Optional[str] = None


@dataclass(frozen=True)
class WorkingHours:
    tz: ZoneInfo
    start_hour: int
    end_hour: int


@dataclass(frozen=True)
class MatchFacts:
    """Customer and clock facts the condition predicates need."""
    now: datetime
    has_order_history: bool = False
    usage_today: Dict[str, int] = field(default_factory=dict)


def scenario_matches(
    scenario: Scenario, request: MatchRequest, facts: MatchFacts, working_hours: WorkingHours
) -> bool:
    triggers = scenario.triggers
    conditions = scenario.conditions

    if not keyword_match(triggers.keywords, [request.message_text]):
        return False
    if not exact_match(triggers.intent, request.intent):
        return False
    if not exact_match(triggers.sentiment, request.sentiment):
        return False

    if conditions.working_hours_only and not is_within_working_hours(
        facts.now, working_hours.tz, working_hours.start_hour, working_hours.end_hour
    ):
        return False
    if conditions.requires_customer_history and not facts.has_order_history:
        return False
    if conditions.max_daily_uses_per_customer is not None:
        if facts.usage_today.get(scenario.id, 0) >= conditions.max_daily_uses_per_customer:
            return False

    return True


def find_matching_scenario(
    scenarios: Iterable[Scenario],
    request: MatchRequest,
    facts: MatchFacts,
    working_hours: WorkingHours,
) -> Optional[Scenario]:
    """
    Returns the first matching scenario, or None (NoMatch).

    `scenarios` must be in registration order; inactive scenarios and those of
    other companies are skipped.
    """
    candidates = [s for s in scenarios if s.is_active and s.company_id == request.company_id]
    for scenario in order_by_priority(candidates):
        if scenario_matches(scenario, request, facts, working_hours):
            return scenario
    return None
