# /convoflow/workflows/escalation_matcher.py

"""
Escalation-rule matching: decide whether a conversation should be handed to a
human. Uses the same predicate helpers and priority ordering as the scenario
trigger matcher; it never starts or drives a flow.
"""

from typing import Iterable, Optional

from convoflow.models.escalation import ConversationSnapshot, EscalationRule
from convoflow.workflows.predicates import at_least, exact_match, keyword_match, order_by_priority


def rule_matches(rule: EscalationRule, snapshot: ConversationSnapshot) -> bool:
    conditions = rule.conditions
    return (
        keyword_match(conditions.keywords, snapshot.messages)
        and exact_match(conditions.sentiment, snapshot.sentiment)
        and exact_match(conditions.customer_type, snapshot.customer_type)
        and at_least(conditions.min_response_minutes, snapshot.minutes_since_agent_response)
        and at_least(conditions.min_message_count, len(snapshot.messages))
    )


def match_escalation_rule(
    rules: Iterable[EscalationRule], snapshot: ConversationSnapshot
) -> Optional[EscalationRule]:
    candidates = [r for r in rules if r.is_active and r.company_id == snapshot.company_id]
    for rule in order_by_priority(candidates):
        if rule_matches(rule, snapshot):
            return rule
    return None
