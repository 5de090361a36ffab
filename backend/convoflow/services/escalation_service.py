# /convoflow/services/escalation_service.py

import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from convoflow.models.escalation import ConversationSnapshot, EscalationRule
from convoflow.models.scenario import Priority
from convoflow.services.providers import EscalationSink
from convoflow.utils.metrics import escalations_counter
from convoflow.workflows.errors import FlowEngineError
from convoflow.workflows.escalation_matcher import match_escalation_rule

logger = logging.getLogger(__name__)


class EscalationRuleError(FlowEngineError):
    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        super().__init__(f"Invalid escalation rule '{rule_id}': {reason}")


class EscalationRuleService:
    """
    Keeps the escalation rules in an in-memory cache and hands conversations
    that match one of them to the escalation sink.
    """

    def __init__(self, sink: EscalationSink, collection=None):
        self.sink = sink
        self.collection = collection
        self._rules: Dict[str, EscalationRule] = {}
        logger.info("EscalationRuleService initialized.")

    def register_rule(self, rule: EscalationRule) -> str:
        if rule.id in self._rules:
            raise EscalationRuleError(rule.id, "rule id is already registered")
        if not rule.actions.escalate_to.strip():
            raise EscalationRuleError(rule.id, "actions.escalate_to must not be empty")
        if rule.conditions.keywords is not None and not [k for k in rule.conditions.keywords if k.strip()]:
            raise EscalationRuleError(rule.id, "conditions.keywords must contain at least one keyword")
        self._rules[rule.id] = rule
        logger.info(f"Registered escalation rule {rule.id} ('{rule.name}') for company {rule.company_id}.")
        return rule.id

    def get_rules(
        self,
        company_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        priority: Optional[Priority] = None,
    ) -> List[EscalationRule]:
        """Registered rules in registration order, narrowed by the filters that are given."""
        rules = list(self._rules.values())
        if company_id:
            rules = [r for r in rules if r.company_id == company_id]
        if is_active is not None:
            rules = [r for r in rules if r.is_active == is_active]
        if priority:
            rules = [r for r in rules if r.priority == priority]
        return rules

    async def persist(self, rule: EscalationRule) -> None:
        if self.collection is None:
            return
        doc = rule.model_dump(mode="json")
        doc["_id"] = doc.pop("id")
        await self.collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def load_rules(self) -> None:
        """Loads all rules from the database into the in-memory cache."""
        if self.collection is None:
            return
        logger.info("Loading escalation rules from database into cache...")
        try:
            docs = await self.collection.find({}).sort("created_at", 1).to_list(length=None)
        except Exception as e:
            logger.error(f"Failed to load escalation rules from database: {e}", exc_info=True)
            return
        for doc in docs:
            doc = dict(doc)
            doc["id"] = str(doc.pop("_id"))
            if doc["id"] in self._rules:
                continue
            try:
                self.register_rule(EscalationRule.model_validate(doc))
            except (EscalationRuleError, ValidationError) as e:
                logger.error(f"Skipping stored escalation rule {doc['id']}: {e}")
        logger.info(f"Successfully loaded {len(self._rules)} escalation rules into cache.")

    async def check(self, snapshot: ConversationSnapshot) -> Optional[EscalationRule]:
        """
        Evaluate the rules against a conversation and hand it off on a match.
        Returns the matching rule, or None.
        """
        rule = match_escalation_rule(self._rules.values(), snapshot)
        if rule is None:
            return None

        tags = f" tags={','.join(rule.actions.add_tags)}" if rule.actions.add_tags else ""
        await self.sink.handoff(
            snapshot.conversation_id,
            rule.actions.escalate_to,
            rule.actions.priority.value,
            f"Escalation rule '{rule.name}' matched{tags}",
        )
        escalations_counter.labels(source="rule").inc()
        logger.info(f"Conversation {snapshot.conversation_id} escalated by rule {rule.id}.")
        return rule
