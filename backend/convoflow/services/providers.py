# /convoflow/services/providers.py

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from convoflow.config.rules import INTENT_RULES, NEGATIVE_WORDS, POSITIVE_WORDS, WORD_RE
from convoflow.services.db_service import HANDOFFS_COLLECTION, ORDERS_COLLECTION

# Boundary interfaces the automation engine consumes from the rest of the
# platform, with the default implementations wired in at startup.

logger = logging.getLogger(__name__)


# ==================== Classification ====================

class ClassificationProvider(ABC):
    @abstractmethod
    async def classify(self, text: str) -> Dict[str, Optional[str]]:
        """Returns {"intent": ..., "sentiment": ...}; either may be None."""


class KeywordClassificationProvider(ClassificationProvider):
    """
    Rule-table classifier used when no NLP service is plugged in. Intent rules
    are tried in order; a phrase match or a token match selects the intent.
    """

    def __init__(self, intent_rules=INTENT_RULES, negative_words=NEGATIVE_WORDS, positive_words=POSITIVE_WORDS):
        self.intent_rules = intent_rules
        self.negative_words = negative_words
        self.positive_words = positive_words

    async def classify(self, text: str) -> Dict[str, Optional[str]]:
        lowered = (text or "").lower()
        tokens = set(WORD_RE.findall(lowered))

        intent = None
        for keywords, phrases, intent_name in self.intent_rules:
            if any(phrase in lowered for phrase in phrases) or tokens & keywords:
                intent = intent_name
                break

        if tokens & self.negative_words:
            sentiment = "negative"
        elif tokens & self.positive_words:
            sentiment = "positive"
        else:
            sentiment = "neutral"

        return {"intent": intent, "sentiment": sentiment}


# ==================== Customer facts ====================

def start_of_business_day(now: datetime, tz: ZoneInfo) -> datetime:
    """Midnight of `now`'s calendar day in the business timezone, as UTC."""
    aware = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
    local_midnight = aware.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight.astimezone(timezone.utc)


class CustomerFactsProvider(ABC):
    @abstractmethod
    async def has_order_history(self, customer_id: str) -> bool:
        ...

    @abstractmethod
    async def usage_count_today(self, scenario_id: str, customer_id: str) -> int:
        """Flows of scenario_id started for the customer since business-day midnight."""


class DatabaseCustomerFactsProvider(CustomerFactsProvider):
    def __init__(self, db, flow_store, tz: ZoneInfo, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.db = db
        self.flow_store = flow_store
        self.tz = tz
        self._clock = clock

    async def has_order_history(self, customer_id: str) -> bool:
        count = await self.db[ORDERS_COLLECTION].count_documents({"customer_id": customer_id}, limit=1)
        return count > 0

    async def usage_count_today(self, scenario_id: str, customer_id: str) -> int:
        since = start_of_business_day(self._clock(), self.tz)
        return await self.flow_store.count_started_since(scenario_id, customer_id, since)


# ==================== Escalation hand-off ====================

class EscalationSink(ABC):
    @abstractmethod
    async def handoff(self, conversation_id: str, department: str, priority: str, reason: str) -> None:
        ...


class LoggingEscalationSink(EscalationSink):
    """Logs every hand-off and, when a database is given, records it for the agent inbox."""

    def __init__(self, db=None):
        self.db = db

    async def handoff(self, conversation_id: str, department: str, priority: str, reason: str) -> None:
        logger.info(
            f"Conversation {conversation_id} handed off to {department} (priority={priority}): {reason}"
        )
        if self.db is None:
            return
        await self.db[HANDOFFS_COLLECTION].insert_one({
            "conversation_id": conversation_id,
            "department": department,
            "priority": priority,
            "reason": reason,
            "status": "pending",
            "created_at": datetime.now(timezone.utc),
        })
