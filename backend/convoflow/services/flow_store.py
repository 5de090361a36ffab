# /convoflow/services/flow_store.py

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from convoflow.models.flow import ConversationFlow, FlowStatus
from convoflow.services.db_service import FLOWS_COLLECTION
from convoflow.utils.metrics import database_operations_counter
from convoflow.workflows.errors import ActiveFlowConflict

# The Flow Store keeps one record per conversation flow and answers "which flow
# is active for this conversation". It enforces the at-most-one-active-flow
# invariant itself; the orchestrator is its only writer.

logger = logging.getLogger(__name__)


class FlowStore(ABC):
    @abstractmethod
    async def get_active(self, conversation_id: str) -> Optional[ConversationFlow]:
        """The ACTIVE flow of the conversation, if any."""

    @abstractmethod
    async def get(self, flow_id: str) -> Optional[ConversationFlow]:
        ...

    @abstractmethod
    async def save(self, flow: ConversationFlow) -> None:
        """
        Insert or replace the flow.

        Raises:
            ActiveFlowConflict: saving an ACTIVE flow while another flow of the
                same conversation is ACTIVE
        """

    @abstractmethod
    async def list_stale(self, cutoff: datetime) -> List[ConversationFlow]:
        """ACTIVE flows whose last activity is older than cutoff."""

    @abstractmethod
    async def count_started_since(self, scenario_id: str, customer_id: str, since: datetime) -> int:
        ...

    async def create_indexes(self) -> None:
        return None


class InMemoryFlowStore(FlowStore):
    """Process-local store for tests and single-process deployments."""

    def __init__(self):
        self._flows: Dict[str, ConversationFlow] = {}

    async def get_active(self, conversation_id: str) -> Optional[ConversationFlow]:
        for flow in self._flows.values():
            if flow.conversation_id == conversation_id and flow.status == FlowStatus.ACTIVE:
                return flow.model_copy(deep=True)
        return None

    async def get(self, flow_id: str) -> Optional[ConversationFlow]:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def save(self, flow: ConversationFlow) -> None:
        if flow.status == FlowStatus.ACTIVE:
            for other in self._flows.values():
                if (other.id != flow.id and other.conversation_id == flow.conversation_id
                        and other.status == FlowStatus.ACTIVE):
                    raise ActiveFlowConflict(flow.conversation_id)
        self._flows[flow.id] = flow.model_copy(deep=True)

    async def list_stale(self, cutoff: datetime) -> List[ConversationFlow]:
        return [
            f.model_copy(deep=True) for f in self._flows.values()
            if f.status == FlowStatus.ACTIVE and f.last_activity_at < cutoff
        ]

    async def count_started_since(self, scenario_id: str, customer_id: str, since: datetime) -> int:
        return sum(
            1 for f in self._flows.values()
            if f.scenario_id == scenario_id and f.customer_id == customer_id and f.started_at >= since
        )

    def all_flows(self) -> List[ConversationFlow]:
        return [f.model_copy(deep=True) for f in self._flows.values()]


class MongoFlowStore(FlowStore):
    """
    Durable store in the `conversation_flows` collection, one document per flow
    with `_id` = flow id. A unique partial index on conversation_id (status ==
    "active") backs the single-active-flow invariant across processes.
    """

    def __init__(self, db):
        self.collection = db[FLOWS_COLLECTION]

    # ==================== Helper Methods ====================

    def _to_document(self, flow: ConversationFlow) -> Dict[str, Any]:
        doc = flow.model_dump(mode="python")
        doc["_id"] = doc.pop("id")
        doc["status"] = flow.status.value
        return doc

    def _from_document(self, doc: Optional[Dict[str, Any]]) -> Optional[ConversationFlow]:
        if not doc:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return ConversationFlow.model_validate(doc)

    # ==================== Operations ====================

    async def create_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", 1)],
            unique=True,
            partialFilterExpression={"status": FlowStatus.ACTIVE.value},
            name="one_active_flow_per_conversation",
        )
        await self.collection.create_index([("scenario_id", 1), ("customer_id", 1), ("started_at", -1)])
        await self.collection.create_index([("status", 1), ("last_activity_at", 1)])

    async def get_active(self, conversation_id: str) -> Optional[ConversationFlow]:
        doc = await self.collection.find_one(
            {"conversation_id": conversation_id, "status": FlowStatus.ACTIVE.value}
        )
        return self._from_document(doc)

    async def get(self, flow_id: str) -> Optional[ConversationFlow]:
        return self._from_document(await self.collection.find_one({"_id": flow_id}))

    async def save(self, flow: ConversationFlow) -> None:
        try:
            await self.collection.replace_one({"_id": flow.id}, self._to_document(flow), upsert=True)
            database_operations_counter.labels(operation="save_flow", status="success").inc()
        except DuplicateKeyError:
            database_operations_counter.labels(operation="save_flow", status="conflict").inc()
            logger.warning(f"Rejected second active flow for conversation {flow.conversation_id}")
            raise ActiveFlowConflict(flow.conversation_id)

    async def list_stale(self, cutoff: datetime) -> List[ConversationFlow]:
        cursor = self.collection.find(
            {"status": FlowStatus.ACTIVE.value, "last_activity_at": {"$lt": cutoff}}
        ).sort("last_activity_at", 1)
        docs = await cursor.to_list(length=None)
        return [self._from_document(d) for d in docs]

    async def count_started_since(self, scenario_id: str, customer_id: str, since: datetime) -> int:
        return await self.collection.count_documents(
            {"scenario_id": scenario_id, "customer_id": customer_id, "started_at": {"$gte": since}}
        )
