# /convoflow/jobs/stale_flow_job.py

"""
Stale flow sweep.

A flow suspended on a question or route step waits for the customer's reply
indefinitely; the engine itself never times out. This job abandons every
ACTIVE flow whose last activity is older than the configured timeout, so the
conversation starts fresh on its next message. Flows of scenarios whose
fallback escalates to a human are handed off at the same time.

The job only decides what is due; every write goes through the orchestrator,
which takes the conversation lock and re-checks the flow before abandoning it.
"""

import logging
from datetime import datetime, timedelta
from typing import List

from convoflow.config.settings import settings
from convoflow.models.flow import ConversationFlow

logger = logging.getLogger(__name__)


async def expire_stale_flows(
    orchestrator,
    now: datetime,
    timeout_minutes: int = settings.stale_flow_timeout_minutes,
) -> List[ConversationFlow]:
    """
    Abandon the flows that have been idle for longer than timeout_minutes.

    Args:
        orchestrator: The FlowOrchestrator owning the flow store
        now: Current timezone-aware datetime used to compute the cutoff
        timeout_minutes: Idle time after which a flow is considered stale

    Returns:
        The flows that were abandoned by this sweep
    """
    cutoff = now - timedelta(minutes=timeout_minutes)
    candidates = await orchestrator.flow_store.list_stale(cutoff)
    logger.info(f"Stale flow sweep: {len(candidates)} candidate(s) idle since before {cutoff.isoformat()}")

    expired: List[ConversationFlow] = []
    for flow in candidates:
        try:
            result = await orchestrator.expire_flow(flow.conversation_id, cutoff, now)
        except Exception as e:
            logger.error(f"Failed to expire flow {flow.id}: {e}", exc_info=True)
            continue
        if result is not None:
            expired.append(result)

    logger.info(f"Stale flow sweep finished. Expired {len(expired)} flow(s).")
    return expired
