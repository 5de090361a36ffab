# /convoflow/services/action_provider.py

import logging
from typing import Any, Awaitable, Callable, Dict, List

from convoflow.utils.metrics import action_invocations_counter
from convoflow.workflows.errors import ActionExecutionError, ActionNotSupported

# The Action Provider runs the side effects of `action` steps (order lookups,
# product searches, ticket creation...). Handlers are registered by name and the
# scenario registry validates action steps against `capabilities()`.

logger = logging.getLogger(__name__)

# async handler(params, context) -> mapping merged into the flow context
ActionHandler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]


class ActionProvider:
    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        if name in self._handlers:
            logger.warning(f"Replacing handler for action '{name}'.")
        self._handlers[name] = handler

    def capabilities(self) -> List[str]:
        return sorted(self._handlers)

    async def invoke(self, action_name: str, params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a registered action.

        Raises:
            ActionNotSupported: no handler is registered under action_name
            ActionExecutionError: the handler raised; the original error is chained
        """
        handler = self._handlers.get(action_name)
        if handler is None:
            action_invocations_counter.labels(action=action_name, status="unsupported").inc()
            raise ActionNotSupported(action_name)

        try:
            result = await handler(params, context)
        except ActionExecutionError:
            action_invocations_counter.labels(action=action_name, status="failed").inc()
            raise
        except Exception as e:
            action_invocations_counter.labels(action=action_name, status="failed").inc()
            logger.error(f"Action '{action_name}' failed: {e}", exc_info=True)
            raise ActionExecutionError(action_name, str(e)) from e

        action_invocations_counter.labels(action=action_name, status="success").inc()
        return result or {}
