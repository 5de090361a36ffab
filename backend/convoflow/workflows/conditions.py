# /convoflow/workflows/conditions.py

import logging
from typing import Any, Callable, Dict

# Named predicates that `condition` steps branch on. Each predicate receives the
# flow context and returns a bool. Names unknown to this table evaluate to False
# so that a partially configured deployment degrades instead of crashing.

logger = logging.getLogger(__name__)

ConditionPredicate = Callable[[Dict[str, Any]], bool]


def _non_empty(key: str) -> ConditionPredicate:
    def predicate(context: Dict[str, Any]) -> bool:
        value = context.get(key)
        if isinstance(value, (list, dict, str, tuple, set)):
            return len(value) > 0
        return value is not None and value is not False
    return predicate


CONDITION_PREDICATES: Dict[str, ConditionPredicate] = {
    "has_recent_orders": _non_empty("recent_orders"),
    "has_orders": _non_empty("orders"),
    "has_product_results": _non_empty("product_results"),
    "has_ticket": _non_empty("ticket_id"),
    "is_returning_customer": lambda ctx: bool(ctx.get("has_order_history")),
}


def evaluate_condition(name: str, context: Dict[str, Any]) -> bool:
    predicate = CONDITION_PREDICATES.get(name)
    if predicate is None:
        logger.warning(f"Unknown condition predicate '{name}', evaluating as False.")
        return False
    return bool(predicate(context))
