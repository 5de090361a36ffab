# /convoflow/workflows/predicates.py

"""
Predicate helpers shared by the scenario trigger matcher and the escalation
rule matcher.

All functions are pure: they read only their arguments.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from convoflow.models.scenario import Priority

T = TypeVar("T")

PRIORITY_WEIGHTS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


def priority_weight(priority) -> int:
    """Unknown priorities weigh the same as LOW."""
    try:
        return PRIORITY_WEIGHTS[Priority(priority)]
    except ValueError:
        return 1


def order_by_priority(items: Sequence[T]) -> List[T]:
    """
    Highest priority first. sorted() is stable, so items of equal priority
    keep their registration order and the first-registered one wins.
    """
    return sorted(items, key=lambda item: priority_weight(item.priority), reverse=True)


def keyword_match(keywords: Optional[Iterable[str]], texts: Iterable[str]) -> bool:
    """
    True when no keywords are configured, or when at least one keyword is a
    case-insensitive substring of at least one text.
    """
    keywords = [k.lower() for k in (keywords or []) if k]
    if not keywords:
        return True
    lowered = [(t or "").lower() for t in texts]
    return any(keyword in text for keyword in keywords for text in lowered)


def exact_match(expected: Optional[str], actual: Optional[str]) -> bool:
    """An unset expectation matches anything."""
    if expected is None:
        return True
    return expected == actual


def at_least(threshold: Optional[float], actual: Optional[float]) -> bool:
    if threshold is None:
        return True
    return actual is not None and actual >= threshold


def is_within_working_hours(now: datetime, tz: ZoneInfo, start_hour: int, end_hour: int) -> bool:
    """Both bounds are inclusive hours of the business-local clock."""
    local = now.astimezone(tz) if now.tzinfo else now.replace(tzinfo=tz)
    return start_hour <= local.hour <= end_hour
