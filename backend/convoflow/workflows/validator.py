# /convoflow/workflows/validator.py

"""
Pure validation functions for scenario definitions.

This module provides deterministic, side-effect-free checks that run when a
scenario is registered, so that broken step graphs are rejected before any
conversation can reach them:
- step ids are unique and at least one step exists
- every next_step / true_step / false_step names an existing step
- every route target is a step id, a known scenario id or an escalation token
- every action step names a capability of the Action Provider
"""

from typing import Iterable, List, Optional, TypedDict

from convoflow.models.scenario import (
    ActionStep,
    ConditionStep,
    RouteStep,
    Scenario,
    SEQUENTIAL_STEP_TYPES,
)

# Route targets of the form "escalate_<department>" hand the customer to a human
ESCALATION_TOKEN_PREFIX = "escalate_"


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _ok() -> ValidationResult:
    return {"is_valid": True, "error_code": None, "message": None}


def _fail(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def is_escalation_token(target: str) -> bool:
    return target.startswith(ESCALATION_TOKEN_PREFIX) and len(target) > len(ESCALATION_TOKEN_PREFIX)


def token_department(target: str) -> str:
    return target[len(ESCALATION_TOKEN_PREFIX):]


def validate_step_reference(scenario: Scenario, step_id: str, field: str, owner: str) -> ValidationResult:
    """Validate that a step reference points to a step of the same scenario."""
    if not step_id:
        return _fail("EMPTY_STEP_REFERENCE", f"Step '{owner}' has an empty {field}")
    if scenario.get_step(step_id) is None:
        return _fail("UNKNOWN_STEP", f"Step '{owner}' {field} references unknown step '{step_id}'")
    return _ok()


def validate_route_target(
    scenario: Scenario, target: str, known_scenario_ids: Iterable[str], owner: str, choice: str
) -> ValidationResult:
    if not target:
        return _fail("EMPTY_ROUTE_TARGET", f"Route '{owner}' option '{choice}' has no target")
    if scenario.get_step(target) is not None or is_escalation_token(target):
        return _ok()
    if target == scenario.id or target in set(known_scenario_ids):
        return _ok()
    return _fail(
        "UNKNOWN_ROUTE_TARGET",
        f"Route '{owner}' option '{choice}' targets '{target}', which is neither a step, "
        f"a registered scenario nor an escalation token",
    )


def validate_action(step: ActionStep, known_actions: Optional[Iterable[str]]) -> ValidationResult:
    if not step.action:
        return _fail("EMPTY_ACTION", f"Action step '{step.id}' has no action name")
    if known_actions is not None and step.action not in set(known_actions):
        return _fail("UNSUPPORTED_ACTION", f"Action step '{step.id}' uses unsupported action '{step.action}'")
    return _ok()


def validate_scenario(
    scenario: Scenario,
    known_actions: Optional[Iterable[str]] = None,
    known_scenario_ids: Iterable[str] = (),
) -> List[ValidationResult]:
    """
    Run every structural check and return the failed ones.

    Args:
        scenario: The scenario to validate
        known_actions: Capabilities of the Action Provider (None skips the check)
        known_scenario_ids: Ids of scenarios already registered, for route targets

    Returns:
        List of failed ValidationResults; empty when the scenario is valid
    """
    known_scenario_ids = list(known_scenario_ids)
    results: List[ValidationResult] = []

    if not scenario.steps:
        return [_fail("NO_STEPS", "Scenario must define at least one step")]

    seen = set()
    for step in scenario.steps:
        if step.id in seen:
            results.append(_fail("DUPLICATE_STEP", f"Step id '{step.id}' is used more than once"))
        seen.add(step.id)

    for step in scenario.steps:
        if isinstance(step, SEQUENTIAL_STEP_TYPES) and step.next_step is not None:
            results.append(validate_step_reference(scenario, step.next_step, "next_step", step.id))
        if isinstance(step, ConditionStep):
            if not step.predicate:
                results.append(_fail("EMPTY_PREDICATE", f"Condition step '{step.id}' has no predicate"))
            results.append(validate_step_reference(scenario, step.true_step, "true_step", step.id))
            results.append(validate_step_reference(scenario, step.false_step, "false_step", step.id))
        if isinstance(step, RouteStep):
            if not step.options:
                results.append(_fail("EMPTY_ROUTE", f"Route step '{step.id}' has no options"))
            for choice, target in step.options.items():
                results.append(validate_route_target(scenario, target, known_scenario_ids, step.id, choice))
        if isinstance(step, ActionStep):
            results.append(validate_action(step, known_actions))

    return [r for r in results if not r["is_valid"]]


def normalize_scenario(scenario: Scenario) -> Scenario:
    """
    Make the implicit array order explicit: every message/question/action step
    that does not set next_step gets the id of the step that follows it (None
    for the last step, which completes the flow). An explicit `next_step: null`
    ends the flow at that step.
    """
    steps = list(scenario.steps)
    normalized = []
    for index, step in enumerate(steps):
        if isinstance(step, SEQUENTIAL_STEP_TYPES) and "next_step" not in step.model_fields_set and index + 1 < len(steps):
            step = step.model_copy(update={"next_step": steps[index + 1].id})
        normalized.append(step)
    return scenario.model_copy(update={"steps": normalized})
