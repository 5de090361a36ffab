# /convoflow/workflows/engine.py

"""
Step executor for scenario flows.

This module interprets a scenario's step graph against a flow's context:
- Renders {{key}} templates from the flow context (missing keys render empty)
- Emits outbound messages for message/question/route/escalate steps
- Suspends on question and route steps until the next inbound message
- Invokes the Action Provider for action steps and merges their output
- Branches on named condition predicates
- Caps the number of steps run for one inbound message

The executor works on a deep copy of the flow it is given and returns the
updated copy, so a failed run never leaves a half-mutated flow behind. It
does not persist anything and does not deliver messages or hand-offs; the
orchestrator does both with the returned StepRunResult. Given the same flow,
scenario, input and clock it always produces the same result.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from convoflow.config import strings
from convoflow.models.api import OutboundMessage
from convoflow.models.flow import ConversationFlow, FlowHistoryEntry, FlowStatus
from convoflow.models.scenario import (
    ActionStep,
    ConditionStep,
    EscalateStep,
    MessageStep,
    Priority,
    QuestionStep,
    RouteStep,
    Scenario,
    Step,
)
from convoflow.workflows.conditions import evaluate_condition
from convoflow.workflows.errors import (
    ActionError,
    ActionExecutionError,
    FlowCycleError,
    ScenarioDefinitionError,
)
from convoflow.workflows.validator import is_escalation_token, token_department

TEMPLATE_RE = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")
WHOLE_TOKEN_RE = re.compile(r"^\{\{\s*([\w.-]+)\s*\}\}$")


@dataclass(frozen=True)
class EscalationRequest:
    department: str
    priority: Priority
    reason: str


@dataclass
class StepRunResult:
    """Result of running a flow for one inbound message."""
    flow: ConversationFlow
    outbound: List[OutboundMessage] = field(default_factory=list)
    escalation: Optional[EscalationRequest] = None
    # Scenario id the conversation must continue in (route to another scenario)
    route_to: Optional[str] = None


# ---------------- Template rendering ---------------- #

def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return " - ".join(_format_value(v) for v in value.values() if v is not None)
    if isinstance(value, (list, tuple)):
        return "\n".join(f"• {_format_value(item)}" for item in value)
    return str(value)


def render_template(template: Optional[str], context: Dict[str, Any]) -> str:
    """
    Replace {{key}} tokens with context values. A key that is missing or None
    renders as an empty string; rendering never raises.
    """
    if not template:
        return ""
    return TEMPLATE_RE.sub(lambda m: _format_value(context.get(m.group(1))), template)


def render_params(params: Any, context: Dict[str, Any]) -> Any:
    """
    Render action params recursively. A string that is exactly one token keeps
    the raw context value (so lists and numbers survive); other strings are
    rendered as templates.
    """
    if isinstance(params, dict):
        return {k: render_params(v, context) for k, v in params.items()}
    if isinstance(params, list):
        return [render_params(v, context) for v in params]
    if isinstance(params, str):
        whole = WHOLE_TOKEN_RE.match(params)
        if whole:
            return context.get(whole.group(1))
        return render_template(params, context)
    return params


def resolve_route_choice(options: Dict[str, str], user_input: Optional[str]) -> Optional[str]:
    """Exact option first, then a case-insensitive, whitespace-trimmed match."""
    if user_input is None:
        return None
    if user_input in options:
        return options[user_input]
    wanted = user_input.strip().casefold()
    for choice, target in options.items():
        if choice.strip().casefold() == wanted:
            return target
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepExecutor:
    def __init__(self, action_provider, max_steps: int, clock: Callable[[], datetime] = _utcnow):
        self.action_provider = action_provider
        self.max_steps = max_steps
        self._clock = clock

    async def run(
        self,
        flow: ConversationFlow,
        scenario: Scenario,
        start_step_id: str,
        user_input: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StepRunResult:
        """
        Run the flow from start_step_id until it suspends, completes, escalates
        or routes elsewhere.

        Args:
            flow: The flow to advance (not mutated)
            scenario: The flow's scenario
            start_step_id: Step to start at; when it is a question/route step and
                user_input is given, user_input is treated as the reply to it
            user_input: The inbound message text, or None on a fresh start
            now: Timestamp for history entries (defaults to the clock)

        Returns:
            StepRunResult carrying the updated flow copy and outbound messages

        Raises:
            FlowCycleError: more than max_steps steps ran for this message
            ActionError: an action failed (partial_outbound is set)
        """
        now = now or self._clock()
        working = flow.model_copy(deep=True)
        working.last_activity_at = now
        result = StepRunResult(flow=working)

        step_id: Optional[str] = start_step_id
        pending_input = user_input
        executed = 0

        while step_id is not None:
            step = scenario.get_step(step_id)
            if step is None:
                raise ScenarioDefinitionError(scenario.id, [f"Flow reached unknown step '{step_id}'"])

            executed += 1
            if executed > self.max_steps:
                raise FlowCycleError(scenario.id, step.id, self.max_steps)

            working.current_step_id = step.id
            try:
                step_id = await self._execute_step(step, scenario, pending_input, result, now)
            except ActionError as e:
                e.partial_outbound = list(result.outbound)
                raise
            # Only the first step of a run can consume the inbound message
            pending_input = None

        return result

    async def _execute_step(
        self,
        step: Step,
        scenario: Scenario,
        user_input: Optional[str],
        result: StepRunResult,
        now: datetime,
    ) -> Optional[str]:
        """Execute one step and return the id of the next step to run, or None to stop."""
        if isinstance(step, MessageStep):
            return self._message(step, result, now)
        if isinstance(step, QuestionStep):
            return self._question(step, user_input, result, now)
        if isinstance(step, ActionStep):
            return await self._action(step, result, now)
        if isinstance(step, ConditionStep):
            return self._condition(step, result, now)
        if isinstance(step, EscalateStep):
            return self._escalate(step, result, now)
        if isinstance(step, RouteStep):
            return self._route(step, scenario, user_input, result, now)
        raise ScenarioDefinitionError(scenario.id, [f"Unsupported step type for step '{step.id}'"])

    # ---------------- Step handlers ---------------- #

    def _emit(self, result: StepRunResult, content: str, options=None, delay_ms: int = 0) -> None:
        result.outbound.append(OutboundMessage(content=content, options=options, delay_ms=delay_ms))

    def _record(self, result: StepRunResult, step_id: str, now: datetime,
                user_input: Optional[str] = None, completed: bool = True) -> None:
        result.flow.history.append(
            FlowHistoryEntry(step_id=step_id, timestamp=now, user_input=user_input, completed=completed)
        )

    def _advance(self, next_step: Optional[str], result: StepRunResult, now: datetime) -> Optional[str]:
        if next_step is None:
            result.flow.status = FlowStatus.COMPLETED
            result.flow.completed_at = now
        return next_step

    def _message(self, step: MessageStep, result: StepRunResult, now: datetime) -> Optional[str]:
        content = render_template(step.content, result.flow.context)
        self._emit(result, content, step.options, step.delay_ms)
        self._record(result, step.id, now)
        return self._advance(step.next_step, result, now)

    def _question(self, step: QuestionStep, user_input: Optional[str],
                  result: StepRunResult, now: datetime) -> Optional[str]:
        if user_input is None:
            self._emit(result, render_template(step.content, result.flow.context), step.options)
            self._record(result, step.id, now, completed=False)
            return None

        result.flow.context[step.bind_to] = user_input
        self._record(result, step.id, now, user_input=user_input)
        return self._advance(step.next_step, result, now)

    async def _action(self, step: ActionStep, result: StepRunResult, now: datetime) -> Optional[str]:
        context = result.flow.context
        params = render_params(step.params, context)
        output = await self.action_provider.invoke(step.action, params, dict(context))
        if output is None:
            output = {}
        if not isinstance(output, dict):
            raise ActionExecutionError(step.action, f"expected a mapping result, got {type(output).__name__}")
        context.update(output)
        self._record(result, step.id, now)
        return self._advance(step.next_step, result, now)

    def _condition(self, step: ConditionStep, result: StepRunResult, now: datetime) -> str:
        outcome = evaluate_condition(step.predicate, result.flow.context)
        self._record(result, step.id, now)
        return step.true_step if outcome else step.false_step

    def _escalate(self, step: EscalateStep, result: StepRunResult, now: datetime) -> None:
        content = render_template(step.message, result.flow.context)
        self._emit(result, content)
        self._record(result, step.id, now)
        self._hand_off(result, step.department, step.priority, content, now)
        return None

    def _route(self, step: RouteStep, scenario: Scenario, user_input: Optional[str],
               result: StepRunResult, now: datetime) -> Optional[str]:
        if user_input is None:
            self._emit(result, render_template(step.content, result.flow.context), list(step.options.keys()))
            self._record(result, step.id, now, completed=False)
            return None

        self._record(result, step.id, now, user_input=user_input)
        target = resolve_route_choice(step.options, user_input)

        if target is None:
            self._apply_fallback(scenario, f"unrecognized choice '{user_input}'", result, now)
            return None
        if scenario.get_step(target) is not None:
            return target
        if is_escalation_token(target):
            department = token_department(target)
            self._emit(result, strings.ROUTE_ESCALATION_MESSAGE.format(department=department.replace("_", " ")))
            self._hand_off(result, department, scenario.priority, f"Customer chose '{user_input}'", now)
            return None

        # Any other target is a scenario id; the orchestrator starts it fresh
        result.route_to = target
        result.flow.status = FlowStatus.COMPLETED
        result.flow.completed_at = now
        return None

    # ---------------- Terminal transitions ---------------- #

    def _hand_off(self, result: StepRunResult, department: str, priority: Priority,
                  reason: str, now: datetime) -> None:
        result.flow.status = FlowStatus.ESCALATED
        result.flow.completed_at = now
        result.escalation = EscalationRequest(department=department, priority=priority, reason=reason)

    def _apply_fallback(self, scenario: Scenario, detail: str, result: StepRunResult, now: datetime) -> None:
        message = scenario.fallback.message or strings.GENERIC_FALLBACK
        self._emit(result, render_template(message, result.flow.context))
        if scenario.fallback.escalate_to_human:
            reason = strings.FALLBACK_HANDOFF_REASON.format(detail=detail)
            self._hand_off(result, strings.DEFAULT_ESCALATION_DEPARTMENT, scenario.priority, reason, now)
        else:
            result.flow.status = FlowStatus.ABANDONED
            result.flow.abandon_reason = detail
            result.flow.completed_at = now
