# /convoflow/workflows/errors.py

"""
Error taxonomy of the automation engine.

Definition errors are raised eagerly at registration and block it. Execution
errors (action failures, loop-bound trips) are caught by the orchestrator and
turned into the scenario's fallback response.
"""

from typing import List, Optional


class FlowEngineError(Exception):
    """Base class for all automation engine errors."""


class ScenarioDefinitionError(FlowEngineError):
    def __init__(self, scenario_id: str, problems: List[str], error_codes: Optional[List[str]] = None):
        self.scenario_id = scenario_id
        self.problems = problems
        self.error_codes = error_codes or []
        super().__init__(f"Invalid scenario '{scenario_id}': {'; '.join(problems)}")


class ScenarioNotFound(FlowEngineError):
    def __init__(self, scenario_id: str):
        self.scenario_id = scenario_id
        super().__init__(f"Scenario '{scenario_id}' is not registered")


class FlowNotFound(FlowEngineError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"No active flow for conversation '{conversation_id}'")


class FlowCycleError(FlowEngineError):
    def __init__(self, scenario_id: str, step_id: str, max_steps: int):
        self.scenario_id = scenario_id
        self.step_id = step_id
        self.max_steps = max_steps
        super().__init__(
            f"Scenario '{scenario_id}' exceeded {max_steps} steps for one message (last step '{step_id}')"
        )


class ActionError(FlowEngineError):
    """
    Base class for Action Provider failures. The executor attaches the
    messages it had already produced in the same run as `partial_outbound`
    before re-raising, so the orchestrator can still deliver them.
    """

    def __init__(self, action: str, message: str):
        self.action = action
        self.partial_outbound: Optional[list] = None
        super().__init__(message)


class ActionNotSupported(ActionError):
    def __init__(self, action: str):
        super().__init__(action, f"Action '{action}' is not supported")


class ActionExecutionError(ActionError):
    def __init__(self, action: str, reason: str):
        self.reason = reason
        super().__init__(action, f"Action '{action}' failed: {reason}")


class ActiveFlowConflict(FlowEngineError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation '{conversation_id}' already has an active flow")
