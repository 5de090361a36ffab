# /convoflow/config/strings.py

# This file contains the user-facing strings the automation engine emits on its
# own (as opposed to scenario-authored content), so they can be updated or
# localized without changing engine logic.

# Sent when an action or internal step fails and the scenario has no fallback text
GENERIC_FALLBACK = "Sorry, something went wrong on our side. One of our team members will get back to you shortly."

# Sent when a route choice resolves to a reserved escalation token
ROUTE_ESCALATION_MESSAGE = "Thanks! I'm connecting you with our {department} team now."

# Reason attached to hand-offs created by the engine itself
FALLBACK_HANDOFF_REASON = "Automation fallback: {detail}"
STALE_FLOW_HANDOFF_REASON = "Customer stopped responding to automated flow '{scenario_name}'"

# Default department used when a fallback escalates without a specific target
DEFAULT_ESCALATION_DEPARTMENT = "customer_service"
