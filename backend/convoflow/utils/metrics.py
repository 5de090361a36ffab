# /convoflow/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used for monitoring the automation
# engine. Centralizing them here makes them easy to find and manage.

# Trigger & flow lifecycle
trigger_evaluations_counter = Counter('automation_trigger_evaluations_total', 'Trigger matcher outcomes', ['result'])
flows_started_counter = Counter('automation_flows_started_total', 'Conversation flows started', ['scenario_id'])
flow_transitions_counter = Counter('automation_flow_transitions_total', 'Flows leaving the active state', ['status'])

# Side effects
action_invocations_counter = Counter('automation_action_invocations_total', 'Action provider invocations', ['action', 'status'])
escalations_counter = Counter('automation_escalations_total', 'Human hand-offs', ['source'])

# Persistence
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])

# Performance
inbound_handling_histogram = Histogram('automation_inbound_handling_seconds', 'Time to handle one inbound message')
