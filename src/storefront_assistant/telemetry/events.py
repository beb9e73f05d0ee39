"""Semantic event constants for structured logging.

Recurring log events use these constants rather than magic strings so the
output can be queried reliably.
"""

# Orchestrator events
TURN_STARTED = "turn_started"
TURN_COMPLETED = "turn_completed"
TURN_DEGRADED = "turn_degraded"
TERMS_INTERRUPT_SET = "terms_interrupt_set"
TERMS_ACCEPTED = "terms_accepted"
TERMS_DECLINED = "terms_declined"
ORDER_FLOW_STARTED = "order_flow_started"
ORDER_FLOW_CANCELLED = "order_flow_cancelled"
ORDER_STEP_ADVANCED = "order_step_advanced"

# Provider events
MODEL_CALL_STARTED = "model_call_started"
MODEL_CALL_COMPLETED = "model_call_completed"
MODEL_CALL_ERROR = "model_call_error"
AVAILABILITY_CHECKED = "availability_checked"
PROVIDER_SELECTED = "provider_selected"
PROVIDER_SWITCHED = "provider_switched"
PROVIDER_FAILOVER = "provider_failover"
RULE_BASED_RESPONSE = "rule_based_response"

# Tool events
MCP_CONNECTING = "mcp_connecting"
MCP_SESSION_INITIALIZED = "mcp_session_initialized"
MCP_SESSION_MISSING = "mcp_session_missing"
MCP_TOOLS_DISCOVERED = "mcp_tools_discovered"
MCP_CONNECTION_FAILED = "mcp_connection_failed"
MCP_DISCONNECTED = "mcp_disconnected"
TOOL_CALL_STARTED = "tool_call_started"
TOOL_CALL_COMPLETED = "tool_call_completed"
TOOL_CALL_FAILED = "tool_call_failed"

# Session events
SESSION_CREATED = "session_created"
SESSION_CLEARED = "session_cleared"
SESSION_SWEEP = "session_sweep"
