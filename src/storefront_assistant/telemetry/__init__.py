"""Structured logging and semantic event names."""

from storefront_assistant.telemetry.events import (
    AVAILABILITY_CHECKED,
    MCP_CONNECTING,
    MCP_CONNECTION_FAILED,
    MCP_DISCONNECTED,
    MCP_SESSION_INITIALIZED,
    MCP_SESSION_MISSING,
    MCP_TOOLS_DISCOVERED,
    MODEL_CALL_COMPLETED,
    MODEL_CALL_ERROR,
    MODEL_CALL_STARTED,
    ORDER_FLOW_CANCELLED,
    ORDER_FLOW_STARTED,
    ORDER_STEP_ADVANCED,
    PROVIDER_FAILOVER,
    PROVIDER_SELECTED,
    PROVIDER_SWITCHED,
    RULE_BASED_RESPONSE,
    SESSION_CLEARED,
    SESSION_CREATED,
    SESSION_SWEEP,
    TERMS_ACCEPTED,
    TERMS_DECLINED,
    TERMS_INTERRUPT_SET,
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_STARTED,
    TURN_COMPLETED,
    TURN_DEGRADED,
    TURN_STARTED,
)
from storefront_assistant.telemetry.logger import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "AVAILABILITY_CHECKED",
    "MCP_CONNECTING",
    "MCP_CONNECTION_FAILED",
    "MCP_DISCONNECTED",
    "MCP_SESSION_INITIALIZED",
    "MCP_SESSION_MISSING",
    "MCP_TOOLS_DISCOVERED",
    "MODEL_CALL_COMPLETED",
    "MODEL_CALL_ERROR",
    "MODEL_CALL_STARTED",
    "ORDER_FLOW_CANCELLED",
    "ORDER_FLOW_STARTED",
    "ORDER_STEP_ADVANCED",
    "PROVIDER_FAILOVER",
    "PROVIDER_SELECTED",
    "PROVIDER_SWITCHED",
    "RULE_BASED_RESPONSE",
    "SESSION_CLEARED",
    "SESSION_CREATED",
    "SESSION_SWEEP",
    "TERMS_ACCEPTED",
    "TERMS_DECLINED",
    "TERMS_INTERRUPT_SET",
    "TOOL_CALL_COMPLETED",
    "TOOL_CALL_FAILED",
    "TOOL_CALL_STARTED",
    "TURN_COMPLETED",
    "TURN_DEGRADED",
    "TURN_STARTED",
]
