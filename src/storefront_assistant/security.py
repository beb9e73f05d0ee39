"""Security utilities for preventing information disclosure."""

import re

from storefront_assistant.mcp.types import ConnectionNotReadyError, ToolTransportError
from storefront_assistant.providers.types import ErrorKind, ProviderError

_PROVIDER_MESSAGES = {
    ErrorKind.AUTH: "The assistant service is not authorised right now. Please contact support.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.UNAVAILABLE: "The assistant service is temporarily unavailable. Please try again shortly.",
    ErrorKind.NETWORK: "Unable to reach the assistant service. Please try again in a moment.",
    ErrorKind.TIMEOUT: "The request took too long to process. Please try again.",
}


def scrub(text: str) -> str:
    """Remove paths, memory addresses, line numbers and URLs from free text."""
    text = re.sub(r"https?://\S+", "[url]", text)
    text = re.sub(r"(?<![\w\]])/[^\s]+", "[path]", text)
    text = re.sub(r"0x[0-9a-fA-F]+", "[address]", text)
    return re.sub(r"line \d+", "[line]", text)


def sanitize_error_message(error: Exception) -> str:
    """Create a user-friendly error message without exposing internal details.

    Args:
        error: The exception that occurred.

    Returns:
        A sanitized, user-friendly message.
    """
    if isinstance(error, ProviderError):
        return _PROVIDER_MESSAGES[error.kind]
    if isinstance(error, ConnectionNotReadyError):
        return "The store's tools are not connected right now. Please try again in a moment."
    if isinstance(error, ToolTransportError):
        return "The store's systems could not be reached. Please try again in a moment."

    error_type = type(error).__name__
    error_str = scrub(str(error)).lower()

    if "Timeout" in error_type or "timeout" in error_str:
        return "The request took too long to process. Please try again."
    elif "Connect" in error_type or "connection" in error_str:
        return "Unable to connect to the service. Please try again in a moment."
    elif "Validation" in error_type or "validation" in error_str:
        return "Invalid request format. Please check your input and try again."
    else:
        return "An error occurred while processing your request. Please try again."
