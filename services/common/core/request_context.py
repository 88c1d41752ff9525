"""
RequestContext management.
Use ContextVar to share the outbound call id across async execution.
"""

import uuid
from contextvars import ContextVar
from typing import Optional


# Context variable for the current provider call (service.method + short id).
_call_id_var: ContextVar[Optional[str]] = ContextVar("call_id", default=None)


def get_call_id() -> Optional[str]:
    """Get the current call ID."""
    return _call_id_var.get()


def new_call_id(label: str) -> str:
    """
    Generate and set a new call ID for the current context.

    Args:
        label: Human readable prefix, e.g. "CloudFormation.describeStacks"

    Returns:
        The call ID that was set
    """
    call_id = f"{label}#{uuid.uuid4().hex[:8]}"
    _call_id_var.set(call_id)
    return call_id


def clear_call_id() -> None:
    """Clear the call ID context."""
    _call_id_var.set(None)
