"""Cross-context messaging between the host application and the target site."""

from .channels import ContextInvalidatedError, MessagePort
from .client import HostAutomationClient
from .messages import CommandType, NavigationAction, StatusEvent, StatusType
from .relay import Coordinator, HostProxy
from .tabs import TabNotFoundError, TabRegistry

__all__ = [
    "CommandType",
    "ContextInvalidatedError",
    "Coordinator",
    "HostAutomationClient",
    "HostProxy",
    "MessagePort",
    "NavigationAction",
    "StatusEvent",
    "StatusType",
    "TabNotFoundError",
    "TabRegistry",
]
