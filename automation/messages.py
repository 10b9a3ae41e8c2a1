"""Typed cross-context messages exchanged through the relay.

Commands travel from the host application to the site controller, status
events travel back.  Both sides are closed tagged unions validated with
pydantic so a malformed message is rejected at the first hop that sees it
instead of leaking ``None`` values into DOM logic.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

DEFAULT_RETRY_DELAY = 5.0
MAX_GROUP_SIZE = 10

# Message targets used by the relay hops.
PROXY_TARGET = "AUTOBOOK_PROXY"
COORDINATOR_TARGET = "AUTOBOOK_COORDINATOR"
SITE_TARGET = "AUTOBOOK_SITE"
STATUS_UPDATE_TARGET = "AUTOBOOK_STATUS_UPDATE"
PROXY_RECEIVE_TARGET = "AUTOBOOK_PROXY_RECEIVE"

# Window level signal types.
READY_SIGNAL = "AUTOBOOK_READY"
STATUS_SIGNAL = "AUTOBOOK_STATUS"


class InvalidMessageError(ValueError):
    """Raised when a cross-context message does not match its schema."""


class CommandType(str, Enum):
    OPEN_AND_LOGIN = "OPEN_AND_LOGIN"
    DO_LOGIN = "DO_LOGIN"
    DO_NAVIGATE = "DO_NAVIGATE"
    START_SCANNING = "START_SCANNING"
    STOP_SCANNING = "STOP_SCANNING"


class StatusType(str, Enum):
    INFO = "INFO"
    ERROR = "ERROR"
    STATUS_FOUND_SLOT = "STATUS_FOUND_SLOT"
    STATUS_OTP_NEEDED = "STATUS_OTP_NEEDED"
    STATUS_LOGIN_SUCCESS = "STATUS_LOGIN_SUCCESS"


class NavigationAction(str, Enum):
    CLICK_PERMITS = "CLICK_PERMITS"
    CLICK_ADD_REQUEST = "CLICK_ADD_REQUEST"
    CLICK_MEN_PERMIT = "CLICK_MEN_PERMIT"
    CLICK_WOMEN_PERMIT = "CLICK_WOMEN_PERMIT"
    CLICK_FILTER = "CLICK_FILTER"
    CLICK_SELECT_PEOPLE = "CLICK_SELECT_PEOPLE"


# ---------------------------------------------------------------------------
# Payloads


class Credentials(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=1)
    password: str = Field(
        min_length=1,
        validation_alias=AliasChoices("password", "password_encrypted"),
    )

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"

    __str__ = __repr__


class NavigatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: NavigationAction
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: Any) -> Any:
        return {} if value is None else value


class ScanOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    retry_delay: float = Field(
        default=DEFAULT_RETRY_DELAY,
        alias="retryDelay",
        validation_alias=AliasChoices("retryDelay", "retry_delay"),
    )
    group_size: Optional[int] = Field(
        default=None,
        ge=1,
        le=MAX_GROUP_SIZE,
        alias="groupSize",
        validation_alias=AliasChoices("groupSize", "group_size"),
    )

    @field_validator("retry_delay", mode="before")
    @classmethod
    def _default_non_positive(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_RETRY_DELAY
        try:
            number = float(value)
        except (TypeError, ValueError):
            return value
        return number if number > 0 else DEFAULT_RETRY_DELAY


# ---------------------------------------------------------------------------
# Commands


class CommandBase(BaseModel):
    """Base class for every command understood by the site controller."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    target: str = SITE_TARGET

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def retarget(self, target: str) -> "CommandBase":
        return self.model_copy(update={"target": target})


class OpenAndLoginCommand(CommandBase):
    type: Literal["OPEN_AND_LOGIN"] = "OPEN_AND_LOGIN"
    payload: Credentials


class DoLoginCommand(CommandBase):
    type: Literal["DO_LOGIN"] = "DO_LOGIN"
    payload: Credentials


class DoNavigateCommand(CommandBase):
    type: Literal["DO_NAVIGATE"] = "DO_NAVIGATE"
    payload: NavigatePayload


class StartScanningCommand(CommandBase):
    type: Literal["START_SCANNING"] = "START_SCANNING"
    payload: ScanOptions = Field(default_factory=ScanOptions)

    @field_validator("payload", mode="before")
    @classmethod
    def _coerce_payload(cls, value: Any) -> Any:
        return {} if value is None else value


class StopScanningCommand(CommandBase):
    type: Literal["STOP_SCANNING"] = "STOP_SCANNING"
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _coerce_payload(cls, value: Any) -> Any:
        return {} if value is None else value


Command = Annotated[
    Union[
        OpenAndLoginCommand,
        DoLoginCommand,
        DoNavigateCommand,
        StartScanningCommand,
        StopScanningCommand,
    ],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter[Any] = TypeAdapter(Command)


def parse_command(data: Any) -> CommandBase:
    """Validate ``data`` as one of the known commands."""

    if isinstance(data, CommandBase):
        return data
    if not isinstance(data, Mapping):
        raise InvalidMessageError(f"command must be a mapping, got {type(data).__name__}")
    try:
        return _COMMAND_ADAPTER.validate_python(dict(data))
    except ValidationError as exc:
        raise InvalidMessageError(f"invalid command: {exc.errors(include_url=False)}") from exc


# ---------------------------------------------------------------------------
# Status events


class StatusEvent(BaseModel):
    """Status update emitted by the site controller.

    Extra keys are preserved so callers can attach context such as the slot
    text or the current group size.
    """

    model_config = ConfigDict(extra="allow")

    type: StatusType
    message: str = ""
    timestamp: float = Field(default_factory=lambda: time.time() * 1000)

    @property
    def extra(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def parse_status(data: Any) -> StatusEvent:
    if isinstance(data, StatusEvent):
        return data
    if not isinstance(data, Mapping):
        raise InvalidMessageError(f"status must be a mapping, got {type(data).__name__}")
    try:
        return StatusEvent.model_validate(dict(data))
    except ValidationError as exc:
        raise InvalidMessageError(f"invalid status: {exc.errors(include_url=False)}") from exc


__all__ = [
    "COORDINATOR_TARGET",
    "Command",
    "CommandBase",
    "CommandType",
    "Credentials",
    "DEFAULT_RETRY_DELAY",
    "DoLoginCommand",
    "DoNavigateCommand",
    "InvalidMessageError",
    "MAX_GROUP_SIZE",
    "NavigatePayload",
    "NavigationAction",
    "OpenAndLoginCommand",
    "PROXY_RECEIVE_TARGET",
    "PROXY_TARGET",
    "READY_SIGNAL",
    "SITE_TARGET",
    "STATUS_SIGNAL",
    "STATUS_UPDATE_TARGET",
    "ScanOptions",
    "StartScanningCommand",
    "StatusEvent",
    "StatusType",
    "StopScanningCommand",
    "parse_command",
    "parse_status",
]
