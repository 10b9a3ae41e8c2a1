"""Host-side façade over the relay.

The host application only ever talks to :class:`HostAutomationClient`: it
posts commands into the host window port and listens for status signals
coming back.  Sending returns ``True`` when the command was handed to the
relay, which is no proof that it reached the site; callers learn about the
outcome only through status events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from automation.channels import ContextInvalidatedError, MessagePort
from automation.messages import (
    PROXY_TARGET,
    READY_SIGNAL,
    STATUS_SIGNAL,
    CommandBase,
    Credentials,
    DoNavigateCommand,
    InvalidMessageError,
    NavigatePayload,
    NavigationAction,
    OpenAndLoginCommand,
    ScanOptions,
    StartScanningCommand,
    StatusEvent,
    StopScanningCommand,
    parse_status,
)

log = logging.getLogger(__name__)

StatusListener = Callable[[StatusEvent], None]

DEFAULT_LIVENESS_TIMEOUT = 15.0
NAVIGATION_STEP_DELAY = 2.0


class HostAutomationClient:
    """Issue commands and subscribe to status events from the host side."""

    def __init__(
        self,
        window: MessagePort,
        *,
        liveness_timeout: Optional[float] = DEFAULT_LIVENESS_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self.liveness_timeout = liveness_timeout
        self._clock = clock
        self._last_announcement: Optional[float] = None
        self._listeners: List[StatusListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    def init(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.window.add_listener(self._on_window_message)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    @property
    def is_available(self) -> bool:
        if self._last_announcement is None:
            return False
        if self.liveness_timeout is None:
            return True
        return self._clock() - self._last_announcement <= self.liveness_timeout

    def on_status_update(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def login(self, username: str, password: str) -> bool:
        if not self.is_available:
            log.warning("Automation not available; is the bridge attached?")
            return False
        return self._send(OpenAndLoginCommand(payload=Credentials(username=username, password=password)))

    def navigate(self, action: NavigationAction | str, data: Optional[Mapping[str, Any]] = None) -> bool:
        if not self.is_available:
            return False
        payload = NavigatePayload(action=NavigationAction(action), data=dict(data or {}))
        return self._send(DoNavigateCommand(payload=payload))

    def start_scanning(self, retry_delay: Optional[float] = None, group_size: Optional[int] = None) -> bool:
        if not self.is_available:
            return False
        options = ScanOptions(retry_delay=retry_delay, group_size=group_size)
        return self._send(StartScanningCommand(payload=options))

    def stop_scanning(self) -> bool:
        if not self.is_available:
            return False
        return self._send(StopScanningCommand())

    async def navigate_to_booking(
        self,
        permit_type: str,
        group_number: int | str,
        *,
        step_delay: float = NAVIGATION_STEP_DELAY,
    ) -> bool:
        """Walk the reservation flow: permits, new request, permit type, filter, companions."""

        permit_action = (
            NavigationAction.CLICK_WOMEN_PERMIT
            if str(permit_type).lower() in {"women", "woman", "female"}
            else NavigationAction.CLICK_MEN_PERMIT
        )
        steps: Sequence[tuple[NavigationAction, Dict[str, Any]]] = (
            (NavigationAction.CLICK_PERMITS, {}),
            (NavigationAction.CLICK_ADD_REQUEST, {}),
            (permit_action, {}),
            (NavigationAction.CLICK_FILTER, {"groupNumber": str(group_number)}),
            (NavigationAction.CLICK_SELECT_PEOPLE, {}),
        )
        for index, (action, data) in enumerate(steps):
            if index:
                await asyncio.sleep(step_delay)
            if not self.navigate(action, data):
                log.warning("Navigation sequence interrupted at %s", action.value)
                return False
        return True

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _send(self, command: CommandBase) -> bool:
        try:
            self.window.post({"target": PROXY_TARGET, "payload": command.to_message()})
        except ContextInvalidatedError as exc:
            log.warning("Host window closed, %s not sent: %s", command.type, exc)
            return False
        return True

    def _on_window_message(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        kind = message.get("type")
        if kind == READY_SIGNAL:
            if self._last_announcement is None:
                log.info("Automation bridge detected")
            self._last_announcement = self._clock()
        elif kind == STATUS_SIGNAL:
            try:
                status = parse_status(message.get("payload"))
            except InvalidMessageError as exc:
                log.warning("Ignoring malformed status: %s", exc)
                return
            for listener in list(self._listeners):
                try:
                    listener(status)
                except Exception:
                    log.exception("Status listener failed")
