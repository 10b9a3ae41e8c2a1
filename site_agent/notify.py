"""Status emission and on-page feedback for the site controller."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

from playwright.async_api import Error as PlaywrightError

from automation.channels import ContextInvalidatedError, MessagePort
from automation.messages import STATUS_UPDATE_TARGET, StatusEvent, StatusType
from site_agent.dom_executor import DomActionExecutor

log = logging.getLogger(__name__)

BADGE_COLORS = {
    StatusType.ERROR: "#ff4444",
    StatusType.STATUS_FOUND_SLOT: "#4ade80",
}
BADGE_DEFAULT_COLOR = "#ccc"


class Notifier(Protocol):
    async def notify(self, kind: StatusType, message: str) -> None:
        ...


class NullNotifier:
    async def notify(self, kind: StatusType, message: str) -> None:
        return None


class BadgeNotifier:
    """Mirror status events on a fixed badge injected into the site page."""

    def __init__(self, executor: DomActionExecutor) -> None:
        self.executor = executor

    async def install(self) -> None:
        try:
            await self.executor.ensure_badge()
        except PlaywrightError as exc:
            log.debug("Status badge could not be injected: %s", exc)

    async def notify(self, kind: StatusType, message: str) -> None:
        color = BADGE_COLORS.get(kind, BADGE_DEFAULT_COLOR)
        try:
            if not await self.executor.update_badge(color, message):
                await self.executor.ensure_badge()
                await self.executor.update_badge(color, message)
        except PlaywrightError as exc:
            log.debug("Status badge update failed: %s", exc)


class StatusEmitter:
    """Send status events towards the coordinator and the on-page badge.

    Emission never raises: a closed runtime port only means nobody is
    listening any more.
    """

    def __init__(self, runtime: MessagePort, notifier: Optional[Notifier] = None) -> None:
        self.runtime = runtime
        self.notifier: Notifier = notifier or NullNotifier()
        self.sent: List[StatusEvent] = []

    async def emit(self, kind: StatusType, message: str, **extra: Any) -> StatusEvent:
        event = StatusEvent(type=kind, message=message, **extra)
        self.sent.append(event)
        del self.sent[:-50]
        log.info("[%s] %s", kind.value, message)
        try:
            self.runtime.post({"target": STATUS_UPDATE_TARGET, "payload": event.to_payload()})
        except ContextInvalidatedError as exc:
            log.warning("Status %s not delivered: %s", kind.value, exc)
        await self.notifier.notify(kind, message)
        return event

    async def info(self, message: str, **extra: Any) -> StatusEvent:
        return await self.emit(StatusType.INFO, message, **extra)

    async def error(self, message: str, **extra: Any) -> StatusEvent:
        return await self.emit(StatusType.ERROR, message, **extra)
