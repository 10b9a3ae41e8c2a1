"""Three-hop message relay between the host application and the target site.

``HostProxy`` lives next to the host page: it sees the host window port and
can reach the coordinator through the runtime port.  ``Coordinator`` is the
privileged context that owns the tab registry: it routes commands to a target
site tab, opening one when needed, and broadcasts status events to every host
tab.  Neither hop acknowledges anything; a message with no reachable
destination is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Mapping, Optional, Sequence

from automation.channels import ContextInvalidatedError, MessagePort
from automation.messages import (
    COORDINATOR_TARGET,
    PROXY_RECEIVE_TARGET,
    PROXY_TARGET,
    READY_SIGNAL,
    SITE_TARGET,
    STATUS_SIGNAL,
    STATUS_UPDATE_TARGET,
    CommandBase,
    DoLoginCommand,
    InvalidMessageError,
    OpenAndLoginCommand,
    parse_command,
    parse_status,
)
from automation.tabs import TAB_COMPLETE, Tab, TabNotFoundError, TabRegistry

log = logging.getLogger(__name__)

DEFAULT_SITE_PATTERNS = ("https://masar.nusuk.sa/*",)
DEFAULT_SITE_LOGIN_URL = "https://masar.nusuk.sa/pub/login"
DEFAULT_HOST_PATTERNS = ("http://localhost:*/*", "http://127.0.0.1:*/*")


class HostProxy:
    """Bridge between the host window and the coordinator runtime port."""

    def __init__(
        self,
        window: MessagePort,
        tab: Tab,
        runtime: MessagePort,
        *,
        announce_interval: Optional[float] = None,
    ) -> None:
        self.window = window
        self.tab = tab
        self.runtime = runtime
        self.announce_interval = announce_interval
        self._unsubscribers: List[Callable[[], None]] = []
        self._heartbeat: Optional[asyncio.Task[None]] = None

    def attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers.append(self.window.add_listener(self._on_window_message))
        self._unsubscribers.append(self.tab.port.add_listener(self._on_tab_message))
        log.info("Host proxy attached to tab %s (%s)", self.tab.tab_id, self.tab.url)
        self.announce()
        if self.announce_interval and self.announce_interval > 0:
            self._heartbeat = asyncio.get_running_loop().create_task(self._announce_periodically())

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    def announce(self) -> None:
        try:
            self.window.post({"type": READY_SIGNAL, "timestamp": time.time()})
        except ContextInvalidatedError as exc:
            log.warning("Could not announce host proxy: %s", exc)

    async def _announce_periodically(self) -> None:
        if not self.announce_interval:
            return
        while True:
            await asyncio.sleep(self.announce_interval)
            if self.window.closed:
                return
            self.announce()

    def _on_window_message(self, message: Any) -> None:
        if not isinstance(message, Mapping) or message.get("target") != PROXY_TARGET:
            return
        try:
            command = parse_command(message.get("payload"))
        except InvalidMessageError as exc:
            log.warning("Host proxy dropped malformed command: %s", exc)
            return
        log.info("Host proxy forwarding %s", command.type)
        try:
            self.runtime.post({"target": COORDINATOR_TARGET, "data": command.to_message()})
        except ContextInvalidatedError as exc:
            log.warning("Failed to relay %s (runtime invalidated?): %s", command.type, exc)

    def _on_tab_message(self, message: Any) -> None:
        if not isinstance(message, Mapping) or message.get("target") != PROXY_RECEIVE_TARGET:
            return
        try:
            self.window.post({"type": STATUS_SIGNAL, "payload": message.get("payload")})
        except ContextInvalidatedError as exc:
            log.warning("Host window gone, status dropped: %s", exc)


class Coordinator:
    """Privileged relay hop with access to every tab."""

    def __init__(
        self,
        tabs: TabRegistry,
        runtime: MessagePort,
        *,
        site_patterns: Sequence[str] = DEFAULT_SITE_PATTERNS,
        site_login_url: str = DEFAULT_SITE_LOGIN_URL,
        host_patterns: Sequence[str] = DEFAULT_HOST_PATTERNS,
    ) -> None:
        self.tabs = tabs
        self.runtime = runtime
        self.site_patterns = tuple(site_patterns)
        self.site_login_url = site_login_url
        self.host_patterns = tuple(host_patterns)
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.runtime.add_listener(self._on_runtime_message)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_runtime_message(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        target = message.get("target")
        if target == COORDINATOR_TARGET:
            await self.route_command(message.get("data"))
        elif target == STATUS_UPDATE_TARGET:
            self.broadcast_status(message.get("payload"))

    async def route_command(self, raw: Any) -> None:
        try:
            command = parse_command(raw)
        except InvalidMessageError as exc:
            log.warning("Coordinator dropped malformed command: %s", exc)
            return

        outgoing = self._site_message(command)
        existing = self.tabs.query(self.site_patterns)
        if existing:
            tab = existing[0]
            try:
                self.tabs.activate(tab.tab_id)
            except TabNotFoundError:
                pass
            self._deliver(tab.tab_id, outgoing)
            return

        log.info("No target site tab open, opening %s for %s", self.site_login_url, command.type)
        try:
            tab = await self.tabs.create(self.site_login_url)
        except Exception:
            log.exception("Failed to open target site tab for %s", command.type)
            return
        self._deliver_when_complete(tab, outgoing)

    def broadcast_status(self, payload: Any) -> None:
        try:
            status = parse_status(payload)
        except InvalidMessageError as exc:
            log.warning("Coordinator dropped malformed status: %s", exc)
            return
        message = {"target": PROXY_RECEIVE_TARGET, "payload": status.to_payload()}
        for tab in self.tabs.query(self.host_patterns):
            self._deliver(tab.tab_id, message)

    def _site_message(self, command: CommandBase) -> dict:
        if isinstance(command, OpenAndLoginCommand):
            command = DoLoginCommand(payload=command.payload)
        return command.retarget(SITE_TARGET).to_message()

    def _deliver(self, tab_id: int, message: dict) -> None:
        try:
            self.tabs.send_message(tab_id, message)
        except (TabNotFoundError, ContextInvalidatedError) as exc:
            log.warning("Message to tab %s dropped: %s", tab_id, exc)

    def _deliver_when_complete(self, tab: Tab, message: dict) -> None:
        if tab.status == TAB_COMPLETE:
            self._deliver(tab.tab_id, message)
            return

        unsubscribers: List[Callable[[], None]] = []

        def _release() -> None:
            while unsubscribers:
                unsubscribers.pop()()

        def _on_updated(tab_id: int, info: dict) -> None:
            if tab_id != tab.tab_id or info.get("status") != TAB_COMPLETE:
                return
            _release()
            self._deliver(tab_id, message)

        def _on_removed(tab_id: int) -> None:
            if tab_id != tab.tab_id:
                return
            _release()
            log.warning("Tab %s closed before it finished loading, %s dropped", tab_id, message.get("type"))

        unsubscribers.append(self.tabs.on_updated(_on_updated))
        unsubscribers.append(self.tabs.on_removed(_on_removed))
