"""Command dispatcher that runs inside the target site tab."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from playwright.async_api import Error as PlaywrightError

from automation.channels import MessagePort
from automation.messages import (
    SITE_TARGET,
    CommandBase,
    Credentials,
    DoLoginCommand,
    DoNavigateCommand,
    InvalidMessageError,
    OpenAndLoginCommand,
    StartScanningCommand,
    StopScanningCommand,
    parse_command,
)
from site_agent.config import Timings
from site_agent.dom_executor import DomActionExecutor
from site_agent.login import LoginFlow, LoginState, SessionState
from site_agent.navigation import Navigator
from site_agent.notify import BadgeNotifier, Notifier, StatusEmitter
from site_agent.scanner import SlotScanner

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SiteAutomationController:
    """Receive relay commands on the site tab port and act on the page.

    Handlers never raise into the relay: browser failures are logged and
    surfaced as ``ERROR`` status events.
    """

    def __init__(
        self,
        executor: DomActionExecutor,
        tab_port: MessagePort,
        runtime: MessagePort,
        *,
        notifier: Optional[Notifier] = None,
        timings: Timings = Timings(),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.tab_port = tab_port
        self.notifier = notifier if notifier is not None else BadgeNotifier(executor)
        self.emitter = StatusEmitter(runtime, self.notifier)
        self.navigator = Navigator(executor)
        self.timings = timings
        self._sleep = sleep
        self.scanner = SlotScanner(executor, self.emitter, self.navigator, timings=timings, sleep=sleep)
        self.session = SessionState()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.tab_port.add_listener(self.handle_message)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.scanner.stop()
        if self.session.login_running:
            self.session.login_task.cancel()

    async def on_page_load(self) -> None:
        """Re-inject the page badge after a navigation; timers keep running."""

        if not self.session.login_running:
            self.session = SessionState()
        if isinstance(self.notifier, BadgeNotifier):
            await self.notifier.install()

    async def handle_message(self, message: Any) -> None:
        if not isinstance(message, Mapping) or message.get("target") != SITE_TARGET:
            return
        try:
            command = parse_command(message)
        except InvalidMessageError as exc:
            log.warning("Site controller ignored malformed command: %s", exc)
            return
        await self.dispatch(command)

    async def dispatch(self, command: CommandBase) -> None:
        log.info("Site controller received %s", command.type)
        try:
            if isinstance(command, (DoLoginCommand, OpenAndLoginCommand)):
                self.start_login(command.payload)
            elif isinstance(command, DoNavigateCommand):
                await self.navigator.perform(command.payload.action, command.payload.data)
            elif isinstance(command, StartScanningCommand):
                self.scanner.start(command.payload)
            elif isinstance(command, StopScanningCommand):
                self.scanner.stop()
        except PlaywrightError as exc:
            log.exception("Browser error while handling %s", command.type)
            await self.emitter.error(f"Automation error: {exc}")

    def start_login(self, credentials: Credentials) -> Optional["asyncio.Task[LoginState]"]:
        if self.session.login_running:
            log.info("Login already in progress, ignoring duplicate request")
            return None
        task = asyncio.get_running_loop().create_task(self._run_login(credentials))
        self.session.login_task = task
        return task

    async def _run_login(self, credentials: Credentials) -> LoginState:
        flow = LoginFlow(
            self.executor,
            self.emitter,
            self.navigator,
            session=self.session,
            timings=self.timings,
            sleep=self._sleep,
        )
        try:
            return await flow.run(credentials)
        except PlaywrightError as exc:
            log.exception("Browser error during login")
            await self.emitter.error(f"Automation error: {exc}")
            self.session.login_state = LoginState.LOGIN_FAILED
            return LoginState.LOGIN_FAILED
