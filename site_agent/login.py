"""Login state machine for the reservation site."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from automation.messages import Credentials, NavigationAction, StatusType
from site_agent.config import Timings
from site_agent.dom_executor import DomActionExecutor, ElementRef, ElementWaitTimeout
from site_agent.navigation import Navigator
from site_agent.notify import StatusEmitter
from site_agent.strategies import (
    ANY_INPUT_SELECTOR,
    AUTHENTICATED_SELECTORS,
    AUTHENTICATED_TEXT_TAGS,
    AUTHENTICATED_TEXTS,
    LOGIN_ERROR_SELECTOR,
    OTP_SELECTOR,
    OTP_TEXT_TAGS,
    OTP_TEXTS,
    PASSWORD_FIELD,
    SUBMIT_FALLBACK_SELECTOR,
    SUBMIT_TEXTS,
    USERNAME_FIELD,
)

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class LoginState(str, Enum):
    IDLE = "IDLE"
    CHECKING_SESSION = "CHECKING_SESSION"
    ALREADY_LOGGED_IN = "ALREADY_LOGGED_IN"
    FILLING_CREDENTIALS = "FILLING_CREDENTIALS"
    AWAITING_SUBMIT_RESULT = "AWAITING_SUBMIT_RESULT"
    OTP_REQUIRED = "OTP_REQUIRED"
    LOGIN_SUCCEEDED = "LOGIN_SUCCEEDED"
    LOGIN_FAILED = "LOGIN_FAILED"


@dataclass(slots=True)
class SessionState:
    """Per page-load state of the site controller."""

    is_logged_in: bool = False
    otp_pending: bool = False
    last_activity_at: Optional[float] = None
    login_state: LoginState = LoginState.IDLE
    login_task: Optional["asyncio.Task[LoginState]"] = None

    @property
    def login_running(self) -> bool:
        return self.login_task is not None and not self.login_task.done()


async def is_logged_in(executor: DomActionExecutor) -> bool:
    if await executor.first_matching(AUTHENTICATED_SELECTORS) is not None:
        return True
    return await executor.find_by_text(AUTHENTICATED_TEXT_TAGS, AUTHENTICATED_TEXTS) is not None


async def find_otp_prompt(executor: DomActionExecutor) -> Optional[ElementRef]:
    found = await executor.query(OTP_SELECTOR)
    if found is not None:
        return found
    return await executor.find_by_text(OTP_TEXT_TAGS, OTP_TEXTS, case_sensitive=True)


class LoginFlow:
    """Drive one login attempt and report its outcome as status events."""

    def __init__(
        self,
        executor: DomActionExecutor,
        emitter: StatusEmitter,
        navigator: Navigator,
        *,
        session: Optional[SessionState] = None,
        timings: Timings = Timings(),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.emitter = emitter
        self.navigator = navigator
        self.session = session if session is not None else SessionState()
        self.timings = timings
        self._sleep = sleep
        self.state = LoginState.IDLE

    def _enter(self, state: LoginState) -> None:
        log.debug("Login state %s -> %s", self.state.value, state.value)
        self.state = state
        self.session.login_state = state
        self.session.is_logged_in = state in (LoginState.ALREADY_LOGGED_IN, LoginState.LOGIN_SUCCEEDED)
        self.session.otp_pending = state is LoginState.OTP_REQUIRED
        self.session.last_activity_at = time.time()

    async def run(self, credentials: Credentials) -> LoginState:
        self._enter(LoginState.CHECKING_SESSION)
        if await is_logged_in(self.executor):
            self._enter(LoginState.ALREADY_LOGGED_IN)
            await self.emitter.emit(StatusType.STATUS_LOGIN_SUCCESS, "Already logged in")
            await self.navigator.perform(NavigationAction.CLICK_PERMITS)
            return self.state

        self._enter(LoginState.FILLING_CREDENTIALS)
        if not await self._fill_credentials(credentials):
            self._enter(LoginState.LOGIN_FAILED)
            return self.state

        self._enter(LoginState.AWAITING_SUBMIT_RESULT)
        return await self._await_result()

    async def _fill_credentials(self, credentials: Credentials) -> bool:
        try:
            await self.executor.wait_for_element(ANY_INPUT_SELECTOR, self.timings.field_wait)
        except ElementWaitTimeout as exc:
            log.warning("Login form did not render: %s", exc)
            await self.emitter.error("Login form did not load in time")
            return False

        username = await self.executor.find_field(USERNAME_FIELD)
        password = await self.executor.find_field(PASSWORD_FIELD)
        if username is None or password is None:
            await self.emitter.error("Login fields not found")
            return False

        await self.emitter.info("Filling login credentials...")
        await self.executor.set_value(username, credentials.username)
        await self._sleep(self.timings.field_pause)
        await self.executor.set_value(password, credentials.password)
        await self._sleep(self.timings.field_pause)

        submit = await self.executor.find_by_text("button", SUBMIT_TEXTS)
        if submit is None:
            submit = await self.executor.query(SUBMIT_FALLBACK_SELECTOR)
        if submit is not None:
            await self._sleep(self.timings.submit_settle)
            await self.executor.click(submit)
        else:
            log.info("No submit control found, pressing Enter in the password field")
            await self.executor.press_enter(password)
        return True

    async def _await_result(self) -> LoginState:
        for _ in range(self.timings.login_poll_attempts):
            await self._sleep(self.timings.login_poll_interval)

            if await find_otp_prompt(self.executor) is not None:
                self._enter(LoginState.OTP_REQUIRED)
                await self.emitter.emit(StatusType.STATUS_OTP_NEEDED, "OTP required. Enter the code on the site.")
                return self.state

            if await is_logged_in(self.executor):
                self._enter(LoginState.LOGIN_SUCCEEDED)
                await self.emitter.emit(StatusType.STATUS_LOGIN_SUCCESS, "Login successful")
                await self._sleep(self.timings.post_login_delay)
                await self.navigator.perform(NavigationAction.CLICK_PERMITS)
                return self.state

            error = await self.executor.query(LOGIN_ERROR_SELECTOR)
            if error is not None:
                text = (await self.executor.text_of(error)) or error.text
                if text:
                    self._enter(LoginState.LOGIN_FAILED)
                    await self.emitter.error(text)
                    return self.state

        await self.emitter.info("Still waiting for the login result...")
        return self.state
