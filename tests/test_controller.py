import asyncio

from playwright.async_api import Error as PlaywrightError

from automation.channels import MessagePort
from automation.messages import SITE_TARGET, STATUS_UPDATE_TARGET, StatusType
from site_agent.config import Timings
from site_agent.controller import SiteAutomationController
from site_agent.login import LoginState
from site_agent.notify import BadgeNotifier
from site_fakes import FakeExecutor, RecordingSleep

TIMINGS = Timings(login_poll_attempts=2)


def _controller(executor: FakeExecutor, runtime: MessagePort | None = None) -> SiteAutomationController:
    controller = SiteAutomationController(
        executor,
        MessagePort("tab-1"),
        runtime or MessagePort("runtime"),
        timings=TIMINGS,
        sleep=RecordingSleep(),
    )
    controller.attach()
    return controller


def test_ignores_messages_for_other_targets() -> None:
    async def main():
        executor = FakeExecutor()
        permits = executor.add_text("Permits")
        controller = _controller(executor)
        await controller.handle_message({"target": "SOMEONE_ELSE", "type": "DO_NAVIGATE"})
        await controller.handle_message({"target": SITE_TARGET, "type": "BOGUS"})
        await controller.handle_message(
            {"target": SITE_TARGET, "type": "DO_NAVIGATE", "payload": {"action": "CLICK_PERMITS"}}
        )
        return executor, permits

    executor, permits = asyncio.run(main())
    assert executor.clicked() == [permits.ref]


def test_messages_arrive_through_tab_port_and_status_reaches_runtime() -> None:
    async def main():
        executor = FakeExecutor()
        runtime = MessagePort("runtime")
        received: list = []
        runtime.add_listener(received.append)
        controller = _controller(executor, runtime)
        controller.tab_port.post({"target": SITE_TARGET, "type": "START_SCANNING", "payload": {"retryDelay": 0}})
        await controller.tab_port.drain()
        await asyncio.sleep(0)
        active = controller.scanner.active
        interval = controller.scanner.session.interval
        controller.tab_port.post({"target": SITE_TARGET, "type": "STOP_SCANNING"})
        await controller.tab_port.drain()
        await controller.scanner.session.join()
        await runtime.drain()
        return active, interval, controller.scanner.active, received

    active, interval, still_active, received = asyncio.run(main())

    assert active is True
    assert interval == 5.0
    assert still_active is False
    assert received
    assert received[0]["target"] == STATUS_UPDATE_TARGET
    assert received[0]["payload"]["type"] == "INFO"


def test_duplicate_login_is_ignored_while_running() -> None:
    async def main():
        executor = FakeExecutor()
        executor.add('a[href*="logout"]')
        controller = _controller(executor)
        message = {"target": SITE_TARGET, "type": "DO_LOGIN", "payload": {"username": "u", "password": "p"}}
        await controller.handle_message(message)
        first = controller.session.login_task
        await controller.handle_message(message)
        second = controller.session.login_task
        state = await first
        return first, second, state, controller

    first, second, state, controller = asyncio.run(main())

    assert first is second
    assert state is LoginState.ALREADY_LOGGED_IN
    assert controller.session.login_state is LoginState.ALREADY_LOGGED_IN
    assert controller.session.is_logged_in is True
    assert [e.type for e in controller.emitter.sent] == [StatusType.STATUS_LOGIN_SUCCESS]


def test_browser_errors_become_error_status() -> None:
    class BrokenExecutor(FakeExecutor):
        async def find_by_text(self, tags, texts, *, case_sensitive=False):
            raise PlaywrightError("Execution context was destroyed")

    async def main():
        controller = _controller(BrokenExecutor())
        await controller.handle_message(
            {"target": SITE_TARGET, "type": "DO_NAVIGATE", "payload": {"action": "CLICK_PERMITS"}}
        )
        return controller.emitter.sent

    events = asyncio.run(main())

    assert [e.type for e in events] == [StatusType.ERROR]
    assert "Execution context was destroyed" in events[0].message


def test_page_load_installs_badge_and_status_updates_it() -> None:
    async def main():
        executor = FakeExecutor()
        controller = _controller(executor)
        assert isinstance(controller.notifier, BadgeNotifier)
        await controller.on_page_load()
        await controller.emitter.error("Time removed or expired")
        return executor.badge

    assert asyncio.run(main()) == ("#ff4444", "Time removed or expired")
