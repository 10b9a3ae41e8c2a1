import asyncio

from automation.channels import MessagePort
from automation.client import HostAutomationClient
from automation.messages import PROXY_TARGET, READY_SIGNAL, STATUS_SIGNAL, NavigationAction, StatusType


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _announce(window: MessagePort) -> None:
    window.post({"type": READY_SIGNAL, "timestamp": 0})


def test_unavailable_until_announced_and_stale_after_timeout() -> None:
    async def main():
        clock = FakeClock()
        window = MessagePort("window")
        client = HostAutomationClient(window, liveness_timeout=15.0, clock=clock)
        client.init()
        states = [client.is_available, client.login("user", "pw")]
        _announce(window)
        await window.drain()
        states.append(client.is_available)
        clock.now += 16
        states.append(client.is_available)
        return states

    assert asyncio.run(main()) == [False, False, True, False]


def test_one_shot_readiness_without_timeout() -> None:
    async def main():
        clock = FakeClock()
        window = MessagePort("window")
        client = HostAutomationClient(window, liveness_timeout=None, clock=clock)
        client.init()
        _announce(window)
        await window.drain()
        clock.now += 10_000
        return client.is_available

    assert asyncio.run(main()) is True


def test_commands_are_posted_to_the_proxy() -> None:
    async def main():
        window = MessagePort("window")
        client = HostAutomationClient(window)
        client.init()
        outbox: list = []
        window.add_listener(lambda m: outbox.append(m) if m.get("target") == PROXY_TARGET else None)
        _announce(window)
        await window.drain()
        assert client.login("1234567890", "pw")
        assert client.start_scanning(retry_delay=None, group_size=3)
        assert client.navigate(NavigationAction.CLICK_FILTER, {"groupNumber": "3"})
        assert client.stop_scanning()
        await window.drain()
        return outbox

    outbox = asyncio.run(main())
    payloads = [m["payload"] for m in outbox]

    assert [p["type"] for p in payloads] == ["OPEN_AND_LOGIN", "START_SCANNING", "DO_NAVIGATE", "STOP_SCANNING"]
    assert payloads[0]["payload"] == {"username": "1234567890", "password": "pw"}
    assert payloads[1]["payload"] == {"retryDelay": 5.0, "groupSize": 3}
    assert payloads[2]["payload"] == {"action": "CLICK_FILTER", "data": {"groupNumber": "3"}}


def test_status_events_fan_out_and_survive_bad_listeners() -> None:
    async def main():
        window = MessagePort("window")
        client = HostAutomationClient(window)
        client.init()
        seen: list = []

        def broken(event) -> None:
            raise RuntimeError("ui bug")

        client.on_status_update(broken)
        unsubscribe = client.on_status_update(seen.append)
        window.post({"type": STATUS_SIGNAL, "payload": {"type": "STATUS_FOUND_SLOT", "message": "09:30"}})
        window.post({"type": STATUS_SIGNAL, "payload": {"type": "NOT_A_STATUS"}})
        await window.drain()
        unsubscribe()
        window.post({"type": STATUS_SIGNAL, "payload": {"type": "INFO", "message": "later"}})
        await window.drain()
        return seen

    seen = asyncio.run(main())
    assert [(e.type, e.message) for e in seen] == [(StatusType.STATUS_FOUND_SLOT, "09:30")]


def test_navigate_to_booking_sends_the_full_sequence() -> None:
    async def main():
        window = MessagePort("window")
        client = HostAutomationClient(window)
        client.init()
        sent: list = []
        window.add_listener(lambda m: sent.append(m["payload"]) if m.get("target") == PROXY_TARGET else None)
        _announce(window)
        await window.drain()
        ok = await client.navigate_to_booking("women", 4, step_delay=0)
        await window.drain()
        return ok, sent

    ok, sent = asyncio.run(main())

    assert ok is True
    assert [p["payload"]["action"] for p in sent] == [
        "CLICK_PERMITS",
        "CLICK_ADD_REQUEST",
        "CLICK_WOMEN_PERMIT",
        "CLICK_FILTER",
        "CLICK_SELECT_PEOPLE",
    ]
    assert sent[3]["payload"]["data"] == {"groupNumber": "4"}
