"""Periodic slot scanning and the booking attempt it drives."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from automation.messages import DEFAULT_RETRY_DELAY, NavigationAction, ScanOptions, StatusType
from site_agent.booking import AttemptOutcome, BookingPlan
from site_agent.config import Timings
from site_agent.dom_executor import DomActionExecutor, ElementRef, ElementWaitTimeout
from site_agent.navigation import Navigator
from site_agent.notify import StatusEmitter
from site_agent.strategies import (
    CONFIRM_FALLBACK_SELECTOR,
    CONFIRM_TEXTS,
    DAY_SELECTORS,
    HIGHLIGHT_CONFIRM,
    HIGHLIGHT_FOUND,
    TIME_CONTAINER_SELECTOR,
    TIME_SLOT_SELECTOR,
)

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Tick = Callable[["ScanHandle"], Awaitable[Optional[float]]]


@dataclass(slots=True, eq=False)
class ScanHandle:
    """One started timer. A stopped or replaced handle never becomes live again."""

    task: Optional["asyncio.Task[None]"] = None
    cancelled: bool = False
    sleeping: bool = False


class ScanSession:
    """Own the repeating scan timer.

    ``start`` replaces any running timer and ticks immediately, ``stop`` is
    safe at any point: a sleeping timer is cancelled outright, a tick in
    progress finishes its current DOM action and the loop exits after it.
    The tick may return a delay that overrides the interval once.
    """

    def __init__(self, tick: Tick, *, sleep: Sleep = asyncio.sleep) -> None:
        self._tick = tick
        self._sleep = sleep
        self._handle: Optional[ScanHandle] = None
        self._last: Optional[ScanHandle] = None
        self.interval = DEFAULT_RETRY_DELAY

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def start(self, interval: Optional[float] = None) -> None:
        self.stop()
        self.interval = interval if interval and interval > 0 else DEFAULT_RETRY_DELAY
        handle = ScanHandle()
        handle.task = asyncio.get_running_loop().create_task(self._run(handle))
        self._handle = self._last = handle
        log.info("Scanning started (every %.1fs)", self.interval)

    def stop(self, handle: Optional[ScanHandle] = None) -> bool:
        """Stop the live timer, or only ``handle`` when given and still live."""

        if self._handle is None or (handle is not None and handle is not self._handle):
            return False
        handle, self._handle = self._handle, None
        handle.cancelled = True
        if handle.sleeping and handle.task is not None:
            handle.task.cancel()
        log.info("Scanning stopped")
        return True

    async def join(self) -> None:
        """Wait for the most recently started timer to finish."""

        handle = self._last
        if handle is None or handle.task is None:
            return
        try:
            await handle.task
        except asyncio.CancelledError:
            pass

    async def _run(self, handle: ScanHandle) -> None:
        while not handle.cancelled:
            try:
                override = await self._tick(handle)
            except Exception:
                log.exception("Scan tick failed")
                override = None
            if handle.cancelled:
                return
            delay = self.interval if override is None else override
            handle.sleeping = True
            try:
                await self._sleep(delay)
            finally:
                handle.sleeping = False


class SlotScanner:
    """Look for an open day, pick a time and confirm, shrinking the group on failure."""

    def __init__(
        self,
        executor: DomActionExecutor,
        emitter: StatusEmitter,
        navigator: Navigator,
        *,
        timings: Timings = Timings(),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.emitter = emitter
        self.navigator = navigator
        self.timings = timings
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.session = ScanSession(self.scan_once, sleep=sleep)
        self.plan = BookingPlan()

    @property
    def active(self) -> bool:
        return self.session.active

    def start(self, options: Optional[ScanOptions] = None) -> None:
        options = options or ScanOptions()
        self.plan = BookingPlan.for_group(options.group_size)
        self.session.start(options.retry_delay)

    def stop(self) -> bool:
        return self.session.stop()

    async def scan_once(self, handle: Optional[ScanHandle] = None) -> Optional[float]:
        async with self._lock:
            if _stopped(handle):
                return None
            plan = self.plan
            if plan.filter_pending:
                await self._apply_group_filter(plan)

            day = await self.executor.first_matching(DAY_SELECTORS)
            if day is None:
                await self.emitter.info("No slots found. Retrying...")
                return None

            log.info("Available day found: %s", day.text or day.ref)
            await self.executor.highlight(day, HIGHLIGHT_FOUND)
            await self.executor.click(day)

            slots = []
            try:
                await self.executor.wait_for_element(TIME_CONTAINER_SELECTOR, self.timings.slot_wait)
                slots = await self.executor.find_time_slots(TIME_SLOT_SELECTOR)
            except ElementWaitTimeout as exc:
                log.info("Time slots did not appear: %s", exc)
            if _stopped(handle):
                return None
            if not slots:
                await self.emitter.info("Day selected but no valid time available. Retrying...")
                return await self._failed(plan, AttemptOutcome.NO_TIME, day.text)

            slot = slots[0]
            await self.emitter.emit(
                StatusType.STATUS_FOUND_SLOT,
                f"Slot found: {slot.text}",
                time=slot.text,
                groupSize=plan.group_size,
            )
            await self.executor.highlight(slot, HIGHLIGHT_FOUND)
            await self.executor.click(slot)
            await self._sleep(self.timings.confirm_settle)
            if _stopped(handle):
                log.info("Scanning stopped before confirming %s", slot.text)
                return None

            confirm = await self.executor.find_by_text("button", CONFIRM_TEXTS)
            if confirm is None:
                confirm = await self.executor.query(CONFIRM_FALLBACK_SELECTOR)
            if confirm is None or not await self._confirm(confirm):
                await self.emitter.error("Time removed or expired")
                return await self._failed(plan, AttemptOutcome.CONFIRM_MISSING, slot.text)

            return await self._booked(plan, handle, slot.text)

    async def _confirm(self, confirm: ElementRef) -> bool:
        await self.executor.highlight(confirm, HIGHLIGHT_CONFIRM)
        return await self.executor.click(confirm)

    async def _apply_group_filter(self, plan: BookingPlan) -> None:
        plan.filter_pending = False
        size = plan.group_size
        if not await self.navigator.perform(NavigationAction.CLICK_FILTER, {"groupNumber": str(size)}):
            log.warning("Could not apply group size %s", size)

    async def _failed(self, plan: BookingPlan, outcome: AttemptOutcome, detail: str) -> Optional[float]:
        previous = plan.group_size
        if not plan.record_failure(outcome, detail):
            return None
        log.info("Group size reduced %s -> %s", previous, plan.group_size)
        await self.emitter.info(
            f"Booking for {previous} failed, retrying with {plan.group_size}",
            groupSize=plan.group_size,
        )
        return self.timings.fast_retry

    async def _booked(self, plan: BookingPlan, handle: Optional[ScanHandle], detail: str) -> Optional[float]:
        booked = plan.group_size
        remaining = plan.record_success(detail)
        if remaining == 0:
            self.session.stop(handle)
            if plan.target > 1:
                message = f"All {plan.target} companions booked. Scanning stopped."
            else:
                message = "Confirm clicked, waiting for confirmation. Scanning stopped."
            await self.emitter.info(message, verified=False, booked=plan.booked)
            return None
        await self.emitter.info(
            f"Booked {booked}, {remaining} remaining. Waiting for confirmation...",
            verified=False,
            booked=plan.booked,
            remaining=remaining,
        )
        return None


def _stopped(handle: Optional[ScanHandle]) -> bool:
    return handle is not None and handle.cancelled
