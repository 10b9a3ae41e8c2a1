"""Playwright backed runtime wiring the relay, site controllers and host client.

``AutomationManager`` owns a private event loop running in a daemon thread.
Every browser tab becomes a :class:`~automation.tabs.Tab` with its own
message port and a :class:`SiteAutomationController`; the host application
is a virtual tab whose window port is shared by the host proxy and the
host client.  The public methods are synchronous so the Flask host can call
them from request threads.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Frame,
    Page,
    Playwright,
    async_playwright,
)

from automation.channels import MessagePort
from automation.client import HostAutomationClient
from automation.messages import NavigationAction, StatusEvent
from automation.relay import Coordinator, HostProxy
from automation.tabs import TAB_COMPLETE, TAB_LOADING, Tab, TabRegistry, url_matches
from site_agent.config import RunConfig, Timings, ensure_run_directory, load_config
from site_agent.controller import SiteAutomationController
from site_agent.dom_executor import DomActionExecutor
from site_agent.structured_logging import StatusJournal, prepare_log_paths

log = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 100
CALL_TIMEOUT = 30.0


def _json_version_url(base: str) -> str:
    working = (base or "").strip()
    if not working:
        return ""
    if "://" not in working:
        working = f"http://{working}"
    try:
        parsed = urlsplit(working)
    except ValueError:
        return ""
    scheme = "https" if parsed.scheme in {"https", "wss"} else "http"
    return urlunsplit((scheme, parsed.netloc, "/json/version", "", ""))


async def _wait_cdp(endpoint: str, *, timeout: float = 6.0, poll_interval: float = 0.25) -> bool:
    version_url = _json_version_url(endpoint)
    if not version_url:
        return False
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(timeout, 1.0)
    async with httpx.AsyncClient(timeout=2.0) as client:
        while loop.time() < deadline:
            try:
                response = await client.get(version_url)
                if response.status_code == 200:
                    return True
            except httpx.HTTPError as exc:
                log.debug("CDP endpoint %s not ready: %s", version_url, exc)
            await asyncio.sleep(poll_interval)
    log.warning("Timed out waiting for CDP endpoint %s", version_url)
    return False


class AutomationManager:
    def __init__(
        self,
        config: Optional[RunConfig] = None,
        *,
        run_id: Optional[str] = None,
        timings: Timings = Timings(),
    ) -> None:
        self.config = config or load_config()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.timings = timings
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="autobook-loop", daemon=True)
        self._thread.start()
        self._lock = threading.Lock()
        self._events: Deque[Dict[str, Any]] = deque(maxlen=RECENT_EVENT_LIMIT)
        self._journal = StatusJournal(
            self.run_id, prepare_log_paths(ensure_run_directory(self.run_id, self.config))
        )
        self._started = False

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._pages: Dict[Page, Tab] = {}
        self._controllers: Dict[int, SiteAutomationController] = {}
        self.runtime: Optional[MessagePort] = None
        self.window: Optional[MessagePort] = None
        self.tabs: Optional[TabRegistry] = None
        self.coordinator: Optional[Coordinator] = None
        self.proxy: Optional[HostProxy] = None
        self.client: Optional[HostAutomationClient] = None

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call(self, coro, timeout: float = CALL_TIMEOUT) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._call(self._start(), timeout=120.0)
            self._started = True
        log.info("Automation runtime %s started", self.run_id)

    async def _start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser, self._context = await self._connect_browser(self._playwright)

        self.runtime = MessagePort("runtime")
        self.window = MessagePort("host-window")
        self.tabs = TabRegistry(opener=self._open_tab)
        self.coordinator = Coordinator(
            self.tabs,
            self.runtime,
            site_patterns=self.config.site_url_patterns,
            site_login_url=self.config.site_login_url,
            host_patterns=self.config.host_url_patterns,
        )
        self.coordinator.start()

        host_tab = self.tabs.register(self.config.host_url)
        self.client = HostAutomationClient(self.window, liveness_timeout=self.config.liveness_timeout)
        self.client.init()
        self.client.on_status_update(self._record_status)
        self.proxy = HostProxy(
            self.window,
            host_tab,
            self.runtime,
            announce_interval=self.config.announce_interval,
        )
        self.proxy.attach()

        self._context.on("page", self._adopt_page)
        for page in list(self._context.pages):
            self._adopt_page(page)

    async def _connect_browser(self, playwright: Playwright) -> tuple[Browser, BrowserContext]:
        endpoint = self.config.cdp_url
        if endpoint and await _wait_cdp(endpoint):
            try:
                browser = await playwright.chromium.connect_over_cdp(endpoint)
                context = browser.contexts[0] if browser.contexts else await browser.new_context()
                log.info("Connected to shared browser via %s", endpoint)
                return browser, context
            except PlaywrightError as exc:
                log.warning("CDP connection to %s failed, launching Chromium: %s", endpoint, exc)
        browser = await playwright.chromium.launch(headless=self.config.headless)
        context = await browser.new_context()
        return browser, context

    def shutdown(self) -> None:
        if self._started:
            try:
                self._call(self._stop(), timeout=15.0)
            except Exception as exc:
                log.debug("Automation runtime shutdown failed: %s", exc)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._journal.close()

    async def _stop(self) -> None:
        for controller in list(self._controllers.values()):
            controller.detach()
        self._controllers.clear()
        if self.proxy is not None:
            self.proxy.detach()
        if self.client is not None:
            self.client.close()
        if self.coordinator is not None:
            self.coordinator.stop()
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as exc:
                log.debug("Browser close failed: %s", exc)
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            await playwright.stop()

    # ------------------------------------------------------------------
    # tabs
    # ------------------------------------------------------------------
    def _adopt_page(self, page: Page) -> Tab:
        existing = self._pages.get(page)
        if existing is not None:
            return existing
        assert self.tabs is not None and self.runtime is not None
        tab = self.tabs.register(page.url, status=TAB_COMPLETE)
        self._pages[page] = tab
        controller = SiteAutomationController(
            DomActionExecutor(page), tab.port, self.runtime, timings=self.timings
        )
        controller.attach()
        self._controllers[tab.tab_id] = controller

        page.on("framenavigated", lambda frame: self._on_navigated(page, frame))
        page.on("load", lambda _page: self._loop.create_task(self._on_load(page)))
        page.on("close", lambda _page: self._on_close(page))
        log.debug("Adopted page %s as tab %s", page.url, tab.tab_id)
        return tab

    async def _open_tab(self, registry: TabRegistry, url: str) -> Tab:
        assert self._context is not None
        page = await self._context.new_page()
        tab = self._adopt_page(page)
        registry.update(tab.tab_id, url=url, status=TAB_LOADING)
        self._loop.create_task(self._goto(page, url))
        return tab

    async def _goto(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until="load")
        except PlaywrightError as exc:
            log.warning("Navigation to %s failed: %s", url, exc)

    def _on_navigated(self, page: Page, frame: Frame) -> None:
        tab = self._pages.get(page)
        if tab is None or self.tabs is None or frame != page.main_frame:
            return
        self.tabs.update(tab.tab_id, url=frame.url, status=TAB_LOADING)

    async def _on_load(self, page: Page) -> None:
        tab = self._pages.get(page)
        if tab is None or self.tabs is None:
            return
        self.tabs.update(tab.tab_id, url=page.url, status=TAB_COMPLETE)
        controller = self._controllers.get(tab.tab_id)
        if controller is not None and url_matches(page.url, self.config.site_url_patterns):
            await controller.on_page_load()

    def _on_close(self, page: Page) -> None:
        tab = self._pages.pop(page, None)
        if tab is None or self.tabs is None:
            return
        controller = self._controllers.pop(tab.tab_id, None)
        if controller is not None:
            controller.detach()
        self.tabs.remove(tab.tab_id)

    # ------------------------------------------------------------------
    # host facade
    # ------------------------------------------------------------------
    def _record_status(self, event: StatusEvent) -> None:
        with self._lock:
            self._events.append(event.to_payload())
        self._journal.record(event)

    async def _invoke(self, method: str, *args: Any, **kwargs: Any) -> Any:
        assert self.client is not None
        return getattr(self.client, method)(*args, **kwargs)

    def is_available(self) -> bool:
        return self.client is not None and self.client.is_available

    def login(self, username: str, password: str) -> bool:
        return bool(self._call(self._invoke("login", username, password)))

    def navigate(self, action: NavigationAction | str, data: Optional[Mapping[str, Any]] = None) -> bool:
        return bool(self._call(self._invoke("navigate", action, data)))

    def navigate_sequence(self, permit_type: str, group_number: int | str) -> bool:
        """Queue the full navigation sequence; returns once it has been scheduled."""

        if not self.is_available():
            return False
        assert self.client is not None
        asyncio.run_coroutine_threadsafe(
            self.client.navigate_to_booking(
                permit_type, group_number, step_delay=self.config.navigation_step_delay
            ),
            self._loop,
        )
        return True

    def start_scanning(self, retry_delay: Optional[float] = None, group_size: Optional[int] = None) -> bool:
        delay = retry_delay if retry_delay is not None else self.config.default_retry_delay
        return bool(self._call(self._invoke("start_scanning", delay, group_size)))

    def stop_scanning(self) -> bool:
        return bool(self._call(self._invoke("stop_scanning")))

    def status_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            events: List[Dict[str, Any]] = list(self._events)
        return {"run_id": self.run_id, "available": self.is_available(), "events": events}
