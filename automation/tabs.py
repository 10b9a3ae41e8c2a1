"""Shared browser tab registry used by the relay coordinator."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from automation.channels import MessagePort

log = logging.getLogger(__name__)

TAB_LOADING = "loading"
TAB_COMPLETE = "complete"


class TabNotFoundError(LookupError):
    """Raised when a message targets a tab that no longer exists."""


@dataclass(slots=True)
class Tab:
    tab_id: int
    url: str
    status: str = TAB_LOADING
    active: bool = False
    port: MessagePort = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.port is None:
            self.port = MessagePort(f"tab-{self.tab_id}")


TabOpener = Callable[["TabRegistry", str], Awaitable[Tab]]
UpdateListener = Callable[[int, Dict[str, Any]], None]
RemoveListener = Callable[[int], None]


def url_matches(url: str, patterns: Iterable[str]) -> bool:
    """Match ``url`` against Chrome style ``*`` match patterns."""

    return any(fnmatchcase(url, pattern) for pattern in patterns)


class TabRegistry:
    """In-memory view of the open tabs and their message ports.

    ``create`` delegates to an opener so the Playwright runtime can back tabs
    with real pages while tests use plain records.
    """

    def __init__(self, opener: Optional[TabOpener] = None) -> None:
        self._tabs: Dict[int, Tab] = {}
        self._ids = itertools.count(1)
        self._opener = opener
        self._update_listeners: List[UpdateListener] = []
        self._remove_listeners: List[RemoveListener] = []

    def register(self, url: str, *, status: str = TAB_COMPLETE) -> Tab:
        tab = Tab(tab_id=next(self._ids), url=url, status=status)
        self._tabs[tab.tab_id] = tab
        log.debug("Registered tab %s (%s, %s)", tab.tab_id, url, status)
        return tab

    def remove(self, tab_id: int) -> None:
        tab = self._tabs.pop(tab_id, None)
        if tab is not None:
            tab.port.close()
            log.debug("Removed tab %s", tab_id)
            _notify(self._remove_listeners, tab_id)

    def get(self, tab_id: int) -> Optional[Tab]:
        return self._tabs.get(tab_id)

    def query(self, patterns: Iterable[str]) -> List[Tab]:
        patterns = list(patterns)
        return [tab for tab in self._tabs.values() if url_matches(tab.url, patterns)]

    def activate(self, tab_id: int) -> None:
        if tab_id not in self._tabs:
            raise TabNotFoundError(f"tab {tab_id} does not exist")
        for tab in self._tabs.values():
            tab.active = tab.tab_id == tab_id

    def update(self, tab_id: int, *, url: Optional[str] = None, status: Optional[str] = None) -> None:
        tab = self._tabs.get(tab_id)
        if tab is None:
            return
        info: Dict[str, Any] = {}
        if url is not None and url != tab.url:
            tab.url = url
            info["url"] = url
        if status is not None:
            tab.status = status
            info["status"] = status
        if not info:
            return
        _notify(self._update_listeners, tab_id, info)

    def on_updated(self, listener: UpdateListener) -> Callable[[], None]:
        return _subscribe(self._update_listeners, listener)

    def on_removed(self, listener: RemoveListener) -> Callable[[], None]:
        return _subscribe(self._remove_listeners, listener)

    def send_message(self, tab_id: int, message: Any) -> None:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise TabNotFoundError(f"tab {tab_id} does not exist")
        tab.port.post(message)

    async def create(self, url: str) -> Tab:
        if self._opener is None:
            tab = self.register(url, status=TAB_LOADING)
        else:
            tab = await self._opener(self, url)
        self.activate(tab.tab_id)
        return tab

    def __len__(self) -> int:
        return len(self._tabs)


def _subscribe(listeners: List[Any], listener: Any) -> Callable[[], None]:
    listeners.append(listener)

    def _unsubscribe() -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass

    return _unsubscribe


def _notify(listeners: List[Any], tab_id: int, *args: Any) -> None:
    for listener in list(listeners):
        try:
            listener(tab_id, *args)
        except Exception:
            log.exception("Tab listener failed for tab %s", tab_id)
