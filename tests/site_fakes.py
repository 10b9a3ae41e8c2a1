"""In-memory stand-ins for the DOM executor used by site controller tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from site_agent.dom_executor import ElementRef, ElementWaitTimeout


class FakeExecutor:
    """Very small page model: elements are keyed by selector, text or field strategy."""

    def __init__(self, url: str = "https://masar.nusuk.sa/pub/login") -> None:
        self.url = url
        self.present: Dict[str, ElementRef] = {}
        self.texts: Dict[str, ElementRef] = {}
        self.fields: Dict[str, ElementRef] = {}
        self.time_slots: List[ElementRef] = []
        self.values: Dict[str, List[str]] = {}
        self.actions: List[tuple[str, str]] = []
        self.on_click: Dict[str, Callable[[], None]] = {}
        self.badge: Optional[tuple[str, str]] = None
        self._seq = 0

    def element(self, text: str = "", tag: str = "button") -> ElementRef:
        self._seq += 1
        return ElementRef(ref=str(self._seq), tag=tag, text=text)

    def add(self, selector: str, text: str = "") -> ElementRef:
        element = self.element(text)
        self.present[selector] = element
        return element

    def add_text(self, text: str) -> ElementRef:
        element = self.element(text)
        self.texts[text] = element
        return element

    def add_field(self, strategy_value: str) -> ElementRef:
        element = self.element(tag="input")
        self.fields[strategy_value] = element
        return element

    def clicked(self) -> List[str]:
        return [ref for action, ref in self.actions if action == "click"]

    # executor surface -------------------------------------------------
    async def find_field(self, strategies: Sequence[Any]) -> Optional[ElementRef]:
        for strategy in strategies:
            if strategy.value in self.fields:
                return self.fields[strategy.value]
        return None

    async def find_by_text(self, tags: str, texts: Sequence[str], *, case_sensitive: bool = False):
        for text in texts:
            if text in self.texts:
                return self.texts[text]
        return None

    async def query(self, selector: str, *, visible_only: bool = True) -> Optional[ElementRef]:
        return self.present.get(selector)

    async def query_all(self, selector: str, *, visible_only: bool = True) -> List[ElementRef]:
        found = self.present.get(selector)
        return [found] if found else []

    async def first_matching(self, selectors: Sequence[str]) -> Optional[ElementRef]:
        for selector in selectors:
            if selector in self.present:
                return self.present[selector]
        return None

    async def find_time_slots(self, selector: str) -> List[ElementRef]:
        return list(self.time_slots)

    async def text_of(self, element: ElementRef) -> Optional[str]:
        return element.text

    async def set_value(self, element: ElementRef, value: str) -> bool:
        self.actions.append(("set_value", element.ref))
        self.values.setdefault(element.ref, []).append(value)
        return True

    async def clear_and_type(self, element: ElementRef, value: str) -> bool:
        self.actions.append(("clear_and_type", element.ref))
        self.values.setdefault(element.ref, []).append(value)
        return True

    async def click(self, element: ElementRef) -> bool:
        self.actions.append(("click", element.ref))
        hook = self.on_click.get(element.ref)
        if hook is not None:
            hook()
        return True

    async def press_enter(self, element: ElementRef) -> bool:
        self.actions.append(("press_enter", element.ref))
        return True

    async def highlight(self, element: ElementRef, border: str) -> bool:
        self.actions.append(("highlight", element.ref))
        return True

    async def wait_for_element(self, selector: str, timeout: float = 5.0, *, visible_only: bool = True):
        if selector in self.present:
            return self.present[selector]
        raise ElementWaitTimeout(selector, timeout)

    async def ensure_badge(self) -> bool:
        if self.badge is not None:
            return False
        self.badge = ("#ccc", "")
        return True

    async def update_badge(self, color: str, message: str) -> bool:
        if self.badge is None:
            return False
        self.badge = (color, message)
        return True


class RecordingSleep:
    """Sleep replacement that records delays and yields once to the loop."""

    def __init__(self, on_sleep: Optional[Callable[[int, float], None]] = None) -> None:
        self.delays: List[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._on_sleep is not None:
            self._on_sleep(len(self.delays), delay)
        await asyncio.sleep(0)
