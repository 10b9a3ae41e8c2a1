"""In-page DOM primitives used by the site controller.

Every lookup runs as a script inside the page and tags the element it found
with a ``data-autobook-ref`` attribute.  Python code only ever holds on to
that reference, so later actions re-resolve the element in the live DOM and
fail softly (``False``) when the page has re-rendered it away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Page

from site_agent.strategies import FieldStrategy

log = logging.getLogger(__name__)

REF_ATTRIBUTE = "data-autobook-ref"
BADGE_ID = "autobook-badge"
DEFAULT_ELEMENT_WAIT = 5.0


class ElementWaitTimeout(TimeoutError):
    """Raised when :meth:`DomActionExecutor.wait_for_element` gives up."""

    def __init__(self, selector: str, timeout: float) -> None:
        super().__init__(f"Timeout waiting for {selector} after {timeout:g}s")
        self.selector = selector
        self.timeout = timeout


@dataclass(frozen=True, slots=True)
class ElementRef:
    ref: str
    tag: str = ""
    text: str = ""

    @property
    def selector(self) -> str:
        return f'[{REF_ATTRIBUTE}="{self.ref}"]'

    @classmethod
    def from_result(cls, data: Any) -> Optional["ElementRef"]:
        if not isinstance(data, dict) or not data.get("ref"):
            return None
        return cls(ref=str(data["ref"]), tag=str(data.get("tag") or ""), text=str(data.get("text") or ""))


_HELPERS = """
        const refOf = (el) => {
            if (!el.hasAttribute('data-autobook-ref')) {
                window.__autobookRefSeq = (window.__autobookRefSeq || 0) + 1;
                el.setAttribute('data-autobook-ref', String(window.__autobookRefSeq));
            }
            return {
                ref: el.getAttribute('data-autobook-ref'),
                tag: el.tagName.toLowerCase(),
                text: (el.innerText || el.textContent || '').trim().slice(0, 160),
            };
        };
        const isVisible = (el) => !!el && el.offsetParent !== null;
        const byRef = (ref) => document.querySelector(`[data-autobook-ref="${ref}"]`);
        const safeAll = (selector) => {
            try {
                return Array.from(document.querySelectorAll(selector));
            } catch (e) {
                return [];
            }
        };
"""


def _script(signature: str, body: str) -> str:
    return f"{signature} => {{{_HELPERS}{body}}}"


FIND_FIELD_SCRIPT = _script(
    "(strategies)",
    """
        for (const strategy of strategies) {
            let candidates;
            if (strategy.kind === 'placeholder') {
                const needle = String(strategy.value).toLowerCase();
                candidates = safeAll('input, textarea').filter(
                    el => (el.getAttribute('placeholder') || '').toLowerCase().includes(needle)
                );
            } else {
                candidates = safeAll(strategy.value);
            }
            const hit = candidates.find(isVisible);
            if (hit) return refOf(hit);
        }
        return null;
    """,
)

FIND_BY_TEXT_SCRIPT = _script(
    "({tags, texts, caseSensitive})",
    """
        const norm = (value) => caseSensitive ? value : value.toLowerCase();
        const elements = safeAll(tags).filter(isVisible);
        for (const raw of texts) {
            const needle = norm(String(raw));
            const matches = elements.filter(
                el => norm((el.innerText || el.textContent || '').trim()).includes(needle)
            );
            // innermost match: skip wrappers that contain another match
            const innermost = matches.find(el => !matches.some(other => other !== el && el.contains(other)));
            if (innermost) return refOf(innermost);
        }
        return null;
    """,
)

QUERY_SCRIPT = _script(
    "({selector, visibleOnly})",
    """
        const hit = safeAll(selector).find(el => !visibleOnly || isVisible(el));
        return hit ? refOf(hit) : null;
    """,
)

QUERY_ALL_SCRIPT = _script(
    "({selector, visibleOnly})",
    """
        return safeAll(selector).filter(el => !visibleOnly || isVisible(el)).map(refOf);
    """,
)

FIND_TIME_SLOTS_SCRIPT = _script(
    "(selector)",
    """
        const pattern = /\\b\\d{1,2}:\\d{2}\\b/;
        return safeAll(selector).filter(el => {
            const text = (el.innerText || el.textContent || '').trim();
            if (!pattern.test(text)) return false;
            if (el.disabled || el.getAttribute('aria-disabled') === 'true') return false;
            const cls = String(el.className || '');
            return !cls.includes('disabled') && !cls.includes('unavailable');
        }).map(refOf);
    """,
)

SET_VALUE_SCRIPT = _script(
    "({ref, value})",
    """
        const el = byRef(ref);
        if (!el) return false;
        const proto = el.tagName === 'TEXTAREA'
            ? window.HTMLTextAreaElement.prototype
            : window.HTMLInputElement.prototype;
        const descriptor = Object.getOwnPropertyDescriptor(proto, 'value');
        el.focus();
        if (descriptor && descriptor.set) {
            descriptor.set.call(el, value);
        } else {
            el.value = value;
        }
        el.dispatchEvent(new Event('input', {bubbles: true}));
        el.dispatchEvent(new Event('change', {bubbles: true}));
        el.blur();
        return true;
    """,
)

CLICK_SCRIPT = _script(
    "(ref)",
    """
        const el = byRef(ref);
        if (!el) return false;
        el.click();
        return true;
    """,
)

PRESS_ENTER_SCRIPT = _script(
    "(ref)",
    """
        const el = byRef(ref);
        if (!el) return false;
        const init = {key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true, cancelable: true};
        el.dispatchEvent(new KeyboardEvent('keydown', init));
        el.dispatchEvent(new KeyboardEvent('keypress', init));
        el.dispatchEvent(new KeyboardEvent('keyup', init));
        return true;
    """,
)

HIGHLIGHT_SCRIPT = _script(
    "({ref, border})",
    """
        const el = byRef(ref);
        if (!el) return false;
        el.style.border = border;
        el.scrollIntoView({behavior: 'instant', block: 'center'});
        return true;
    """,
)

TEXT_OF_SCRIPT = _script(
    "(ref)",
    """
        const el = byRef(ref);
        return el ? (el.innerText || el.textContent || '').trim() : null;
    """,
)

WAIT_FOR_ELEMENT_SCRIPT = _script(
    "({selector, timeoutMs, visibleOnly})",
    """
        const pick = () => safeAll(selector).find(el => !visibleOnly || isVisible(el));
        const existing = pick();
        if (existing) return refOf(existing);
        return new Promise(resolve => {
            let timer = null;
            const observer = new MutationObserver(() => {
                const hit = pick();
                if (hit) {
                    observer.disconnect();
                    clearTimeout(timer);
                    resolve(refOf(hit));
                }
            });
            observer.observe(document.documentElement || document, {
                childList: true,
                subtree: true,
                attributes: true,
            });
            timer = setTimeout(() => {
                observer.disconnect();
                resolve(null);
            }, timeoutMs);
        });
    """,
)

ENSURE_BADGE_SCRIPT = """
    (badgeId) => {
        if (document.getElementById(badgeId)) return false;
        const badge = document.createElement('div');
        badge.id = badgeId;
        badge.style.cssText = [
            'position: fixed', 'bottom: 16px', 'right: 16px', 'z-index: 2147483647',
            'display: flex', 'align-items: center', 'gap: 8px', 'padding: 8px 12px',
            'border-radius: 8px', 'background: rgba(17, 24, 39, 0.9)', 'color: #fff',
            'font: 12px/1.4 sans-serif', 'max-width: 320px', 'pointer-events: none',
        ].join(';');
        const dot = document.createElement('span');
        dot.className = 'autobook-dot';
        dot.style.cssText = 'width: 10px; height: 10px; border-radius: 50%; background: #ccc; flex: none;';
        const label = document.createElement('span');
        label.className = 'autobook-label';
        label.textContent = 'Autobook ready';
        badge.appendChild(dot);
        badge.appendChild(label);
        (document.body || document.documentElement).appendChild(badge);
        return true;
    }
"""

UPDATE_BADGE_SCRIPT = """
    ({badgeId, color, message}) => {
        const badge = document.getElementById(badgeId);
        if (!badge) return false;
        const dot = badge.querySelector('.autobook-dot');
        const label = badge.querySelector('.autobook-label');
        if (dot) dot.style.background = color;
        if (label) label.textContent = message;
        return true;
    }
"""


class DomActionExecutor:
    """Thin async wrapper that runs the scripts above against one page."""

    def __init__(self, page: Page) -> None:
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    async def _evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    async def find_field(self, strategies: Sequence[FieldStrategy]) -> Optional[ElementRef]:
        """Return the first visible element matched by the ordered strategies."""

        payload = [strategy.as_payload() for strategy in strategies]
        return ElementRef.from_result(await self._evaluate(FIND_FIELD_SCRIPT, payload))

    async def find_by_text(
        self,
        tags: str,
        texts: Sequence[str],
        *,
        case_sensitive: bool = False,
    ) -> Optional[ElementRef]:
        """Find the innermost visible ``tags`` element containing one of ``texts``.

        Texts are tried in order so earlier entries take priority over later
        ones even when both appear on the page.
        """

        payload = {"tags": tags, "texts": list(texts), "caseSensitive": case_sensitive}
        return ElementRef.from_result(await self._evaluate(FIND_BY_TEXT_SCRIPT, payload))

    async def query(self, selector: str, *, visible_only: bool = True) -> Optional[ElementRef]:
        payload = {"selector": selector, "visibleOnly": visible_only}
        return ElementRef.from_result(await self._evaluate(QUERY_SCRIPT, payload))

    async def query_all(self, selector: str, *, visible_only: bool = True) -> List[ElementRef]:
        payload = {"selector": selector, "visibleOnly": visible_only}
        result = await self._evaluate(QUERY_ALL_SCRIPT, payload)
        if not isinstance(result, list):
            return []
        return [ref for ref in (ElementRef.from_result(item) for item in result) if ref is not None]

    async def first_matching(self, selectors: Sequence[str]) -> Optional[ElementRef]:
        for selector in selectors:
            found = await self.query(selector)
            if found is not None:
                return found
        return None

    async def find_time_slots(self, selector: str) -> List[ElementRef]:
        """Return bookable time buttons (``H:MM`` text, not disabled or unavailable)."""

        result = await self._evaluate(FIND_TIME_SLOTS_SCRIPT, selector)
        if not isinstance(result, list):
            return []
        return [ref for ref in (ElementRef.from_result(item) for item in result) if ref is not None]

    async def text_of(self, element: ElementRef) -> Optional[str]:
        result = await self._evaluate(TEXT_OF_SCRIPT, element.ref)
        return result if isinstance(result, str) else None

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------
    async def set_value(self, element: ElementRef, value: str) -> bool:
        """Assign ``value`` through the native setter so framework bindings notice."""

        ok = bool(await self._evaluate(SET_VALUE_SCRIPT, {"ref": element.ref, "value": value}))
        if not ok:
            log.warning("Element %s vanished before its value could be set", element.ref)
        return ok

    async def clear_and_type(self, element: ElementRef, value: str) -> bool:
        if not await self.set_value(element, ""):
            return False
        return await self.set_value(element, value)

    async def click(self, element: ElementRef) -> bool:
        ok = bool(await self._evaluate(CLICK_SCRIPT, element.ref))
        if not ok:
            log.warning("Element %s vanished before it could be clicked", element.ref)
        return ok

    async def press_enter(self, element: ElementRef) -> bool:
        return bool(await self._evaluate(PRESS_ENTER_SCRIPT, element.ref))

    async def highlight(self, element: ElementRef, border: str) -> bool:
        return bool(await self._evaluate(HIGHLIGHT_SCRIPT, {"ref": element.ref, "border": border}))

    # ------------------------------------------------------------------
    # waiting
    # ------------------------------------------------------------------
    async def wait_for_element(
        self,
        selector: str,
        timeout: float = DEFAULT_ELEMENT_WAIT,
        *,
        visible_only: bool = True,
    ) -> ElementRef:
        """Resolve once ``selector`` matches, observing DOM mutations until ``timeout``."""

        payload = {"selector": selector, "timeoutMs": int(timeout * 1000), "visibleOnly": visible_only}
        found = ElementRef.from_result(await self._evaluate(WAIT_FOR_ELEMENT_SCRIPT, payload))
        if found is None:
            raise ElementWaitTimeout(selector, timeout)
        return found

    # ------------------------------------------------------------------
    # status badge
    # ------------------------------------------------------------------
    async def ensure_badge(self) -> bool:
        return bool(await self._evaluate(ENSURE_BADGE_SCRIPT, BADGE_ID))

    async def update_badge(self, color: str, message: str) -> bool:
        payload: Dict[str, str] = {"badgeId": BADGE_ID, "color": color, "message": message}
        return bool(await self._evaluate(UPDATE_BADGE_SCRIPT, payload))
