"""Single-step navigation actions on the reservation site."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from automation.messages import NavigationAction
from site_agent.dom_executor import DomActionExecutor
from site_agent.strategies import (
    CLICKABLE_TAGS,
    GROUP_NUMBER_FIELD,
    NAVIGATION_TEXTS,
    SELECT_ALL_TAGS,
    SELECT_ALL_TEXTS,
)

log = logging.getLogger(__name__)

DEFAULT_GROUP_NUMBER = "1"


class Navigator:
    """Stateless executor for ``DO_NAVIGATE`` actions.

    Each action is one search-and-click or search-and-fill.  A miss is logged
    and reported as ``False``; navigation never emits status events.
    """

    def __init__(self, executor: DomActionExecutor) -> None:
        self.executor = executor

    async def perform(self, action: NavigationAction | str, data: Optional[Mapping[str, Any]] = None) -> bool:
        action = NavigationAction(action)
        data = data or {}
        if action is NavigationAction.CLICK_FILTER:
            return await self.fill_group_number(data.get("groupNumber"))
        if action is NavigationAction.CLICK_SELECT_PEOPLE:
            return await self._click_text(action, SELECT_ALL_TAGS, SELECT_ALL_TEXTS)
        return await self._click_text(action, CLICKABLE_TAGS, NAVIGATION_TEXTS[action])

    async def fill_group_number(self, value: Any = None) -> bool:
        text = str(value) if value not in (None, "") else DEFAULT_GROUP_NUMBER
        field = await self.executor.find_field(GROUP_NUMBER_FIELD)
        if field is None:
            log.warning("Group number field not found")
            return False
        return await self.executor.clear_and_type(field, text)

    async def _click_text(self, action: NavigationAction, tags: str, texts) -> bool:
        element = await self.executor.find_by_text(tags, texts)
        if element is None:
            log.warning("%s: no element with text %s", action.value, " / ".join(texts))
            return False
        log.info("%s: clicking '%s'", action.value, element.text[:60])
        return await self.executor.click(element)
