"""Declarative lookup strategies and marker catalogs for the target site.

The site is bilingual (Arabic and English), so most lookups carry variants
for both languages.  Order matters everywhere: the first visible match wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal, Optional, Tuple

from automation.messages import NavigationAction

StrategyKind = Literal["selector", "placeholder"]


@dataclass(frozen=True, slots=True)
class FieldStrategy:
    kind: StrategyKind
    value: str
    language: Optional[str] = None

    def as_payload(self) -> Dict[str, str]:
        return {"kind": self.kind, "value": self.value}

    def describe(self) -> str:
        suffix = f" ({self.language})" if self.language else ""
        return f"{self.kind}={self.value}{suffix}"


def selector(value: str) -> FieldStrategy:
    return FieldStrategy("selector", value)


def placeholder(value: str, language: str) -> FieldStrategy:
    return FieldStrategy("placeholder", value, language)


USERNAME_FIELD: Tuple[FieldStrategy, ...] = (
    selector('input[name="username"]'),
    selector('input[autocomplete="username"]'),
    placeholder("identity", "en"),  # "National ID / Iqama"
    placeholder("هوية", "ar"),
    selector('input[type="text"]'),
)

PASSWORD_FIELD: Tuple[FieldStrategy, ...] = (
    selector('input[name="password"]'),
    selector('input[autocomplete="current-password"]'),
    placeholder("password", "en"),
    placeholder("كلمة", "ar"),
    selector('input[type="password"]'),
)

GROUP_NUMBER_FIELD: Tuple[FieldStrategy, ...] = (
    placeholder("number", "en"),
    placeholder("عدد", "ar"),  # "عدد الزوار"
    selector('input[type="number"]'),
    selector('[aria-label*="count"]'),
    selector('[aria-label*="عدد"]'),
)

# Session markers
AUTHENTICATED_SELECTORS: Tuple[str, ...] = (
    'a[href*="logout"]',
    'button[class*="user"]',
    ".dashboard-menu",
    'a[href*="permits"]',
)
AUTHENTICATED_TEXT_TAGS = "a, button, span"
AUTHENTICATED_TEXTS: Tuple[str, ...] = ("Permits", "التصاريح", "لوحة التحكم", "Dashboard")

# Login form
ANY_INPUT_SELECTOR = "input"
SUBMIT_TEXTS: Tuple[str, ...] = ("تسجيل", "Login", "دخول", "Sign in")
SUBMIT_FALLBACK_SELECTOR = 'button[type="submit"]'

# Login outcome markers
OTP_SELECTOR = 'input[autocomplete="one-time-code"]'
OTP_TEXT_TAGS = "h1, h2, h3, div"
OTP_TEXTS: Tuple[str, ...] = ("Verification", "رمز التحقق", "OTP")
LOGIN_ERROR_SELECTOR = '.error-message, .alert-danger, [role="alert"]'

# Navigation
CLICKABLE_TAGS = "button, a, span, div"
NAVIGATION_TEXTS: Dict[NavigationAction, Tuple[str, ...]] = {
    NavigationAction.CLICK_PERMITS: ("التصاريح", "Permits", "تصاريح نسك"),
    NavigationAction.CLICK_ADD_REQUEST: ("إضافة طلب تصريح", "Add Request", "طلب جديد"),
    NavigationAction.CLICK_MEN_PERMIT: ("الروضة الشريفة للرجال", "Rawdha Men"),
    NavigationAction.CLICK_WOMEN_PERMIT: ("الروضة الشريفة للنساء", "Rawdha Women"),
}
SELECT_ALL_TAGS = "div, span, button"
SELECT_ALL_TEXTS: Tuple[str, ...] = ("تحديد الكل", "Select All")

# Slot calendar
DAY_SELECTORS: Tuple[str, ...] = (
    ".day.available",
    ".day-green",
    '[aria-label*="available"]',
    '[aria-label*="متاح"]',
    "button.day-box:not([disabled])",
)
TIME_CONTAINER_SELECTOR = '.time-slot, button.time-btn, [class*="time"]'
TIME_SLOT_SELECTOR = "button, div.time-slot"
CONFIRM_TEXTS: Tuple[str, ...] = ("استمرار", "Continue", "Book", "حجز", "تأكيد", "Confirm")
CONFIRM_FALLBACK_SELECTOR = 'button[type="submit"]'

# Highlight borders
HIGHLIGHT_FOUND = "2px solid #00AA00"
HIGHLIGHT_CONFIRM = "3px solid #ff0000"
