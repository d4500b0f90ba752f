"""Scrape engine: navigate, log in by site type, pull appointment slots out of unknown HTML.

Login fields and slot elements are found through ordered selector chains:
each candidate gets a short bounded wait and the first one that resolves
wins. Nothing here is fatal except navigation itself. A page whose login
form cannot be found is scraped unauthenticated, and a page whose structure
yields no slot elements falls back to a line-by-line text scan.
"""

import logging
import re
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from slotwatch.config import CFG

logger = logging.getLogger(__name__)


class UnsupportedSiteType(Exception):
    pass


class NavigationFailed(Exception):
    pass


@dataclass(frozen=True)
class LoginStrategy:
    name: str
    username_selectors: tuple
    password_selectors: tuple
    submit_selectors: tuple
    overlay_selectors: tuple = ()
    settle_timeout_ms: int | None = None


GENERIC_LOGIN = LoginStrategy(
    name="generic",
    username_selectors=(
        'input[name="username"]',
        'input[name="email"]',
        'input[type="email"]',
        'input[autocomplete="username"]',
        'input[id*="user" i]',
        'input[name*="login" i]',
    ),
    password_selectors=(
        'input[name="password"]',
        'input[type="password"]',
        'input[autocomplete="current-password"]',
    ),
    submit_selectors=(
        'button[type="submit"]',
        'input[type="submit"]',
        'button[name="login"]',
        'button:has-text("Log in")',
        'button:has-text("Sign in")',
    ),
)

GOVERNMENT_LOGIN = LoginStrategy(
    name="government",
    username_selectors=(
        "#username",
        'input[name="j_username"]',
        'input[name*="user" i]',
        'input[id*="login" i]',
        'input[type="email"]',
        'input[name*="email" i]',
    ),
    password_selectors=(
        "#password",
        'input[name="j_password"]',
        'input[type="password"]',
    ),
    submit_selectors=(
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Sign in")',
        'button:has-text("Log in")',
        'button:has-text("Continue")',
    ),
    overlay_selectors=(
        "#onetrust-accept-btn-handler",
        'button[aria-label="Accept all"]',
        'button[data-cookiebanner="accept"]',
        'button:has-text("Accept")',
    ),
)

LOGIN_STRATEGIES: dict[str, LoginStrategy] = {
    "generic": GENERIC_LOGIN,
    "government": GOVERNMENT_LOGIN,
}

SLOT_SELECTORS = [
    "[data-appointment]",
    "[data-slot]",
    ".appointment",
    ".appointment-slot",
    ".available-slot",
    ".time-slot",
    ".timeslot",
    ".slot",
    "[class*='appointment-slot']",
    "td.available",
    ".calendar-day.available",
]

DATE_SUBSELECTOR = ".date, [data-role='date'], time, [class*='date']"
TIME_SUBSELECTOR = ".time, [data-role='time'], [class*='time']"

NEGATIVE_MARKERS = {"unavailable", "booked", "disabled", "full"}

MAX_SLOT_ELEMENTS = 200
MAX_TEXT_CANDIDATES = 10

AVAILABILITY_RE = re.compile(r"\b(available|open)\b", re.IGNORECASE)
SLOT_WORD_RE = re.compile(r"\b(appointments?|slots?)\b", re.IGNORECASE)

NEGATIVE_PATTERNS = [
    re.compile(r"\bno\s+(?:\w+\s+)?(?:appointments?|slots?)\b", re.IGNORECASE),
    re.compile(r"\bnot\s+(?:currently\s+)?available\b", re.IGNORECASE),
    re.compile(r"\b(?:fully\s+)?booked\b", re.IGNORECASE),
    re.compile(r"\bsold\s+out\b", re.IGNORECASE),
]

EXTRACT_SCRIPT = """(args) => {
    var seen = new Set();
    var out = [];
    function subText(el, sel) {
        try {
            var n = el.querySelector(sel);
            return n ? (n.textContent || '').trim() : '';
        } catch (e) {
            return '';
        }
    }
    for (var i = 0; i < args.selectors.length; i++) {
        var nodes;
        try {
            nodes = document.querySelectorAll(args.selectors[i]);
        } catch (e) {
            continue;
        }
        for (var j = 0; j < nodes.length; j++) {
            var el = nodes[j];
            if (seen.has(el)) continue;
            seen.add(el);
            out.push({
                classes: Array.from(el.classList || []).map(function(c) { return c.toLowerCase(); }),
                attrs: {
                    'data-date': el.getAttribute('data-date'),
                    'data-time': el.getAttribute('data-time'),
                    'data-details': el.getAttribute('data-details'),
                    'title': el.getAttribute('title'),
                    'aria-disabled': el.getAttribute('aria-disabled'),
                    'disabled': el.hasAttribute('disabled')
                },
                date_text: subText(el, args.dateSelector),
                time_text: subText(el, args.timeSelector),
                text: (el.textContent || '').trim().substring(0, 300)
            });
            if (out.length >= args.limit) return out;
        }
    }
    return out;
}"""


def _clean(value) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _is_unavailable(element: dict) -> bool:
    attrs = element.get("attrs") or {}
    if attrs.get("disabled") or str(attrs.get("aria-disabled") or "").lower() == "true":
        return True
    for cls in element.get("classes") or []:
        cls = cls.lower()
        if cls in NEGATIVE_MARKERS:
            return True
        # slot--booked, is-full, day_disabled
        if any(cls.endswith(f"-{m}") or cls.endswith(f"_{m}") for m in NEGATIVE_MARKERS):
            return True
    return False


def classify_slot_elements(elements: list[dict]) -> list[dict]:
    """Raw element facts from the page -> available slot candidates."""
    slots = []
    for element in elements or []:
        if _is_unavailable(element):
            continue
        attrs = element.get("attrs") or {}
        date = _clean(attrs.get("data-date")) or _clean(element.get("date_text")) or _clean(element.get("text"))
        time = _clean(attrs.get("data-time")) or _clean(element.get("time_text"))
        details = _clean(attrs.get("data-details")) or _clean(attrs.get("title"))
        slots.append({"date": date, "time": time, "details": details})
    return slots


def scan_text_for_slots(text: str) -> list[dict]:
    """Coarse fallback: lines mentioning both availability and an appointment/slot."""
    slots = []
    seen = set()
    for raw_line in (text or "").splitlines():
        line = _clean(raw_line)
        if not line or line in seen:
            continue
        if not (AVAILABILITY_RE.search(line) and SLOT_WORD_RE.search(line)):
            continue
        if any(p.search(line) for p in NEGATIVE_PATTERNS):
            continue
        seen.add(line)
        slots.append({"date": "Available", "time": "", "details": line[:200]})
        if len(slots) >= MAX_TEXT_CANDIDATES:
            break
    return slots


async def first_matching_selector(page, candidates, timeout_ms: int) -> str | None:
    """Try each selector in order with a bounded wait; return the first that resolves."""
    for selector in candidates:
        try:
            handle = await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            continue
        except PlaywrightError as e:
            logger.debug("[SCRAPE] Selector %s rejected: %s", selector, e)
            continue
        if handle is not None:
            return selector
    return None


def _result(success: bool, appointments: list, message: str, error: str | None = None, **extra) -> dict:
    result = {
        "success": success,
        "appointments": appointments,
        "appointments_found": len(appointments),
        "message": message,
    }
    if error:
        result["error"] = error
    result.update(extra)
    return result


class SiteScraper:
    def __init__(self, sessions, *, nav_timeout_ms: int | None = None, selector_timeout_ms: int | None = None, settle_timeout_ms: int | None = None):
        self._sessions = sessions
        self.nav_timeout_ms = nav_timeout_ms or CFG["nav_timeout_ms"]
        self.selector_timeout_ms = selector_timeout_ms or CFG["selector_timeout_ms"]
        self.settle_timeout_ms = settle_timeout_ms or CFG["settle_timeout_ms"]

    async def check_appointments(self, site: dict, credentials: dict) -> dict:
        site_type = site.get("site_type")
        strategy = LOGIN_STRATEGIES.get(site_type)
        if strategy is None:
            logger.error("[SCRAPE] Site #%s has unsupported type %r", site.get("id"), site_type)
            return _result(False, [], "Unsupported site type", error=f"Unsupported site type: {site_type}")

        try:
            async with self._sessions.page(timeout_ms=self.nav_timeout_ms) as page:
                await self.navigate(page, site["url"])
                logged_in = await self.login(page, strategy, credentials)
                appointments = await self.extract(page)
        except NavigationFailed as e:
            logger.warning("[SCRAPE] Site #%s navigation failed: %s", site.get("id"), e)
            return _result(False, [], "Could not load site", error=str(e))

        message = f"Found {len(appointments)} candidate appointments" if appointments else "No appointments found"
        return _result(True, appointments, message, logged_in=logged_in)

    async def navigate(self, page, url: str):
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=self.nav_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationFailed(f"Navigation timed out after {self.nav_timeout_ms // 1000}s") from e
        except PlaywrightError as e:
            raise NavigationFailed(f"Navigation error: {e}") from e
        if response is not None and response.status >= 400:
            logger.warning("[SCRAPE] %s answered HTTP %s", url, response.status)

    async def _dismiss_overlays(self, page, strategy: LoginStrategy):
        if not strategy.overlay_selectors:
            return
        selector = await first_matching_selector(page, strategy.overlay_selectors, min(self.selector_timeout_ms, 1500))
        if not selector:
            return
        try:
            await page.click(selector)
            logger.debug("[SCRAPE] Dismissed overlay via %s", selector)
        except PlaywrightError:
            logger.debug("[SCRAPE] Overlay click failed for %s", selector)

    async def login(self, page, strategy: LoginStrategy, credentials: dict) -> bool:
        """Fill and submit the login form. False means extraction runs unauthenticated."""
        await self._dismiss_overlays(page, strategy)

        user_sel = await first_matching_selector(page, strategy.username_selectors, self.selector_timeout_ms)
        if not user_sel:
            logger.info("[SCRAPE] No username field (%s strategy); continuing without login", strategy.name)
            return False
        pass_sel = await first_matching_selector(page, strategy.password_selectors, self.selector_timeout_ms)
        if not pass_sel:
            logger.info("[SCRAPE] No password field (%s strategy); continuing without login", strategy.name)
            return False

        try:
            await page.fill(user_sel, credentials.get("username", ""))
            await page.fill(pass_sel, credentials.get("password", ""))
        except PlaywrightError as e:
            logger.warning("[SCRAPE] Could not fill login form: %s", type(e).__name__)
            return False

        submit_sel = await first_matching_selector(page, strategy.submit_selectors, self.selector_timeout_ms)
        if not submit_sel:
            logger.info("[SCRAPE] No submit control found; extracting from current page")
            return False

        try:
            await page.click(submit_sel)
            await page.wait_for_load_state(
                "networkidle", timeout=strategy.settle_timeout_ms or self.settle_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.debug("[SCRAPE] Post-login settle timed out; extracting anyway")
        except PlaywrightError as e:
            logger.warning("[SCRAPE] Login submit failed: %s", e)
            return False
        return True

    async def extract(self, page) -> list[dict]:
        try:
            raw = await page.evaluate(EXTRACT_SCRIPT, {
                "selectors": SLOT_SELECTORS,
                "dateSelector": DATE_SUBSELECTOR,
                "timeSelector": TIME_SUBSELECTOR,
                "limit": MAX_SLOT_ELEMENTS,
            })
        except PlaywrightError as e:
            logger.warning("[SCRAPE] Extraction script failed: %s", e)
            raw = []

        slots = classify_slot_elements(raw)
        logger.debug("[SCRAPE] %d slot elements, %d available", len(raw or []), len(slots))
        if slots:
            return slots

        try:
            body_text = await page.inner_text("body")
        except PlaywrightError as e:
            logger.warning("[SCRAPE] Could not read page text: %s", e)
            return []
        return scan_text_for_slots(body_text)
