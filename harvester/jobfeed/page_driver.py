"""
Thin resilience wrapper around one Playwright tab.

Callers never talk to the Playwright `Page` directly: navigation retries,
readiness probing, selector races and "safe" clicks all live here so the
session / listing / capture layers only see booleans, matched selectors or
classified `HarvesterError`s.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING
import logging

from . import selectors as S
from .errors import NavigationError, is_timeout
from .human import HumanInput
from .logging_config import log_event
from .util.retry import bounded_retry, backoff_policy

if TYPE_CHECKING:  # pragma: no cover
    from playwright.sync_api import Page  # type: ignore
else:
    Page = Any  # type: ignore

logger = logging.getLogger('page_driver')

# computed-style visibility check run against an element handle
_VISIBLE_JS = """el => {
    const style = window.getComputedStyle(el);
    return style && style.display !== 'none' && style.visibility !== 'hidden' && style.opacity !== '0';
}"""

_IN_VIEWPORT_JS = """sel => {
    const el = document.querySelector(sel);
    if (!el) return false;
    const r = el.getBoundingClientRect();
    return r.top >= 0 && r.left >= 0 &&
        r.bottom <= (window.innerHeight || document.documentElement.clientHeight) &&
        r.right <= (window.innerWidth || document.documentElement.clientWidth);
}"""

_SCROLL_METRICS_JS = """() => ({
    height: document.body ? document.body.scrollHeight : 0,
    position: window.scrollY,
    viewport: window.innerHeight
})"""

_SETTLED_JS = "() => document.readyState === 'complete'"


class PageDriver:
    """Wraps the primary (or a secondary) tab.

    `page_factory` is used to replace the tab when it stops responding during
    navigation; without one an unresponsive tab can only be reloaded.
    """

    def __init__(self, page: Page, *, human: Optional[HumanInput] = None,
                 page_factory: Optional[Callable[[], Page]] = None,
                 timeout_ms: int = 60000, navigation_timeout_ms: int = 90000,
                 challenge_delay: Tuple[float, float] = (2.0, 4.0)):
        self.page = page
        self.human = human or HumanInput()
        self.page_factory = page_factory
        self.timeout_ms = timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.challenge_delay = challenge_delay
        self.mouse_position: Tuple[float, float] = (0.0, 0.0)

    # ---- navigation ---------------------------------------------------------
    def navigate(self, url: str, *, max_retries: int = 3, retry_delay: float = 5.0, settle: bool = True) -> None:
        """Load `url`, recovering the tab between attempts.

        Raises NavigationError once `max_retries` attempts have failed.
        """
        def _attempt(attempt: int):
            logger.debug(f"Navigating to {url} (attempt {attempt}/{max_retries})")
            try:
                self.page.goto(url, wait_until='domcontentloaded', timeout=self.navigation_timeout_ms)
            except Exception as e:
                raise NavigationError(f"Navigation to {url} failed: {e}", url=url, timed_out=is_timeout(e)) from e

        try:
            bounded_retry(
                _attempt,
                max_attempts=max_retries,
                delay_policy=backoff_policy(retry_delay),
                on_retry=lambda _exc, _n: self._recover_tab(),
                sleep=self.human.sleep,
                label='navigation',
            )
        except NavigationError:
            raise
        except Exception as e:
            raise NavigationError(
                f"Failed to navigate to {url} after {max_retries} attempts: {getattr(e, 'last_error', e)}",
                url=url, timed_out=is_timeout(e),
            ) from e
        log_event('navigated', url=url)
        if settle:
            self.wait_out_challenge()
            self.handle_cookie_consent()
            self.human.random_delay(1.0, 3.0)

    def _recover_tab(self):
        if self.is_responsive():
            logger.info('Tab still responsive; reloading before retry')
            self.page.reload(wait_until='domcontentloaded', timeout=self.navigation_timeout_ms)
            return
        if self.page_factory is None:
            raise NavigationError('Tab unresponsive and no page factory to replace it')
        logger.warning('Tab unresponsive; replacing it')
        try:
            self.page.close()
        except Exception as e:
            logger.debug(f"Closing dead tab failed: {e}")
        self.page = self.page_factory()

    def is_responsive(self) -> bool:
        try:
            return bool(self.page.evaluate('() => true'))
        except Exception:
            return False

    def race_navigation(self, error_selectors: Sequence[str], timeout_ms: int, poll_ms: int = 250) -> Optional[str]:
        """Wait for either a settled navigation or one of `error_selectors`.

        Returns the matched error selector, or None once the URL changed and the
        document is complete. Raises NavigationError(timed_out=True) when neither
        happens within `timeout_ms`.
        """
        start_url = self.page.url
        for _ in range(max(1, timeout_ms // poll_ms)):
            for sel in error_selectors:
                if self.is_visible(sel):
                    return sel
            if self.page.url != start_url:
                try:
                    if self.page.evaluate(_SETTLED_JS):
                        return None
                except Exception as e:
                    # context destroyed mid-navigation; poll again
                    logger.debug(f"readyState probe failed: {e}")
            self.page.wait_for_timeout(poll_ms)
        raise NavigationError(f"Navigation did not settle within {timeout_ms}ms", url=start_url, timed_out=True)

    # ---- selector helpers ---------------------------------------------------
    def wait_for_any(self, selectors: Sequence[str], timeout_ms: Optional[int] = None) -> Optional[str]:
        """Return the first of `selectors` present in the DOM, or None if none shows up in time."""
        selectors = list(selectors)
        if not selectors:
            return None
        try:
            self.page.wait_for_selector(', '.join(selectors), state='attached',
                                        timeout=timeout_ms if timeout_ms is not None else self.timeout_ms)
        except Exception as e:
            if is_timeout(e):
                return None
            raise
        for sel in selectors:
            if self.is_present(sel):
                return sel
        return None

    def is_present(self, selector: str) -> bool:
        return self.page.query_selector(selector) is not None

    def is_visible(self, selector: str) -> bool:
        try:
            return bool(self.page.is_visible(selector))
        except Exception:
            return False

    def text_of(self, selector: str) -> Optional[str]:
        el = self.page.query_selector(selector)
        if el is None:
            return None
        txt = el.inner_text()
        return txt.strip() if txt else ''

    def bounding_box(self, selector: str) -> Optional[Dict[str, float]]:
        el = self.page.query_selector(selector)
        return el.bounding_box() if el is not None else None

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return self.page.evaluate(script)
        return self.page.evaluate(script, arg)

    # ---- interaction --------------------------------------------------------
    def click(self, selector: str, timeout_ms: int = 5000) -> bool:
        """Human-paced click. Returns False instead of raising when the element is missing or hidden."""
        try:
            handle = self.page.wait_for_selector(selector, state='attached', timeout=timeout_ms)
            if handle is None:
                return False
            if not handle.bounding_box():
                logger.debug(f"No bounding box for {selector}")
                return False
            handle.evaluate("el => el.scrollIntoView({behavior: 'smooth', block: 'center', inline: 'center'})")
            self.human.random_delay(0.5, 1.0)
            if not handle.evaluate(_VISIBLE_JS):
                logger.debug(f"Element hidden by computed style: {selector}")
                return False
            self.human.move_mouse_to(self, selector)
            handle.click(delay=self.human.click_delay_ms())
            return True
        except Exception as e:
            logger.debug(f"Click on {selector} failed: {e}")
            return False

    def type_text(self, selector: str, text: str):
        self.page.click(selector)
        for ch in text:
            self.page.keyboard.type(ch, delay=self.human.typing_delay_ms())

    def press_escape(self):
        self.page.keyboard.press('Escape')

    def move_mouse(self, x: float, y: float):
        self.page.mouse.move(x, y)
        self.mouse_position = (x, y)

    def in_viewport(self, selector: str) -> bool:
        try:
            return bool(self.page.evaluate(_IN_VIEWPORT_JS, selector))
        except Exception:
            return False

    def scroll_into_view(self, selector: str) -> bool:
        el = self.page.query_selector(selector)
        if el is None:
            return False
        el.scroll_into_view_if_needed()
        self.human.random_delay(0.3, 0.8)
        return True

    def scroll_metrics(self) -> Dict[str, int]:
        return self.page.evaluate(_SCROLL_METRICS_JS)

    def scroll_to(self, y: int):
        self.page.evaluate('y => window.scrollTo(0, y)', y)

    # ---- page furniture -----------------------------------------------------
    def handle_cookie_consent(self) -> bool:
        for sel in S.COOKIE_CONSENT_BUTTONS:
            if self.is_visible(sel) and self.click(sel):
                logger.info('Accepted cookie consent banner')
                self.human.random_delay(0.5, 1.0)
                return True
        return False

    def wait_out_challenge(self, timeout_ms: Optional[int] = None) -> bool:
        """Block while the anti-bot challenge form is shown. Returns True if one was seen."""
        if not self.is_present(S.CHALLENGE_FORM):
            return False
        logger.warning('Challenge page detected; waiting for it to clear')
        log_event('challenge_detected', url=self.page.url)
        try:
            self.page.wait_for_selector(S.CHALLENGE_FORM, state='detached',
                                        timeout=timeout_ms if timeout_ms is not None else self.navigation_timeout_ms)
        except Exception as e:
            raise NavigationError(f"Challenge page did not clear: {e}", url=self.page.url, timed_out=is_timeout(e)) from e
        self.human.pause(self.challenge_delay)
        return True

    def close(self):
        self.page.close()


def first_clickable(driver: PageDriver, selectors: List[str]) -> Optional[str]:
    """Click the first selector that accepts a click; return it (or None)."""
    for sel in selectors:
        if driver.click(sel):
            return sel
    return None
