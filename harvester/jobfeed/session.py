"""
Browser session ownership: one persistent Chromium context, one primary tab,
login with verification, and capped reconnects after a crash / disconnect.

Playwright's sync API is thread-bound: create, use and close a controller
from the same thread.
"""
from __future__ import annotations
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TYPE_CHECKING
import logging

from . import selectors as S
from .errors import (LoginError, LoginRejectedError, NavigationError, RetryExhaustedError,
                     SessionFatalError, is_timeout)
from .human import HumanInput
from .logging_config import log_event
from .page_driver import PageDriver
from .settings import SETTINGS, Settings
from .util.retry import bounded_retry, backoff_policy

if TYPE_CHECKING:  # pragma: no cover
    from playwright.sync_api import BrowserContext, Page  # type: ignore
else:
    BrowserContext = Any  # type: ignore
    Page = Any  # type: ignore

logger = logging.getLogger('session')

BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--disable-gpu',
    '--disable-notifications',
    '--disable-infobars',
    '--disable-blink-features=AutomationControlled',
    '--disable-extensions',
    '--no-first-run',
    '--no-default-browser-check',
    '--disable-popup-blocking',
    '--window-size=1920,1080',
    '--ignore-certificate-errors',
]

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
window.chrome = window.chrome || {runtime: {}};
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
"""


class SessionState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZING = 'initializing'
    READY = 'ready'
    LOGGING_IN = 'logging_in'
    LOGGED_IN = 'logged_in'
    DISCONNECTED = 'disconnected'
    RECONNECTING = 'reconnecting'
    FATAL = 'fatal'


Launcher = Callable[[Settings], BrowserContext]


def launch_persistent_browser(settings: Settings):
    """Start Playwright and a persistent Chromium profile. Returns (playwright, context)."""
    from playwright.sync_api import sync_playwright  # heavy import, only when a browser is needed
    pw = sync_playwright().start()
    user_data_dir = Path(settings.user_data_dir)
    user_data_dir.mkdir(parents=True, exist_ok=True)
    kwargs = dict(
        headless=settings.headless,
        args=BROWSER_ARGS,
        ignore_default_args=['--enable-automation'],
        user_agent=settings.user_agent,
        viewport={'width': 1920, 'height': 1080},
    )
    if settings.browser_executable:
        kwargs['executable_path'] = settings.browser_executable
    try:
        context = pw.chromium.launch_persistent_context(str(user_data_dir), **kwargs)
    except Exception:
        pw.stop()
        raise
    context.add_init_script(STEALTH_INIT_SCRIPT)
    return pw, context


class SessionController:
    """Owns the browser. State transitions:

    Uninitialized -> Initializing -> Ready -> LoggingIn -> LoggedIn
    Ready|LoggedIn -> Disconnected (crash / close callback)
    Disconnected -> Reconnecting -> LoggedIn | Fatal
    """

    def __init__(self, settings: Settings = SETTINGS, *, human: Optional[HumanInput] = None,
                 launcher: Optional[Callable[[Settings], tuple]] = None):
        self.settings = settings
        self.human = human or HumanInput(settings.delay_scale)
        self._launcher = launcher or launch_persistent_browser
        self._playwright = None
        self.context: Optional[BrowserContext] = None
        self.driver: Optional[PageDriver] = None
        self.state = SessionState.UNINITIALIZED
        self.reconnects = 0
        self._closing = False

    # ---- lifecycle ----------------------------------------------------------
    def initialize(self) -> PageDriver:
        self._set_state(SessionState.INITIALIZING)
        self._closing = False
        self._playwright, self.context = self._launcher(self.settings)
        self.context.on('close', lambda *_: self._on_disconnected('context closed'))
        page = self.context.pages[0] if self.context.pages else self.context.new_page()
        self._setup_page(page)
        self.driver = PageDriver(
            page,
            human=self.human,
            page_factory=self._new_page,
            timeout_ms=self.settings.default_timeout_ms,
            navigation_timeout_ms=self.settings.navigation_timeout_ms,
            challenge_delay=self.settings.challenge_delay,
        )
        self._set_state(SessionState.READY)
        logger.info('Browser initialized successfully')
        return self.driver

    def _setup_page(self, page: Page) -> Page:
        page.set_default_timeout(self.settings.default_timeout_ms)
        page.set_default_navigation_timeout(self.settings.navigation_timeout_ms)
        page.on('crash', lambda *_: self._on_disconnected('tab crashed'))
        return page

    def _new_page(self) -> Page:
        if self.context is None:
            raise SessionFatalError('No browser context to open a tab in')
        return self._setup_page(self.context.new_page())

    def _set_state(self, state: SessionState):
        if state != self.state:
            logger.debug(f"session {self.state.value} -> {state.value}")
            self.state = state

    def _on_disconnected(self, reason: str):
        if self._closing or self.state in (SessionState.UNINITIALIZED, SessionState.FATAL):
            return
        logger.warning(f"Browser session lost: {reason}")
        log_event('session_disconnected', reason=reason)
        self._set_state(SessionState.DISCONNECTED)

    def ensure_connected(self) -> bool:
        """Reconnect if a disconnect was signalled. Returns True when a reconnect happened.

        Raises SessionFatalError once `max_reconnect_attempts` consecutive attempts fail.
        """
        if self.state != SessionState.DISCONNECTED:
            return False
        limit = self.settings.max_reconnect_attempts
        last_error: Optional[BaseException] = None
        for attempt in range(1, limit + 1):
            self._set_state(SessionState.RECONNECTING)
            logger.info(f"Reconnecting browser (attempt {attempt}/{limit})")
            self._teardown()
            try:
                self.initialize()
                self.driver.navigate(self.settings.base_url, max_retries=self.settings.max_retries,
                                     retry_delay=self.settings.retry_delay)
                self.ensure_logged_in()
            except SessionFatalError:
                self._set_state(SessionState.FATAL)
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                self.human.sleep(self.settings.retry_delay)
                continue
            self.reconnects += 1
            log_event('session_reconnected', attempt=attempt)
            return True
        self._set_state(SessionState.FATAL)
        raise SessionFatalError(f"Max reconnect attempts ({limit}) exceeded: {last_error}")

    def _teardown(self):
        self._closing = True
        try:
            if self.context is not None:
                self.context.close()
        except Exception as e:
            logger.debug(f"Closing browser context failed: {e}")
        try:
            if self._playwright is not None:
                self._playwright.stop()
        except Exception as e:
            logger.debug(f"Stopping playwright failed: {e}")
        self.context = None
        self._playwright = None
        self.driver = None

    def close(self):
        self._teardown()
        self._set_state(SessionState.UNINITIALIZED)
        logger.info('Browser closed')

    @contextmanager
    def new_tab(self) -> Iterator[PageDriver]:
        """Short-lived secondary tab; closed on every exit path."""
        page = self._new_page()
        try:
            yield PageDriver(
                page,
                human=self.human,
                timeout_ms=self.settings.default_timeout_ms,
                navigation_timeout_ms=self.settings.navigation_timeout_ms,
                challenge_delay=self.settings.challenge_delay,
            )
        finally:
            try:
                page.close()
            except Exception as e:
                logger.warning(f"Failed to close secondary tab: {e}")

    # ---- login --------------------------------------------------------------
    def check_login_status(self) -> bool:
        if self.driver is None:
            return False
        try:
            return not self.driver.is_present(S.LOGIN_BUTTON)
        except Exception as e:
            logger.debug(f"Login status probe failed: {e}")
            return False

    def ensure_logged_in(self) -> bool:
        if self.check_login_status():
            logger.info('Session already authenticated')
            self._set_state(SessionState.LOGGED_IN)
            return True
        return self.login_with_retry()

    def login(self) -> bool:
        driver = self.driver
        if driver is None:
            raise LoginError('Session not initialized')
        self._set_state(SessionState.LOGGING_IN)
        self.context.clear_cookies()
        driver.navigate(self.settings.login_url, max_retries=1)

        logger.info('Entering email...')
        if driver.wait_for_any([S.EMAIL_INPUT]) is None:
            raise LoginError('Login form did not render', timed_out=True)
        driver.type_text(S.EMAIL_INPUT, self.settings.email)
        self.human.random_delay(2.0, 4.0)
        if not driver.click(S.EMAIL_CONTINUE):
            raise LoginError('Could not click continue after email')

        logger.info('Entering password...')
        if driver.wait_for_any([S.PASSWORD_INPUT], 30000) is None:
            banner = self._error_banner()
            if banner:
                raise LoginRejectedError(banner)
            raise LoginError('Password field did not appear', timed_out=True)
        driver.type_text(S.PASSWORD_INPUT, self.settings.password)
        self.human.random_delay(2.0, 4.0)
        if not driver.click(S.LOGIN_SUBMIT):
            raise LoginError('Could not click login submit')

        logger.info('Waiting for login completion...')
        try:
            matched = driver.race_navigation(S.LOGIN_ERROR_BANNERS, self.settings.navigation_timeout_ms)
        except NavigationError as e:
            # the site sometimes swaps the session without a navigation event
            if e.timed_out and self.check_login_status():
                logger.info('Navigation timed out but session is authenticated')
                self._set_state(SessionState.LOGGED_IN)
                return True
            raise LoginError(f"Login did not complete: {e}", timed_out=e.timed_out) from e
        if matched is not None:
            raise LoginRejectedError(driver.text_of(matched) or 'login error banner shown')

        self.human.random_delay(2.0, 4.0)
        if not self.check_login_status():
            raise LoginError('Login failed - still on login page')
        self._set_state(SessionState.LOGGED_IN)
        logger.info('Login successful')
        return True

    def _error_banner(self) -> Optional[str]:
        for sel in S.LOGIN_ERROR_BANNERS:
            if self.driver.is_visible(sel):
                return self.driver.text_of(sel) or sel
        return None

    def login_with_retry(self) -> bool:
        def _attempt(attempt: int) -> bool:
            try:
                return self.login()
            except LoginRejectedError:
                raise
            except Exception as e:
                if is_timeout(e) and self.check_login_status():
                    logger.info(f"Login attempt {attempt} timed out but session is authenticated")
                    self._set_state(SessionState.LOGGED_IN)
                    return True
                raise

        try:
            ok = bounded_retry(
                _attempt,
                max_attempts=self.settings.max_retries,
                delay_policy=backoff_policy(self.settings.retry_delay),
                sleep=self.human.sleep,
                label='login',
            )
        except LoginRejectedError as e:
            self._set_state(SessionState.FATAL)
            log_event('login_failed', reason=e.reason)
            raise SessionFatalError(str(e)) from e
        except RetryExhaustedError as e:
            self._set_state(SessionState.FATAL)
            log_event('login_failed', reason=str(e.last_error))
            raise SessionFatalError(f"Max login retries exceeded: {e.last_error}") from e
        log_event('login_ok')
        return ok
