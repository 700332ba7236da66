import dataclasses

import pytest

from harvester.jobfeed import selectors as S
from harvester.jobfeed.errors import LoginError, LoginRejectedError, NavigationError, SessionFatalError
from harvester.jobfeed.human import InstantHumanInput
from harvester.jobfeed.page_driver import PageDriver
from harvester.jobfeed.session import SessionController, SessionState
from harvester.jobfeed.settings import SETTINGS
from harvester.tests.fakes import FakeContext, FakeDriver, FakeElement, FakePage, FakePlaywright


TEST_SETTINGS = dataclasses.replace(SETTINGS, max_retries=3, max_reconnect_attempts=2, retry_delay=0.0,
                                    email='me@example.test', password='secret')


class Launcher:
    def __init__(self, fail_after=None, page_factory=FakePage):
        self.calls = 0
        self.fail_after = fail_after
        self.contexts = []
        self.page_factory = page_factory

    def __call__(self, settings):
        self.calls += 1
        if self.fail_after is not None and self.calls > self.fail_after:
            raise RuntimeError('browser failed to launch')
        ctx = FakeContext(self.page_factory)
        self.contexts.append(ctx)
        return FakePlaywright(), ctx


def make_session(launcher=None):
    session = SessionController(TEST_SETTINGS, human=InstantHumanInput(), launcher=launcher or Launcher())
    session.initialize()
    return session


def login_driver(session, **kw):
    """Swap in a scripted driver where the login form renders."""
    driver = FakeDriver(present={S.EMAIL_INPUT, S.PASSWORD_INPUT, S.EMAIL_CONTINUE, S.LOGIN_SUBMIT}, human=session.human)
    for k, v in kw.items():
        setattr(driver, k, v)
    session.driver = driver
    return driver


def test_initialize_reaches_ready_with_primary_tab():
    launcher = Launcher()
    session = make_session(launcher)
    assert session.state is SessionState.READY
    assert isinstance(session.driver, PageDriver)
    assert 'close' in launcher.contexts[0].handlers


def test_login_success_after_navigation_settles():
    session = make_session()
    driver = login_driver(session, race_result=None)
    driver.present.discard(S.LOGIN_BUTTON)
    assert session.login() is True
    assert session.state is SessionState.LOGGED_IN
    assert driver.typed == {S.EMAIL_INPUT: 'me@example.test', S.PASSWORD_INPUT: 'secret'}
    assert session.context.cookies_cleared == 1


def test_login_error_banner_is_rejection_with_reason():
    session = make_session()
    banner = S.LOGIN_ERROR_BANNERS[0]
    driver = login_driver(session, race_result=banner)
    driver.present.add(banner)
    driver.texts[banner] = 'Incorrect password.'
    with pytest.raises(LoginRejectedError) as exc:
        session.login()
    assert exc.value.reason == 'Incorrect password.'


def test_login_timeout_falls_back_to_dom_status_check():
    session = make_session()
    login_driver(session, race_result=NavigationError('slow', timed_out=True))
    assert session.login() is True
    assert session.state is SessionState.LOGGED_IN


def test_login_timeout_with_login_button_still_present_fails():
    session = make_session()
    driver = login_driver(session, race_result=NavigationError('slow', timed_out=True))
    driver.present.add(S.LOGIN_BUTTON)
    with pytest.raises(LoginError) as exc:
        session.login()
    assert exc.value.timed_out


def test_login_with_retry_rejection_is_fatal_without_retrying():
    session = make_session()
    banner = S.LOGIN_ERROR_BANNERS[1]
    driver = login_driver(session, race_result=banner)
    driver.present.add(banner)
    with pytest.raises(SessionFatalError):
        session.login_with_retry()
    assert len(driver.navigations) == 1
    assert session.state is SessionState.FATAL


def test_login_with_retry_exhaustion_is_fatal():
    session = make_session()
    driver = login_driver(session, race_result=NavigationError('slow', timed_out=True))
    driver.present.add(S.LOGIN_BUTTON)
    with pytest.raises(SessionFatalError) as exc:
        session.login_with_retry()
    assert 'Max login retries exceeded' in str(exc.value)
    assert len(driver.navigations) == TEST_SETTINGS.max_retries


def test_login_with_retry_rechecks_status_after_timeout():
    session = make_session()
    driver = login_driver(session)
    # form never renders (timeout) but the session is already authenticated
    driver.present = set()
    assert session.login_with_retry() is True
    assert len(driver.navigations) == 1
    assert session.state is SessionState.LOGGED_IN


def test_disconnect_callback_marks_state_only():
    launcher = Launcher()
    session = make_session(launcher)
    launcher.contexts[0].handlers['close']()
    assert session.state is SessionState.DISCONNECTED
    assert launcher.calls == 1


def test_tab_crash_marks_disconnected():
    launcher = Launcher()
    session = make_session(launcher)
    page = launcher.contexts[0].opened[0]
    page.handlers['crash']()
    assert session.state is SessionState.DISCONNECTED


def test_ensure_connected_reconnects_and_restores_login():
    launcher = Launcher()
    session = make_session(launcher)
    assert session.ensure_connected() is False
    launcher.contexts[0].handlers['close']()
    assert session.ensure_connected() is True
    assert launcher.calls == 2
    assert launcher.contexts[0].closed
    assert session.state is SessionState.LOGGED_IN
    assert session.reconnects == 1


def test_reconnect_cap_is_fatal():
    launcher = Launcher(fail_after=1)
    session = make_session(launcher)
    launcher.contexts[0].handlers['close']()
    with pytest.raises(SessionFatalError) as exc:
        session.ensure_connected()
    assert 'Max reconnect attempts' in str(exc.value)
    assert launcher.calls == 1 + TEST_SETTINGS.max_reconnect_attempts
    assert session.state is SessionState.FATAL


def test_new_tab_always_closed():
    launcher = Launcher()
    session = make_session(launcher)
    with pytest.raises(RuntimeError):
        with session.new_tab():
            raise RuntimeError('capture blew up')
    tab_page = launcher.contexts[0].opened[-1]
    assert tab_page.closed


def test_check_login_status_reads_login_button():
    launcher = Launcher(page_factory=lambda: FakePage({S.LOGIN_BUTTON: FakeElement('Log In')}))
    session = make_session(launcher)
    assert session.check_login_status() is False


def test_close_ignores_late_disconnect_events():
    launcher = Launcher()
    session = make_session(launcher)
    session.close()
    launcher.contexts[0].handlers['close']()
    assert session.state is SessionState.UNINITIALIZED


def test_authenticated_profile_is_logged_in_without_login_flow():
    session = make_session()
    driver = FakeDriver(human=session.human)
    session.driver = driver
    assert session.state is SessionState.READY
    assert session.ensure_logged_in() is True
    assert session.state is SessionState.LOGGED_IN
    assert driver.navigations == []
    assert session.context.cookies_cleared == 0


def test_anonymous_profile_goes_through_login():
    session = make_session()
    driver = login_driver(session, race_result=None)
    driver.present.add(S.LOGIN_BUTTON)
    driver.on_click[S.LOGIN_SUBMIT] = lambda: driver.present.discard(S.LOGIN_BUTTON)
    assert session.ensure_logged_in() is True
    assert session.state is SessionState.LOGGED_IN
    assert driver.navigations == [TEST_SETTINGS.login_url]
