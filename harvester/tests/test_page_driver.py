import pytest

from harvester.jobfeed import selectors as S
from harvester.jobfeed.errors import NavigationError
from harvester.jobfeed.human import InstantHumanInput
from harvester.jobfeed.page_driver import PageDriver, first_clickable
from harvester.tests.fakes import FakeElement, FakePage, timeout_error


def make_driver(page, factory=None):
    return PageDriver(page, human=InstantHumanInput(), page_factory=factory, timeout_ms=100,
                      navigation_timeout_ms=100)


def test_navigate_succeeds_first_try():
    page = FakePage()
    make_driver(page).navigate('https://site.test/jobs', retry_delay=0)
    assert page.gotos == ['https://site.test/jobs']
    assert page.reloads == 0


def test_navigate_reloads_responsive_tab_then_retries():
    page = FakePage(goto_errors=[timeout_error(), None])
    make_driver(page).navigate('https://site.test', retry_delay=0)
    assert page.reloads == 1
    assert len(page.gotos) == 2


def test_navigate_replaces_unresponsive_tab():
    dead = FakePage(goto_errors=[RuntimeError('crashed')])
    dead.responsive = False
    fresh = FakePage()
    driver = make_driver(dead, factory=lambda: fresh)
    driver.navigate('https://site.test', retry_delay=0)
    assert dead.closed
    assert driver.page is fresh
    assert fresh.gotos == ['https://site.test']


def test_navigate_raises_after_exhausting_retries():
    page = FakePage(goto_errors=[timeout_error()] * 3)
    with pytest.raises(NavigationError) as exc:
        make_driver(page).navigate('https://site.test', max_retries=3, retry_delay=0)
    assert exc.value.timed_out
    assert 'after 3 attempts' in str(exc.value)
    assert len(page.gotos) == 3


def test_wait_for_any_returns_matching_selector_or_none():
    page = FakePage({'.b': FakeElement()})
    driver = make_driver(page)
    assert driver.wait_for_any(['.a', '.b']) == '.b'
    assert driver.wait_for_any(['.x', '.y']) is None
    assert driver.wait_for_any([]) is None


def test_click_returns_false_instead_of_raising():
    hidden = FakeElement(visible=False)
    no_box = FakeElement(box={})
    page = FakePage({'.hidden': hidden, '.nobox': no_box, '.ok': FakeElement()})
    driver = make_driver(page)
    assert driver.click('.missing', timeout_ms=10) is False
    assert driver.click('.hidden') is False and hidden.clicks == 0
    assert driver.click('.nobox') is False
    assert driver.click('.ok') is True
    assert page.elements['.ok'].clicks == 1


def test_first_clickable_tries_alternates_in_order():
    page = FakePage({'.second': FakeElement()})
    assert first_clickable(make_driver(page), ['.first', '.second']) == '.second'


def test_race_navigation_detects_error_banner():
    page = FakePage({S.LOGIN_ERROR_BANNERS[0]: FakeElement('Bad password')})
    assert make_driver(page).race_navigation(S.LOGIN_ERROR_BANNERS, 1000) == S.LOGIN_ERROR_BANNERS[0]


def test_race_navigation_settles_on_url_change():
    page = FakePage()
    driver = make_driver(page)
    original_wait = page.wait_for_timeout

    def navigate_later(ms):
        page.url = 'https://site.test/nx/find-work'
        return original_wait(ms)

    page.wait_for_timeout = navigate_later
    assert driver.race_navigation(S.LOGIN_ERROR_BANNERS, 1000) is None


def test_race_navigation_times_out():
    with pytest.raises(NavigationError) as exc:
        make_driver(FakePage()).race_navigation(S.LOGIN_ERROR_BANNERS, 500)
    assert exc.value.timed_out


def test_challenge_wait_raises_when_form_never_clears():
    page = FakePage({S.CHALLENGE_FORM: FakeElement()})
    with pytest.raises(NavigationError):
        make_driver(page).wait_out_challenge(timeout_ms=10)
    assert make_driver(FakePage()).wait_out_challenge() is False


def test_cookie_consent_clicks_first_visible_button():
    button = FakeElement()
    page = FakePage({S.COOKIE_CONSENT_BUTTONS[1]: button})
    assert make_driver(page).handle_cookie_consent() is True
    assert button.clicks == 1


def test_is_responsive_probe():
    page = FakePage()
    driver = make_driver(page)
    assert driver.is_responsive()
    page.responsive = False
    assert not driver.is_responsive()


def test_type_text_types_each_character():
    page = FakePage({'#in': FakeElement()})
    make_driver(page).type_text('#in', 'abc')
    assert page.keyboard.typed == ['a', 'b', 'c']
