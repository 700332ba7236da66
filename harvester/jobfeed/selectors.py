"""Site markup knowledge: every CSS selector the pipeline relies on.

The site ships several markup versions at once, so most concerns list
alternates in preference order.
"""
from __future__ import annotations
from typing import List, Tuple

# ---- login ------------------------------------------------------------------
LOGIN_BUTTON = 'a[href="/ab/account-security/login"]'
EMAIL_INPUT = 'input[name="login[username]"]'
PASSWORD_INPUT = 'input[name="login[password]"]'
EMAIL_CONTINUE = '#login_password_continue'
LOGIN_SUBMIT = '#login_control_continue'
LOGIN_ERROR_BANNERS = [
    '#username-message',
    '#password-message',
    '.air3-alert-negative',
    '[data-test="login-error"]',
]

# ---- page furniture ---------------------------------------------------------
COOKIE_CONSENT_BUTTONS = [
    'button[data-cy="cookie-banner-accept"]',
    'button[data-cy="cookie-banner-accept-all"]',
    'button.accept-cookies',
]
CHALLENGE_FORM = '#challenge-form'

# ---- listing ----------------------------------------------------------------
JOB_TILE = 'article[data-test="JobTile"]'
JOB_TILE_LINKS = [
    'a[data-test="job-tile-title-link"]',
    'a[data-test="job-tile-title-link UpLink"]',
    '.job-tile-title a',
]
JOB_TILE_ID_ATTRIBUTES = ['data-ev-job-uid', 'data-job-uid', 'data-job-id']

VISITED_CLASSES = frozenset({'visited', 'air3-visited', 'up-visited', 'job-tile-visited'})
VISITED_CLASS_SUBSTRING = 'visited'


def tile_selectors(job_id: str) -> List[str]:
    """Alternate selectors locating one listing tile by job id, newest markup first."""
    return [
        f'article[data-ev-job-uid="{job_id}"]',
        f'div[data-ev-job-uid="{job_id}"]',
        f'[data-job-id="{job_id}"]',
        f'[data-test="job-tile"][data-job-uid="{job_id}"]',
    ]

# ---- modal ------------------------------------------------------------------
MODAL_DIALOG = 'div[role="dialog"]'
MODAL_OPENED = [
    '[data-test="SaveJob"]',
    '[data-test="job-details-modal"]',
    MODAL_DIALOG,
]
MODAL_CLOSE_BUTTONS = [
    'div[data-test="UpCIcon"].air3-slider-prev-icon',
    '[data-test="close-modal"]',
    'button[aria-label="Close"]',
    '.modal-close-button',
]
# (reason, selector, phrase expected in the element text)
ERROR_STATES: List[Tuple[str, str, str]] = [
    ('access_denied', 'h1.mt-5.mb-4.text-light-on-muted, [data-test="access-denied"]', 'access denied'),
    ('job_deleted', '[data-test="job-deleted"], .job-deleted-message', 'job deleted'),
    ('content_blocked', '.blocked-content-message, .content-blocked', 'content blocked'),
    ('job_not_available', '.job-details-error, .job-not-found', 'not available'),
]

# ---- detail content ---------------------------------------------------------
MODAL_CONTENT_ROOT = '.job-details-content'
DETAIL_CONTENT = ['.job-details-content', '[data-test="job-description"]']
