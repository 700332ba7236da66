"""
Per-job detail capture.

Two strategies share one contract, `capture(ref) -> JobRecord` (raising on
failure), and `DetailCaptureMachine` runs them as a fixed-order fallback
chain:

    Start -> TryModal -> ModalSuccess | ModalFailed
          -> TryDirect -> DirectSuccess | DirectFailed
          -> Success | Skipped | Failed

A `TerminalJobError` (access denied, deleted, blocked, not available) ends
the chain immediately as Skipped. `SessionFatalError` is never converted to
an outcome; it stops the pipeline.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Tuple
import logging

from . import selectors as S
from .errors import (CaptureError, IncompleteDetailsError, RetryExhaustedError, SessionFatalError,
                     TerminalJobError)
from .human import HumanInput
from .logging_config import log_event
from .models import Failed, JobRecord, JobReference, ProcessingOutcome, ScrapeMethod, Skipped, Success
from .page_driver import PageDriver, first_clickable
from .page_reader import PageReader, SelectorPageReader, validate_record
from .settings import SETTINGS, Settings
from .util.retry import bounded_retry, jitter_policy

logger = logging.getLogger('capture')


class CaptureStrategy(Protocol):
    method: ScrapeMethod

    def capture(self, ref: JobReference) -> JobRecord: ...


class ModalCapture:
    """Open the job in the listing page's slide-over modal and read it there."""
    method = ScrapeMethod.MODAL

    def __init__(self, session, reader: Optional[PageReader] = None, settings: Settings = SETTINGS,
                 human: Optional[HumanInput] = None):
        self.session = session
        self.reader = reader or SelectorPageReader()
        self.settings = settings
        self.human = human or session.human

    @property
    def driver(self) -> PageDriver:
        # the primary tab can be replaced after a reconnect
        return self.session.driver

    def capture(self, ref: JobReference) -> JobRecord:
        attempts = self.settings.modal_attempts
        try:
            return bounded_retry(
                lambda attempt: self._attempt(ref, attempt),
                max_attempts=attempts,
                delay_policy=jitter_policy(1.0, 2.0),
                on_retry=lambda _exc, _n: self.cleanup(),
                sleep=self.human.sleep,
                label=f'modal capture {ref.id}',
            )
        except RetryExhaustedError as e:
            if self.driver.is_present(S.MODAL_DIALOG):
                self.cleanup()
            raise CaptureError(f"Modal scraping failed after {attempts} attempts: {e.last_error}") from e

    def _attempt(self, ref: JobReference, attempt: int) -> JobRecord:
        d = self.driver
        logger.debug(f"Modal attempt {attempt} for job {ref.id}")
        self.human.random_delay(0.5, 1.0)
        if not self._click_tile(ref):
            raise CaptureError('Failed to click job card - element not found or not clickable')
        self.human.random_delay(1.0, 2.0)
        if d.wait_for_any(S.MODAL_OPENED, 5000) is None:
            raise CaptureError('Modal failed to open properly - no modal indicators found')
        # error banners render a moment after the modal frame
        self.human.random_delay(1.0, 2.0)
        try:
            check_error_states(d)
        except TerminalJobError:
            self.close_modal()
            raise
        raw = self.reader.read_fields(d, [S.MODAL_CONTENT_ROOT], root=S.MODAL_DIALOG)
        if not raw:
            raise CaptureError('Failed to extract modal data - empty response')
        record = self.reader.to_job_record(raw, ref, ScrapeMethod.MODAL, retried=attempt > 1)
        self.close_modal()
        return record

    def _click_tile(self, ref: JobReference) -> bool:
        d = self.driver
        for sel in S.tile_selectors(ref.id):
            if not d.is_present(sel):
                continue
            if not d.in_viewport(sel):
                d.scroll_into_view(sel)
            if d.click(sel):
                return True
        return False

    def close_modal(self) -> bool:
        """Close via a close button or Escape, then verify. Returns False if the dialog is still up."""
        d = self.driver
        if first_clickable(d, [sel for sel in S.MODAL_CLOSE_BUTTONS if d.is_visible(sel)]) is None:
            logger.warning('Used Escape key to close modal after button clicks failed')
            d.press_escape()
        self.human.random_delay(1.0, 2.0)
        if d.is_present(S.MODAL_DIALOG):
            logger.warning('Modal appears to still be open after close attempts')
            d.press_escape()
            return False
        return True

    def cleanup(self):
        """Escape out of a stuck modal between attempts."""
        d = self.driver
        d.press_escape()
        self.human.random_delay(1.0, 2.0)
        if d.is_present(S.MODAL_DIALOG):
            d.press_escape()
            self.human.random_delay(1.0, 2.0)


class DirectCapture:
    """Open the job permalink in a throwaway tab."""
    method = ScrapeMethod.DIRECT_URL

    def __init__(self, session, reader: Optional[PageReader] = None, settings: Settings = SETTINGS,
                 human: Optional[HumanInput] = None):
        self.session = session
        self.reader = reader or SelectorPageReader()
        self.settings = settings
        self.human = human or session.human

    def capture(self, ref: JobReference) -> JobRecord:
        with self.session.new_tab() as tab:
            logger.info(f"Opening job URL in new tab: {ref.href}")
            tab.navigate(ref.href, max_retries=1)
            self.human.random_delay(1.0, 2.0)
            self.human.simulate_scrolling(tab)
            raw = self.reader.read_fields(tab, S.DETAIL_CONTENT)
            if not raw:
                raise CaptureError('Job content not found')
            return self.reader.to_job_record(raw, ref, ScrapeMethod.DIRECT_URL)


def check_error_states(driver: PageDriver):
    """Raise TerminalJobError if the page shows one of the known unavailable-job states."""
    for reason, selector, phrase in S.ERROR_STATES:
        try:
            text = driver.text_of(selector)
        except Exception as e:
            logger.debug(f"Error-state probe {reason} failed: {e}")
            continue
        if text and phrase in text.lower():
            raise TerminalJobError(reason)


class CaptureState(str, Enum):
    START = 'start'
    TRY_MODAL = 'try_modal'
    MODAL_SUCCESS = 'modal_success'
    MODAL_FAILED = 'modal_failed'
    TRY_DIRECT = 'try_direct'
    DIRECT_SUCCESS = 'direct_success'
    DIRECT_FAILED = 'direct_failed'
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass(frozen=True)
class StrategyStep:
    label: str
    strategy: CaptureStrategy
    trying: CaptureState
    succeeded: CaptureState
    failed: CaptureState


class DetailCaptureMachine:
    def __init__(self, modal: CaptureStrategy, direct: CaptureStrategy, human: Optional[HumanInput] = None):
        self.chain: Tuple[StrategyStep, ...] = (
            StrategyStep('Modal', modal, CaptureState.TRY_MODAL, CaptureState.MODAL_SUCCESS, CaptureState.MODAL_FAILED),
            StrategyStep('Direct', direct, CaptureState.TRY_DIRECT, CaptureState.DIRECT_SUCCESS, CaptureState.DIRECT_FAILED),
        )
        self.human = human or HumanInput(SETTINGS.delay_scale)
        self.trace: List[CaptureState] = []

    @classmethod
    def for_session(cls, session, reader: Optional[PageReader] = None, settings: Settings = SETTINGS):
        reader = reader or SelectorPageReader()
        return cls(ModalCapture(session, reader, settings), DirectCapture(session, reader, settings), human=session.human)

    def _enter(self, state: CaptureState):
        self.trace.append(state)

    def process(self, ref: JobReference) -> ProcessingOutcome:
        """Run the fallback chain for one reference; always returns exactly one outcome."""
        self.trace = [CaptureState.START]
        if not ref.id or not ref.href:
            logger.warning(f"Invalid job info received: {ref!r}")
            self._enter(CaptureState.FAILED)
            return Failed(ref.id or '', 'Invalid job info', url=ref.href or None)

        errors: List[Tuple[str, BaseException]] = []
        for i, step in enumerate(self.chain):
            self._enter(step.trying)
            try:
                record = step.strategy.capture(ref)
                if not validate_record(record):
                    raise IncompleteDetailsError(record.missing_required())
            except TerminalJobError as e:
                self._enter(step.failed)
                self._enter(CaptureState.SKIPPED)
                logger.info(f"Skipping job {ref.id}: {e.reason}")
                return Skipped(ref.id, e.reason)
            except SessionFatalError:
                raise
            except Exception as e:
                self._enter(step.failed)
                errors.append((step.label, e))
                logger.warning(f"{step.label} capture failed for job {ref.id}: {e}")
                if i + 1 < len(self.chain):
                    self.human.random_delay(1.0, 2.0)
                continue
            self._enter(step.succeeded)
            self._enter(CaptureState.SUCCESS)
            return Success(record)

        self._enter(CaptureState.FAILED)
        detail = '; '.join(f"{label}: {err}" for label, err in errors)
        log_event('capture_failed', job_id=ref.id, trace=[s.value for s in self.trace])
        return Failed(ref.id, f"Both capture strategies failed - {detail}", url=ref.href)
