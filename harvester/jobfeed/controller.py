"""
Long-lived owner of the scrape loop.

One `ScrapeController` holds the ProcessedSet / Batch (via `BatchTracker`)
for the life of the process and drives:

    initialize -> base page -> login if needed -> [cycle]* -> flush -> close

Cycles: open listing, load more, extract fresh references, capture each one
strictly in sequence, flush at threshold and at cycle end. A cycle that
raises loses its pending batch; a `SessionFatalError` ends the run.
"""
from __future__ import annotations
from typing import Callable, List, Optional
import logging
import threading

from .capture import DetailCaptureMachine
from .errors import AlreadyRunningError, SessionFatalError
from .listing import ListingTraversal
from .logging_config import log_event, log_summary
from .models import JobReference, ProcessingOutcome, Skipped
from .session import SessionController
from .settings import SETTINGS, Settings
from .tracker import BatchTracker

logger = logging.getLogger('controller')


class ScrapeController:
    def __init__(self, session: SessionController, store, *, settings: Settings = SETTINGS,
                 machine: Optional[DetailCaptureMachine] = None,
                 listing_factory: Optional[Callable[..., ListingTraversal]] = None,
                 stop_event: Optional[threading.Event] = None):
        self.session = session
        self.store = store
        self.settings = settings
        self.human = session.human
        self.machine = machine or DetailCaptureMachine.for_session(session, settings=settings)
        self.listing_factory = listing_factory or ListingTraversal
        self.tracker = BatchTracker(store, settings.batch_size)
        self.stop_event = stop_event or threading.Event()
        self._run_lock = threading.Lock()
        self.cycles = 0
        # pauses wake up as soon as stop() is called
        self.human.set_sleep(self._interruptible_sleep)

    def _interruptible_sleep(self, seconds: float):
        self.stop_event.wait(seconds)

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self):
        if not self.stop_event.is_set():
            logger.info('Stop requested')
        self.stop_event.set()

    def reset_stop(self):
        """Re-arm a stopped controller for the next activation window."""
        self.stop_event.clear()

    # ---- top level ----------------------------------------------------------
    def run(self, max_cycles: Optional[int] = None):
        """Run until stopped (or `max_cycles` completed in this run). Raises AlreadyRunningError on overlap."""
        if not self._run_lock.acquire(blocking=False):
            raise AlreadyRunningError('Scraper is already running')
        try:
            first_cycle = self.cycles
            self._start_session()
            while not self.stopped:
                if max_cycles is not None and self.cycles - first_cycle >= max_cycles:
                    break
                try:
                    self.run_cycle()
                except SessionFatalError:
                    raise
                except Exception as e:
                    logger.error(f"Error during scraping cycle: {e}", exc_info=True)
                    log_event('cycle_error', error=str(e))
                    self.tracker.discard()
                    self.human.pause(self.settings.refresh_delay)
                    continue
                self.human.random_delay(2.0, 3.0)
        finally:
            try:
                self.tracker.flush('shutdown')
            finally:
                self.session.close()
                self._run_lock.release()
                log_summary('Run summary', self.tracker.summary(), logger)

    def _start_session(self):
        self.session.initialize()
        self.session.driver.navigate(self.settings.base_url, max_retries=self.settings.max_retries,
                                     retry_delay=self.settings.retry_delay)
        self.session.ensure_logged_in()

    def run_cycle(self) -> List[ProcessingOutcome]:
        self.cycles += 1
        self.session.ensure_connected()
        listing = self.listing_factory(self.session.driver, self.settings, self.human)
        listing.open()
        listing.load_more()
        refs = listing.extract_references(self.tracker.processed)
        self.tracker.note_found(len(refs))
        if not refs:
            logger.info('No new jobs found, waiting before refresh...')
            self.human.pause(self.settings.refresh_delay)
            return []

        outcomes: List[ProcessingOutcome] = []
        for i, ref in enumerate(refs):
            if self.stopped:
                logger.info('Stop requested; abandoning remaining jobs in cycle')
                break
            self.session.ensure_connected()
            logger.info(f"Processing job {i + 1}/{len(refs)}: {ref.id}")
            outcomes.append(self.process_reference(ref))
            self.tracker.flush_if_full()
            if i + 1 < len(refs):
                self.human.pause(self.settings.job_delay)

        self.tracker.flush('cycle_end')
        summary = self.tracker.summary()
        try:
            summary['stored_keys'] = len(self.store.list_keys())
        except Exception as e:
            logger.debug(f"Could not count stored keys: {e}")
        log_summary(f"Cycle {self.cycles} summary", summary, logger)
        return outcomes

    def process_reference(self, ref: JobReference) -> ProcessingOutcome:
        if self.tracker.is_processed(ref.id):
            logger.info(f"Skipping already processed job {ref.id}")
            return Skipped(ref.id, 'already_processed')
        outcome = self.machine.process(ref)
        self.tracker.record_outcome(outcome)
        return outcome
