from __future__ import annotations
from typing import Dict, List, Optional, Set
import logging

from .logging_config import log_event
from .models import Failed, JobRecord, ProcessingOutcome, Skipped, Success

logger = logging.getLogger('tracker')


class BatchTracker:
    """In-run dedup set plus the pending batch of records awaiting a store write.

    Owned by one controller; nothing here is shared across threads.
    """

    def __init__(self, store, threshold: int):
        if threshold < 1:
            raise ValueError('threshold must be >= 1')
        self.store = store
        self.threshold = threshold
        self.processed: Set[str] = set()
        self.batch: List[JobRecord] = []
        self.stats: Dict[str, int] = {'found': 0, 'new': 0, 'skipped': 0, 'errors': 0, 'stored': 0}

    def is_processed(self, job_id: str) -> bool:
        return job_id in self.processed

    def note_found(self, count: int):
        self.stats['found'] += count

    def record_outcome(self, outcome: ProcessingOutcome):
        if outcome.job_id:
            self.processed.add(outcome.job_id)
        if isinstance(outcome, Success):
            if not outcome.record.is_valid():
                # never batch an incomplete record
                logger.error(f"Refusing invalid record for job {outcome.job_id}: missing {outcome.record.missing_required()}")
                self.stats['errors'] += 1
                return
            self.batch.append(outcome.record)
            self.stats['new'] += 1
            logger.info(f"Scraped job {outcome.job_id} via {outcome.record.scrape_method.value}")
            log_event('job_outcome', job_id=outcome.job_id, status=outcome.status,
                      method=outcome.record.scrape_method.value)
        elif isinstance(outcome, Skipped):
            self.stats['skipped'] += 1
            logger.info(f"Skipped job {outcome.job_id}: {outcome.reason}")
            log_event('job_outcome', job_id=outcome.job_id, status=outcome.status, reason=outcome.reason)
        elif isinstance(outcome, Failed):
            self.stats['errors'] += 1
            logger.error(f"Failed to process job {outcome.job_id}: {outcome.error}")
            log_event('job_outcome', job_id=outcome.job_id, status=outcome.status, reason=outcome.error,
                      url=outcome.url)

    def flush_if_full(self) -> Optional[int]:
        if len(self.batch) >= self.threshold:
            return self.flush('threshold')
        return None

    def flush(self, reason: str = 'manual') -> Optional[int]:
        """Write the pending batch. Store errors are logged; the batch is cleared either way."""
        if not self.batch:
            return 0
        pending = self.batch
        self.batch = []
        try:
            written = self.store.batch_write(pending)
        except Exception as e:
            logger.error(f"Error saving job batch of {len(pending)} ({reason}): {e}")
            log_event('batch_flush_failed', size=len(pending), reason=reason, error=str(e))
            return None
        self.stats['stored'] += written
        logger.info(f"Flushed {len(pending)} records ({written} new) on {reason}")
        log_event('batch_flushed', size=len(pending), written=written, reason=reason)
        return written

    def discard(self) -> int:
        dropped = len(self.batch)
        if dropped:
            logger.warning(f"Discarding {dropped} pending records after cycle error")
            log_event('batch_discarded', size=dropped)
        self.batch = []
        return dropped

    def summary(self) -> Dict[str, int]:
        return {
            **self.stats,
            'total': len(self.processed),
            'pending': len(self.batch),
        }
