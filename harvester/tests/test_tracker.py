import pytest

from harvester.jobfeed.models import Failed, ScrapeMethod, Skipped, Success
from harvester.jobfeed.tracker import BatchTracker
from harvester.tests.fakes import MemoryStore, make_record


def test_success_batches_and_marks_processed(memory_store):
    tracker = BatchTracker(memory_store, threshold=5)
    tracker.record_outcome(Success(make_record('~1')))
    assert tracker.is_processed('~1')
    assert [r.job_id for r in tracker.batch] == ['~1']


def test_skip_and_failure_only_mark_processed(memory_store):
    tracker = BatchTracker(memory_store, threshold=5)
    tracker.record_outcome(Skipped('~1', 'job_deleted'))
    tracker.record_outcome(Failed('~2', 'Both capture strategies failed', url='u'))
    assert tracker.processed == {'~1', '~2'}
    assert tracker.batch == []
    assert tracker.summary()['skipped'] == 1 and tracker.summary()['errors'] == 1


def test_invalid_success_never_reaches_batch(memory_store):
    tracker = BatchTracker(memory_store, threshold=5)
    tracker.record_outcome(Success(make_record('~1', title='')))
    assert tracker.batch == []
    assert tracker.is_processed('~1')
    assert tracker.stats['errors'] == 1


def test_flush_happens_exactly_at_threshold():
    store = MemoryStore()
    tracker = BatchTracker(store, threshold=3)
    for i in range(2):
        tracker.record_outcome(Success(make_record(f'~{i}')))
        assert tracker.flush_if_full() is None
    assert store.batches == []
    tracker.record_outcome(Success(make_record('~2')))
    assert tracker.flush_if_full() == 3
    assert len(store.batches) == 1 and len(store.batches[0]) == 3
    assert tracker.batch == []


def test_store_failure_is_logged_and_batch_cleared():
    store = MemoryStore(fail=True)
    tracker = BatchTracker(store, threshold=1)
    tracker.record_outcome(Success(make_record('~1')))
    assert tracker.flush_if_full() is None
    assert tracker.batch == []
    assert len(store.batches) == 1


def test_discard_drops_pending_records():
    store = MemoryStore()
    tracker = BatchTracker(store, threshold=10)
    tracker.record_outcome(Success(make_record('~1', method=ScrapeMethod.DIRECT_URL)))
    assert tracker.discard() == 1
    assert tracker.flush('cycle_end') == 0
    assert store.batches == []
    assert tracker.is_processed('~1')


def test_summary_counts(memory_store):
    tracker = BatchTracker(memory_store, threshold=10)
    tracker.note_found(4)
    tracker.record_outcome(Success(make_record('~1')))
    tracker.record_outcome(Skipped('~2', 'access_denied'))
    summary = tracker.summary()
    assert summary['found'] == 4
    assert summary['new'] == 1
    assert summary['total'] == 2
    assert summary['pending'] == 1


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        BatchTracker(MemoryStore(), threshold=0)
