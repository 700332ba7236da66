import dataclasses
import fnmatch
import json

import pytest
import redis

from harvester.jobfeed.errors import StoreError
from harvester.jobfeed.settings import SETTINGS
from harvester.jobfeed.store import RedisJobStore, SqliteJobStore, build_store
from harvester.tests.fakes import make_record

PREFIX = 'test:harvester:'


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def sqlite_store(tmp_path, clock):
    return SqliteJobStore(tmp_path / 'store.sqlite', key_prefix=PREFIX, ttl=600, clock=clock)


def test_sqlite_batch_write_adds_meta_and_camel_case(sqlite_store):
    assert sqlite_store.batch_write([make_record('~1'), make_record('~2')]) == 2
    payload = sqlite_store.get('~1')
    assert payload['jobId'] == '~1'
    assert payload['scrapeMethod'] == 'modal'
    assert payload['_meta']['expiresIn'] == 600
    assert 'savedAt' in payload['_meta']
    assert sqlite_store.list_keys() == [f'{PREFIX}uid:~1', f'{PREFIX}uid:~2']


def test_sqlite_batch_write_never_overwrites(sqlite_store):
    sqlite_store.batch_write([make_record('~1', title='First')])
    assert sqlite_store.batch_write([make_record('~1', title='Second'), make_record('~3')]) == 1
    assert sqlite_store.get('~1')['title'] == 'First'


def test_sqlite_entries_expire(sqlite_store, clock):
    sqlite_store.batch_write([make_record('~1')])
    clock.now += 599
    assert sqlite_store.exists(sqlite_store.job_key('~1'))
    clock.now += 2
    assert not sqlite_store.exists(sqlite_store.job_key('~1'))
    assert sqlite_store.get('~1') is None
    # expired key may be written again
    assert sqlite_store.batch_write([make_record('~1')]) == 1


def test_sqlite_clear_only_touches_namespace(sqlite_store):
    sqlite_store.batch_write([make_record('~1'), make_record('~2')])
    sqlite_store.set_with_ttl('other:key', {'a': 1}, 60)
    assert sqlite_store.clear() == 2
    assert sqlite_store.list_keys() == []
    assert sqlite_store.list_keys('other:') == ['other:key']


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.queued = []

    def set(self, key, value, ex=None):
        self.queued.append((key, value, ex))

    def execute(self):
        for key, value, ex in self.queued:
            self.client.set(key, value, ex=ex)
        self.client.executions += 1
        return [True] * len(self.queued)


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.ttls = {}
        self.fail = fail
        self.executions = 0
        self.closed = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError('Connection refused')

    def exists(self, key):
        self._check()
        return int(key in self.data)

    def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def pipeline(self):
        return FakePipeline(self)

    def scan_iter(self, match=None, count=None):
        self._check()
        return iter([k for k in sorted(self.data) if fnmatch.fnmatch(k, match)])

    def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def close(self):
        self.closed = True


def test_redis_batch_write_uses_single_pipeline_with_expiry():
    client = FakeRedis()
    store = RedisJobStore(client, key_prefix=PREFIX, ttl=600)
    assert store.batch_write([make_record('~1'), make_record('~2')]) == 2
    assert client.executions == 1
    assert client.ttls[f'{PREFIX}uid:~1'] == 600
    assert json.loads(client.data[f'{PREFIX}uid:~2'])['_meta']['expiresIn'] == 600


def test_redis_skips_existing_keys():
    client = FakeRedis()
    store = RedisJobStore(client, key_prefix=PREFIX, ttl=600)
    client.set(f'{PREFIX}uid:~1', '{"title": "kept"}')
    assert store.batch_write([make_record('~1'), make_record('~2')]) == 1
    assert store.get('~1') == {'title': 'kept'}


def test_redis_list_get_clear():
    client = FakeRedis()
    store = RedisJobStore(client, key_prefix=PREFIX, ttl=600)
    store.batch_write([make_record('~1'), make_record('~2')])
    client.set('unrelated', 'x')
    assert store.list_keys() == [f'{PREFIX}uid:~1', f'{PREFIX}uid:~2']
    assert store.get('~9') is None
    assert store.clear() == 2
    assert 'unrelated' in client.data
    store.disconnect()
    assert client.closed


def test_redis_errors_become_store_errors():
    store = RedisJobStore(FakeRedis(fail=True), key_prefix=PREFIX, ttl=600)
    with pytest.raises(StoreError):
        store.batch_write([make_record('~1')])
    with pytest.raises(StoreError):
        store.list_keys()


def test_build_store_picks_sqlite_backend(tmp_path):
    settings = dataclasses.replace(SETTINGS, store_backend='sqlite', sqlite_path=tmp_path / 'x.sqlite')
    store = build_store(settings)
    assert isinstance(store, SqliteJobStore)
    assert store.ttl == settings.record_ttl
