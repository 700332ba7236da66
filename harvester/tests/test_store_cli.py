from harvester.scripts.store_cli import main
from harvester.tests.fakes import MemoryStore, make_record


def seeded_store():
    store = MemoryStore()
    store.batch_write([make_record('~1'), make_record('~2')])
    return store


def test_count(capsys):
    store = seeded_store()
    assert main(['count'], store=store) == 0
    assert '2 jobs stored' in capsys.readouterr().out
    assert store.disconnected


def test_show_prints_payload(capsys):
    assert main(['show', '~1'], store=seeded_store()) == 0
    assert '"jobId": "~1"' in capsys.readouterr().out


def test_show_missing_job_fails(capsys):
    assert main(['show', '~404'], store=seeded_store()) == 1
    assert 'not found' in capsys.readouterr().out


def test_clear_requires_confirmation():
    store = seeded_store()
    assert main(['clear'], store=store) == 1
    assert len(store.data) == 2
    assert main(['clear', '--yes'], store=store) == 0
    assert store.data == {}
