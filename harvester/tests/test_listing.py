import dataclasses

from harvester.jobfeed import selectors as S
from harvester.jobfeed.listing import ListingTraversal, TILES_JS, is_visited, references_from_tiles
from harvester.jobfeed.settings import SETTINGS
from harvester.tests.fakes import FakeDriver


def node(classes='', visited=None, state=None):
    return {'classes': classes, 'visited': visited, 'state': state}


def tile(job_id, chain=None, href=None):
    return {
        'id': job_id,
        'href': href if href is not None else f'https://site.test/jobs/{job_id}',
        'chain': chain if chain is not None else [node('up-n-link'), node('job-tile'), node('jobs-grid')],
    }


def test_is_visited_checks_every_marker_convention():
    assert not is_visited([node('job-tile'), node('grid')])
    assert is_visited([node('job-tile air3-visited')])
    assert is_visited([node('link'), node('tile'), node('wrapper', visited='true')])
    assert is_visited([node('tile', state='visited')])
    assert is_visited([node('tile is-visited-card')])
    assert not is_visited([node('tile', visited='false', state='open')])


def test_references_preserve_dom_order_and_drop_processed():
    tiles = [tile('~3'), tile('~1'), tile('~2'), tile('~1')]
    refs = references_from_tiles(tiles, processed={'~2'})
    assert [r.id for r in refs] == ['~3', '~1']


def test_tiles_without_id_or_link_are_dropped():
    refs = references_from_tiles([tile(None), tile('~5', href=''), tile('~6')])
    assert [r.id for r in refs] == ['~6']


def test_all_visited_snapshot_returns_empty_list():
    snapshot = [
        tile('~1', chain=[node('visited'), node('tile')]),
        tile('~2', chain=[node('link'), node('tile', visited='true')]),
        tile('~3', chain=[node('link'), node('tile'), node('section', state='visited')]),
        tile('~4', chain=[node('up-visited-link')]),
    ]
    driver = FakeDriver(present={S.JOB_TILE})
    driver.evaluate_fn = lambda script, arg: snapshot
    assert ListingTraversal(driver, SETTINGS).extract_references(set()) == []


def test_extract_references_passes_selectors_to_page_script():
    calls = []
    driver = FakeDriver(present={S.JOB_TILE})

    def evaluate(script, arg):
        calls.append((script, arg))
        return [tile('~1'), tile('~2')]

    driver.evaluate_fn = evaluate
    refs = ListingTraversal(driver, SETTINGS).extract_references({'~1'})
    assert [r.id for r in refs] == ['~2']
    assert calls[0][0] == TILES_JS
    assert calls[0][1]['idAttrs'] == S.JOB_TILE_ID_ATTRIBUTES


def test_extract_references_empty_when_no_tiles_render():
    assert ListingTraversal(FakeDriver(), SETTINGS).extract_references() == []


def test_load_more_stops_when_height_stops_growing_and_resets_to_top():
    settings = dataclasses.replace(SETTINGS, scroll_step=100, scroll_max_steps=30)
    driver = FakeDriver()
    driver.heights = [250, 250, 250, 250, 250]
    steps = ListingTraversal(driver, settings).load_more()
    assert steps == 3
    assert driver.scrolls == [100, 200, 300, 0]


def test_load_more_respects_step_cap():
    settings = dataclasses.replace(SETTINGS, scroll_step=100, scroll_max_steps=4)
    driver = FakeDriver()
    driver.heights = [1000, 2000, 3000, 4000, 5000, 6000]
    assert ListingTraversal(driver, settings).load_more() == 4
    assert driver.scrolls[-1] == 0


def test_open_navigates_to_jobs_url():
    driver = FakeDriver()
    ListingTraversal(driver, SETTINGS).open()
    assert driver.navigations == [SETTINGS.jobs_url]
