"""
Listing page traversal: open the search feed, scroll until it stops growing,
and turn the rendered tiles into `JobReference`s.

The site marks already-opened tiles in several inconsistent ways; the page
script only reports each tile's ancestor chain and `is_visited` decides in
Python so the rule is testable against plain snapshots.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Set
import logging

from . import selectors as S
from .human import HumanInput
from .logging_config import log_event
from .models import JobReference
from .page_driver import PageDriver
from .settings import SETTINGS, Settings

logger = logging.getLogger('listing')

# Each tile -> {id, href, chain:[{classes, visited, state}, ...]} where chain
# starts at the link, then the tile, then every ancestor up to <html>.
TILES_JS = """({tile, links, idAttrs}) => {
    const describe = (el) => ({
        classes: el.className && typeof el.className === 'string' ? el.className : '',
        visited: el.dataset ? el.dataset.visited || null : null,
        state: el.dataset ? el.dataset.state || null : null,
    });
    return Array.from(document.querySelectorAll(tile)).map(card => {
        let link = null;
        for (const s of links) { link = card.querySelector(s); if (link) break; }
        let id = null;
        for (const a of idAttrs) { id = card.getAttribute(a); if (id) break; }
        const chain = [];
        if (link) chain.push(describe(link));
        for (let el = card; el; el = el.parentElement) chain.push(describe(el));
        return {id, href: link ? link.href : null, chain};
    });
}"""


def is_visited(chain: Iterable[Dict[str, Any]]) -> bool:
    """True if any element of the chain carries a visited marker.

    Checks explicit classes, `data-visited="true"`, `data-state="visited"`,
    and a `visited` substring anywhere in the class string.
    """
    for node in chain:
        classes = node.get('classes') or ''
        if S.VISITED_CLASSES.intersection(classes.split()):
            return True
        if str(node.get('visited') or '').lower() == 'true':
            return True
        if str(node.get('state') or '').lower() == 'visited':
            return True
        if S.VISITED_CLASS_SUBSTRING in classes:
            return True
    return False


def references_from_tiles(tiles: Iterable[Dict[str, Any]], processed: Optional[Set[str]] = None) -> List[JobReference]:
    """Filter raw tile descriptors to fresh, unvisited references in DOM order."""
    processed = processed or set()
    seen: Set[str] = set()
    out: List[JobReference] = []
    for tile in tiles:
        job_id = (tile.get('id') or '').strip()
        href = (tile.get('href') or '').strip()
        if not job_id or not href:
            continue
        if is_visited(tile.get('chain') or []):
            continue
        if job_id in processed or job_id in seen:
            continue
        seen.add(job_id)
        out.append(JobReference(id=job_id, href=href))
    return out


class ListingTraversal:
    def __init__(self, driver: PageDriver, settings: Settings = SETTINGS, human: Optional[HumanInput] = None):
        self.driver = driver
        self.settings = settings
        self.human = human or driver.human

    def open(self):
        logger.info('Opening jobs listing')
        self.driver.navigate(self.settings.jobs_url, max_retries=self.settings.max_retries,
                             retry_delay=self.settings.retry_delay)

    def load_more(self) -> int:
        """Scroll in fixed steps until the page height stops growing or the step cap is hit.

        Returns the number of steps taken. Always ends scrolled back to the top.
        """
        step = self.settings.scroll_step
        last_height = self.driver.scroll_metrics()['height']
        position = 0
        steps = 0
        while steps < self.settings.scroll_max_steps:
            position += step
            self.driver.scroll_to(position)
            steps += 1
            self.human.random_delay(0.1, 0.3)
            height = self.driver.scroll_metrics()['height']
            if position >= height and height <= last_height:
                break
            last_height = max(last_height, height)
        self.driver.scroll_to(0)
        self.human.random_delay(0.5, 1.0)
        logger.debug(f"load_more scrolled {steps} steps")
        return steps

    def extract_references(self, processed: Optional[Set[str]] = None) -> List[JobReference]:
        if self.driver.wait_for_any([S.JOB_TILE], 10000) is None:
            logger.warning('No job tiles rendered on listing page')
            return []
        tiles = self.driver.evaluate(TILES_JS, {
            'tile': S.JOB_TILE,
            'links': S.JOB_TILE_LINKS,
            'idAttrs': S.JOB_TILE_ID_ATTRIBUTES,
        }) or []
        refs = references_from_tiles(tiles, processed)
        logger.info(f"Found {len(tiles)} tiles, {len(refs)} new job references")
        log_event('listing_extracted', tiles=len(tiles), fresh=len(refs))
        return refs
