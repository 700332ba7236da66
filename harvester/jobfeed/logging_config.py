from __future__ import annotations
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
import json
from datetime import datetime, timezone
from typing import Any, Dict

LOG_DIR = Path(os.getenv('HARVESTER_LOG_DIR') or Path(__file__).resolve().parent.parent / 'logs')

STRUCTURED_LOG_FILE = LOG_DIR / 'harvester.events.jsonl'

_DEF_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def _flag(name: str) -> bool:
    return bool(os.getenv(name))

def setup_logging(debug: bool = False):
    root = logging.getLogger()
    if root.handlers:
        # already configured
        return
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter('%(levelname)s %(name)s %(message)s'))
    ch.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(ch)
    if not _flag('HARVESTER_DISABLE_FILE_LOGS'):
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        # human readable rotating log
        fh = RotatingFileHandler(LOG_DIR / 'harvester.log', maxBytes=1_000_000, backupCount=5, encoding='utf-8')
        fh.setFormatter(logging.Formatter(_DEF_FORMAT))
        root.addHandler(fh)
    logging.getLogger('playwright').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


def log_event(event: str, **fields):
    """Append a structured JSON event line."""
    if _flag('HARVESTER_DISABLE_EVENTS'):
        return
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        with STRUCTURED_LOG_FILE.open('a', encoding='utf-8') as f:
            rec = {'ts': datetime.now(timezone.utc).isoformat(timespec='seconds'), 'event': event}
            rec.update(fields)
            f.write(json.dumps(rec, ensure_ascii=False, default=str) + '\n')
    except Exception:
        logging.getLogger(__name__).debug('Failed to write structured log line', exc_info=True)


def log_summary(title: str, data: Dict[str, Any], logger: logging.Logger | None = None):
    """Log a framed key/value block for periodic operational summaries."""
    logger = logger or logging.getLogger('harvester.summary')
    lines = [f"===== {title} ====="]
    lines.extend(f"{k}: {v}" for k, v in data.items())
    lines.append('=' * (len(title) + 12))
    logger.info('\n'.join(lines))
    log_event('summary', title=title, **data)
