"""Centralized settings with environment + runtime config overlay.
Provides typed accessors to avoid scattering magic numbers.

Precedence: real environment > `.env` file (python-dotenv) > config/runtime.yml > defaults.
"""
from __future__ import annotations
from pathlib import Path
import os, yaml
from dataclasses import dataclass
from typing import Tuple
from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

_RUNTIME_CACHE: dict | None = None

CONFIG_DIR = Path(__file__).resolve().parent.parent / 'config'
ENV_PREFIX = 'HARVESTER_'

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36'
)

def _load_runtime() -> dict:
    global _RUNTIME_CACHE
    if _RUNTIME_CACHE is None:
        cfg_file = CONFIG_DIR / 'runtime.yml'
        if cfg_file.exists():
            try:
                _RUNTIME_CACHE = yaml.safe_load(cfg_file.read_text(encoding='utf-8')) or {}
            except Exception:
                _RUNTIME_CACHE = {}
        else:
            _RUNTIME_CACHE = {}
    return _RUNTIME_CACHE

def _raw(name: str):
    v = os.getenv(ENV_PREFIX + name)
    if v is not None:
        return v
    return _load_runtime().get(name.lower())

def _env_float(name: str, default: float) -> float:
    v = _raw(name)
    if v is None:
        return float(default)
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)

def _env_int(name: str, default: int) -> int:
    v = _raw(name)
    if v is None:
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)

def _env_str(name: str, default: str) -> str:
    v = _raw(name)
    if v is None:
        return default
    return str(v)

def _env_bool(name: str, default: bool) -> bool:
    v = _raw(name)
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ('1', 'true', 'yes', 'on')

def _env_range(name: str, default: Tuple[float, float]) -> Tuple[float, float]:
    lo = _env_float(f'{name}_MIN', default[0])
    hi = _env_float(f'{name}_MAX', default[1])
    if hi < lo:
        hi = lo
    return lo, hi


INSTANCE_TYPES = ('even', 'odd')
STORE_BACKENDS = ('redis', 'sqlite')

@dataclass(frozen=True)
class Settings:
    # credentials
    email: str
    password: str
    # store
    store_backend: str
    redis_url: str
    redis_host: str
    redis_port: int
    redis_username: str
    redis_password: str
    redis_db: int
    redis_tls: bool
    key_prefix: str
    batch_size: int
    record_ttl: int
    sqlite_path: Path
    # browser runtime
    headless: bool
    default_timeout_ms: int
    navigation_timeout_ms: int
    user_agent: str
    user_data_dir: Path
    browser_executable: str
    base_url: str
    login_url: str
    jobs_url: str
    # retry policy
    max_retries: int
    retry_delay: float
    max_reconnect_attempts: int
    modal_attempts: int
    job_delay: Tuple[float, float]
    refresh_delay: Tuple[float, float]
    challenge_delay: Tuple[float, float]
    delay_scale: float
    # traversal
    scroll_step: int
    scroll_max_steps: int
    # scheduling / process boundary
    instance_type: str
    schedule_enabled: bool
    health_host: str
    health_port: int

def load_settings() -> Settings:
    instance_type = _env_str('INSTANCE_TYPE', 'even').strip().lower()
    if instance_type not in INSTANCE_TYPES:
        raise ConfigError(f"HARVESTER_INSTANCE_TYPE must be one of {INSTANCE_TYPES}, got {instance_type!r}")
    store_backend = _env_str('STORE_BACKEND', 'redis').strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ConfigError(f"HARVESTER_STORE_BACKEND must be one of {STORE_BACKENDS}, got {store_backend!r}")
    base_url = _env_str('BASE_URL', 'https://www.upwork.com').rstrip('/')
    return Settings(
        email=_env_str('EMAIL', ''),
        password=_env_str('PASSWORD', ''),
        store_backend=store_backend,
        redis_url=_env_str('REDIS_URL', ''),
        redis_host=_env_str('REDIS_HOST', 'localhost'),
        redis_port=_env_int('REDIS_PORT', 6379),
        redis_username=_env_str('REDIS_USERNAME', ''),
        redis_password=_env_str('REDIS_PASSWORD', ''),
        redis_db=_env_int('REDIS_DB', 0),
        redis_tls=_env_bool('REDIS_TLS', False),
        key_prefix=_env_str('KEY_PREFIX', 'dev:harvester:scraped:'),
        batch_size=max(1, _env_int('BATCH_SIZE', 5)),
        record_ttl=max(1, _env_int('RECORD_TTL', 600)),
        sqlite_path=Path(_env_str('SQLITE_PATH', 'harvester/data/store.sqlite')),
        headless=_env_bool('HEADLESS', False),
        default_timeout_ms=_env_int('DEFAULT_TIMEOUT_MS', 60000),
        navigation_timeout_ms=_env_int('NAVIGATION_TIMEOUT_MS', 90000),
        user_agent=_env_str('USER_AGENT', DEFAULT_USER_AGENT),
        user_data_dir=Path(_env_str('USER_DATA_DIR', './user_data')),
        browser_executable=_env_str('BROWSER_EXECUTABLE', ''),
        base_url=base_url,
        login_url=_env_str('LOGIN_URL', base_url + '/ab/account-security/login'),
        jobs_url=_env_str('JOBS_URL', base_url + '/nx/search/jobs/?client_hires=1-9,10-&per_page=20&sort=recency'),
        max_retries=max(1, _env_int('MAX_RETRIES', 3)),
        retry_delay=_env_float('RETRY_DELAY', 5.0),
        max_reconnect_attempts=max(0, _env_int('MAX_RECONNECT_ATTEMPTS', 3)),
        modal_attempts=max(1, _env_int('MODAL_ATTEMPTS', 2)),
        job_delay=_env_range('JOB_DELAY', (4.0, 9.0)),
        refresh_delay=_env_range('REFRESH_DELAY', (5.0, 10.0)),
        challenge_delay=_env_range('CHALLENGE_DELAY', (2.0, 4.0)),
        delay_scale=max(0.0, _env_float('DELAY_SCALE', 1.0)),
        scroll_step=max(1, _env_int('SCROLL_STEP', 100)),
        scroll_max_steps=max(1, _env_int('SCROLL_MAX_STEPS', 30)),
        instance_type=instance_type,
        schedule_enabled=_env_bool('SCHEDULE_ENABLED', True),
        health_host=_env_str('HEALTH_HOST', '0.0.0.0'),
        health_port=_env_int('HEALTH_PORT', 3000),
    )

SETTINGS = load_settings()
