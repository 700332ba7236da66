"""
Process boundary: health endpoint, parity scheduler, scrape worker thread,
signal handling and the shutdown sequence.

Shutdown order: stop the scheduler, stop the in-flight cycle and wait for the
worker to flush its pending batch and close the browser, disconnect the
store, stop the health server. One controller serves every activation
window of the process. Any uncaught exception in any thread requests
a fatal shutdown (exit status 1).
"""
from __future__ import annotations
from typing import Callable, Optional
import logging
import signal
import sys
import threading

from ..web.server import build_server, create_app
from .controller import ScrapeController
from .errors import AlreadyRunningError, SessionFatalError
from .logging_config import log_event
from .scheduler import SchedulerWindow
from .session import SessionController
from .settings import SETTINGS, Settings
from .store import JobStore, build_store

logger = logging.getLogger('service')

ControllerFactory = Callable[[Settings, JobStore], ScrapeController]


def default_controller_factory(settings: Settings, store: JobStore) -> ScrapeController:
    return ScrapeController(SessionController(settings), store, settings=settings)


class Application:
    def __init__(self, settings: Settings = SETTINGS, *, store: Optional[JobStore] = None,
                 controller_factory: ControllerFactory = default_controller_factory,
                 schedule: Optional[bool] = None, max_cycles: Optional[int] = None,
                 serve_health: bool = True, health_port: Optional[int] = None):
        self.settings = settings
        self.store = store
        self.controller_factory = controller_factory
        self.schedule = settings.schedule_enabled if schedule is None else schedule
        self.max_cycles = max_cycles
        self.serve_health = serve_health
        self.health_port = health_port or settings.health_port
        self.window = SchedulerWindow(settings.instance_type, self.start_scraping, self.stop_scraping)
        self.controller: Optional[ScrapeController] = None
        self._worker: Optional[threading.Thread] = None
        self._server = None
        self._server_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._shutdown_requested = threading.Event()
        self._shutdown_done = False
        self.exit_code = 0

    # ---- status -------------------------------------------------------------
    @property
    def scraping(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def status(self) -> dict:
        return {
            'active': self.window.active if self.schedule else self.scraping,
            'instanceType': self.settings.instance_type,
            'scraping': self.scraping,
        }

    # ---- lifecycle ----------------------------------------------------------
    def start(self):
        if self.store is None:
            self.store = build_store(self.settings)
        if self.serve_health:
            self._start_health_server()
        if self.schedule:
            self.window.start()
        else:
            self.start_scraping()

    def _start_health_server(self):
        self._server = build_server(create_app(self.status), self.settings.health_host, self.health_port)
        self._server_thread = threading.Thread(target=self._server.run, name='health-server', daemon=True)
        self._server_thread.start()
        logger.info(f"Health check server listening on port {self.health_port}")

    def start_scraping(self) -> bool:
        with self._lock:
            if self.scraping:
                logger.warning('Scraper is already running')
                return False
            if self._shutdown_requested.is_set():
                return False
            if self.controller is None:
                self.controller = self.controller_factory(self.settings, self.store)
            else:
                # processed ids and batch survive across activation windows
                self.controller.reset_stop()
            self._worker = threading.Thread(target=self._run_worker, args=(self.controller,),
                                            name='scrape-worker', daemon=True)
            self._worker.start()
        log_event('scraping_started', instance=self.settings.instance_type)
        return True

    def _run_worker(self, controller: ScrapeController):
        try:
            controller.run(max_cycles=self.max_cycles)
        except AlreadyRunningError as e:
            logger.warning(str(e))
            return
        except SessionFatalError as e:
            logger.critical(f"Session fatal error: {e}")
            log_event('fatal', error=str(e))
            self.request_shutdown(1)
            return
        except Exception as e:
            logger.critical(f"Fatal error during scraping: {e}", exc_info=True)
            log_event('fatal', error=str(e))
            self.request_shutdown(1)
            return
        if self.max_cycles is not None and not controller.stopped:
            logger.info('Requested cycles complete')
            self.request_shutdown(0)

    def stop_scraping(self, timeout: Optional[float] = 120.0):
        """Stop the in-flight run and wait for its final flush; `timeout=None` waits indefinitely."""
        with self._lock:
            controller, worker = self.controller, self._worker
        if controller is None:
            return
        controller.stop()
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
            if worker.is_alive():
                logger.warning('Scrape worker did not stop within timeout')
        log_event('scraping_stopped')

    def request_shutdown(self, exit_code: int = 0):
        self.exit_code = max(self.exit_code, exit_code)
        self._shutdown_requested.set()

    def shutdown(self) -> int:
        if self._shutdown_done:
            return self.exit_code
        self._shutdown_done = True
        self._shutdown_requested.set()
        logger.info('Starting graceful shutdown...')
        self.window.stop()
        self.stop_scraping(timeout=None)
        if self.scraping:
            logger.warning('Scrape worker still running; leaving store connected')
        elif self.store is not None:
            try:
                self.store.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting store: {e}")
        if self._server is not None:
            self._server.should_exit = True
            if self._server_thread is not None:
                self._server_thread.join(5)
        logger.info(f"Shutdown complete (exit code {self.exit_code})")
        return self.exit_code

    def wait(self, poll: float = 1.0) -> int:
        """Block until a shutdown is requested, run it and return the exit code."""
        while not self._shutdown_requested.wait(poll):
            pass
        return self.shutdown()

    # ---- process hooks ------------------------------------------------------
    def install_signal_handlers(self):
        def _on_signal(signum, _frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.request_shutdown(0)

        signal.signal(signal.SIGTERM, _on_signal)
        signal.signal(signal.SIGINT, _on_signal)

        previous_excepthook = sys.excepthook

        def _excepthook(exc_type, exc, tb):
            logger.critical('Uncaught exception', exc_info=(exc_type, exc, tb))
            self.request_shutdown(1)
            previous_excepthook(exc_type, exc, tb)

        def _thread_excepthook(args):
            logger.critical(f"Uncaught exception in thread {args.thread.name if args.thread else '?'}",
                            exc_info=(args.exc_type, args.exc_value, args.exc_traceback))
            self.request_shutdown(1)

        sys.excepthook = _excepthook
        threading.excepthook = _thread_excepthook
