import argparse
import dataclasses
import logging
import sys

from harvester.jobfeed.errors import ConfigError
from harvester.jobfeed.logging_config import setup_logging, log_event


def main(argv=None) -> int:
    ap = argparse.ArgumentParser('harvester')
    ap.add_argument('--debug', action='store_true', help='Enable debug logging')
    ap.add_argument('--headless', action='store_true', help='Run browser headless')
    ap.add_argument('--once', action='store_true', help='Run a single traversal cycle then exit')
    ap.add_argument('--no-schedule', action='store_true', help='Ignore the hour-parity window and start immediately')
    ap.add_argument('--port', type=int, help='Health endpoint port (default HARVESTER_HEALTH_PORT)')
    args = ap.parse_args(argv)
    setup_logging(debug=args.debug)
    logger = logging.getLogger('harvester')

    try:
        from harvester.jobfeed.settings import SETTINGS
        from harvester.jobfeed.service import Application
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    settings = SETTINGS
    if args.headless:
        settings = dataclasses.replace(settings, headless=True)
    if not settings.email or not settings.password:
        logger.warning('HARVESTER_EMAIL / HARVESTER_PASSWORD not set; login will fail if the profile is not authenticated')

    app = Application(
        settings,
        schedule=False if (args.no_schedule or args.once) else None,
        max_cycles=1 if args.once else None,
        health_port=args.port,
    )
    app.install_signal_handlers()
    logger.info(f"Starting harvester ({settings.instance_type} instance, store={settings.store_backend})")
    log_event('app_start', instance=settings.instance_type, once=args.once)
    try:
        app.start()
    except Exception as e:
        logger.critical(f"Startup failed: {e}", exc_info=True)
        app.request_shutdown(1)
    code = app.wait()
    log_event('app_exit', code=code)
    return code


if __name__ == '__main__':
    sys.exit(main())
