#!/usr/bin/env python3
"""
sun_time.py

Keeps a sunrise/sunset status line up to date for the configured location.

Usage:
    python sun_time.py [--config config.ini] [--web]

Send SIGUSR1 to refresh now; SIGINT/SIGTERM to stop.
"""

import argparse
import asyncio
import signal
import sys

from suntime.core import SunTimeApp


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='SunTime sunrise/sunset status')
    parser.add_argument('--config', default='config.ini', help='Path to config file')
    parser.add_argument('--web', action='store_true', help='Enable the web status viewer')
    return parser.parse_args(argv)


async def _run(app: SunTimeApp) -> None:
    loop = asyncio.get_running_loop()
    for sig, handler in ((signal.SIGINT, app.request_stop),
                         (signal.SIGTERM, app.request_stop),
                         (getattr(signal, 'SIGUSR1', None), app.request_refresh)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass
    await app.run()


def main(argv=None) -> int:
    """Main function to run the status updater."""
    args = parse_args(argv)
    app = SunTimeApp(args.config)
    if args.web:
        if not app.config.has_section('Web_Viewer'):
            app.config.add_section('Web_Viewer')
        app.config.set('Web_Viewer', 'enabled', 'true')

    try:
        app.build()
    except ValueError as e:
        app.logger.error(f"Configuration error: {e}")
        return 1

    try:
        asyncio.run(_run(app))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
