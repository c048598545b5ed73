# src/ecobin/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the notifier loop (modem dispatcher + push) in a background thread,
- the operator console REPL in the main thread (optional).

On SIGINT/SIGTERM the dispatcher finishes its in-flight AT exchange, fails the
queued ones and releases the serial port.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.modem_connector import start_modem_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

# Long enough for one AT exchange to finish before the port is released.
SHUTDOWN_GRACE_FACTOR = 2


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/ecobin")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "ecobin"))

    state = create_initial_state(settings=settings)
    state.runner = start_modem_in_background(state)

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()
        if settings.console_enabled:
            # input() only returns on KeyboardInterrupt.
            raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running notifier only. Press Ctrl+C to stop.")
            stop_main.wait()

    finally:
        if state.runner is not None:
            state.runner.stop()
            state.runner.join(timeout=float(settings.modem_timeout_seconds) * SHUTDOWN_GRACE_FACTOR)
            if state.runner.thread.is_alive():
                logger.warning("Notifier did not stop in time; the modem port may still be held.")
        logger.info("Bye.")


if __name__ == "__main__":
    main()
