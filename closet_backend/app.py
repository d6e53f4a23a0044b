#!/usr/bin/env python3
"""
Closet NFC Backend - Main Application

This is the entry point for the closet NFC backend. It loads the
configuration, initializes the database, the NFC controller and the API
server, and optionally runs a continuous scan loop that logs every tag
presented to the reader.
"""

import argparse
import logging
import signal
import threading

from .config import CONFIG, load_config
from .modules.api import api_server
from .modules.database import db_manager
from .modules.nfc import nfc_controller
from .utils.event_bus import event_bus, EventNames
from .utils.exceptions import ConfigurationError
from .utils.logger import configure_logging, get_logger, set_global_log_level

logger = get_logger(__name__)

exit_event = threading.Event()
scan_thread = None


def initialize_components():
    """
    Initialize all application components.

    Returns:
        bool: True if the API server is up
    """
    global scan_thread

    logger.info("Initializing closet NFC components...")

    # Initialize database
    db_manager.set_database_path(CONFIG['database']['path'])
    if not db_manager.initialize():
        logger.error("Database initialization failed")
        return False

    # Initialize NFC controller; without a reader the API still serves lookups
    nfc_config = CONFIG['nfc']
    nfc_ok = nfc_controller.initialize(
        i2c_bus=nfc_config['i2c_bus'],
        i2c_address=nfc_config['i2c_address'],
        poll_interval=nfc_config['poll_interval'],
        read_timeout=nfc_config['read_timeout'],
        verify_timeout=nfc_config['verify_timeout'],
        write_settle_delay=nfc_config['write_settle_delay'],
        continuous_cooldown=nfc_config['continuous_cooldown']
    )
    if not nfc_ok:
        logger.warning("No NFC reader available; scan and write requests will fail")

    # Start API server in a separate thread
    api_server.initialize(CONFIG)
    if not api_server.start():
        return False

    if nfc_ok and nfc_config.get('continuous_scan'):
        scan_thread = threading.Thread(
            target=nfc_controller.continuous_scan,
            args=(_log_scan, exit_event),
            daemon=True
        )
        scan_thread.start()

    event_bus.emit(EventNames.SYSTEM_STARTUP)
    logger.info("All components initialized successfully")
    return True


def _log_scan(outcome):
    if outcome.success:
        logger.info(f"Scanned tag {outcome.tag_id} ({outcome.source_kind.value})")
    else:
        logger.info(f"Scan failed ({outcome.error_kind.value}): {outcome.message}")


def _handle_signal(signum, frame):
    logger.info(f"Received signal {signum}, shutting down")
    exit_event.set()


def shutdown():
    """Perform graceful shutdown of all components."""
    logger.info("Shutting down closet NFC backend...")
    event_bus.emit(EventNames.SYSTEM_SHUTDOWN)

    exit_event.set()

    # Stop API server
    api_server.stop()

    # Shutdown NFC controller, cancelling any running session
    nfc_controller.shutdown()
    if scan_thread is not None:
        scan_thread.join(timeout=5)

    # Close database connections
    db_manager.shutdown()

    logger.info("Shutdown complete")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Closet NFC backend")
    parser.add_argument('--config', help="Path to the JSON config file")
    parser.add_argument('--debug', action='store_true', help="Log at DEBUG level")
    args = parser.parse_args(argv)

    load_config(args.config)
    configure_logging(CONFIG)
    if args.debug or CONFIG.get('debug_mode'):
        set_global_log_level(logging.DEBUG)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if not initialize_components():
            logger.error("Startup failed")
            return 1

        # Wait for a signal
        while not exit_event.is_set():
            exit_event.wait(1.0)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e.message}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        shutdown()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
