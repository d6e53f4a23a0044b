"""
Closet NFC Backend - API Server

This module implements the REST API server the closet front end uses to scan,
write and bind NFC tags and to look up garments.
"""

import threading
import time
import os
from flask import Flask, jsonify, request
from flask_cors import CORS
from waitress import serve

from ..nfc import nfc_controller
from ...config import CONFIG
from ...utils.logger import get_logger

# Import routes
from .routes import tags, nfc, garments
from .routes import auth as auth_routes

# Import middleware
from .middleware import auth as auth_middleware
from .middleware import error_handler

logger = get_logger(__name__)

VERSION = '0.1.0'

# Flask application instance
app = None
api_thread = None
server_running = False
start_time = None
request_count = 0
_count_lock = threading.Lock()


def create_app(config=None):
    """
    Build a Flask application with every route registered.

    Args:
        config (dict, optional): Application configuration, defaults to CONFIG

    Returns:
        Flask: The application
    """
    config = config or CONFIG
    flask_app = Flask(__name__)

    # Set Flask configuration
    flask_app.config.update(
        SECRET_KEY=os.urandom(24),
        MAX_CONTENT_LENGTH=1024 * 1024,
    )
    flask_app.json.sort_keys = False

    # Initialize CORS
    CORS(flask_app, resources={r"/api/*": {"origins": "*"}})

    # Initialize authentication middleware
    auth_middleware.init_auth(flask_app, config)

    # Initialize error handlers
    error_handler.init_error_handlers(flask_app)

    # Register routes
    auth_routes.register_routes(flask_app)  # Register auth routes first
    nfc.register_routes(flask_app)
    tags.register_routes(flask_app)
    garments.register_routes(flask_app)

    @flask_app.before_request
    def count_request():
        global request_count
        if request.path.startswith('/api/'):
            with _count_lock:
                request_count += 1

    # Health check endpoint
    @flask_app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'uptime': get_uptime(),
            'version': VERSION,
            'nfc_busy': nfc_controller.is_reading() or nfc_controller.is_writing()
        })

    return flask_app


def initialize(config=None):
    """
    Initialize the API server.

    Returns:
        bool: True if initialization successful
    """
    global app

    logger.info("Initializing API server")
    app = create_app(config)
    logger.info("API server initialized")
    return True


def start():
    """
    Start the API server in a separate thread.

    Returns:
        bool: True if server started successfully
    """
    global api_thread, server_running, start_time

    if server_running:
        logger.warning("API server already running")
        return True

    if app is None:
        logger.error("API server not initialized")
        return False

    logger.info("Starting API server")

    # Create a thread to run the server
    api_thread = threading.Thread(target=_run_server, daemon=True)
    api_thread.start()

    # Set server state
    server_running = True
    start_time = time.time()
    logger.info(f"API server started at {get_server_url()}")

    return True


def _run_server():
    """Run the waitress WSGI server."""
    global server_running

    host = CONFIG['api']['host']
    port = CONFIG['api']['port']
    threads = CONFIG['api'].get('threads', 4)

    logger.info(f"Starting API server on {host}:{port} ({threads} threads)")

    try:
        # NFC sessions block their request thread, so keep several workers
        serve(app, host=host, port=port, threads=threads)
    except Exception as e:
        logger.error(f"Error running API server: {e}")
        server_running = False


def stop():
    """
    Stop the API server.

    Returns:
        bool: True if server stopped successfully
    """
    global api_thread, server_running

    if not server_running:
        logger.warning("API server not running")
        return True

    logger.info("Stopping API server")

    # Set server state
    server_running = False

    # The thread will end when the process exits as it's a daemon thread
    api_thread = None
    logger.info("API server stopped")

    return True


def is_running():
    """
    Check if the API server is running.

    Returns:
        bool: True if server is running
    """
    return server_running


def get_server_url():
    """
    Get the URL where the server is running.

    Returns:
        str: Server URL (e.g., http://localhost:5000)
    """
    if not server_running:
        return None

    host = CONFIG['api']['host']
    port = CONFIG['api']['port']

    # Use 'localhost' for user display if server bound to all interfaces
    display_host = 'localhost' if host == '0.0.0.0' else host

    return f"http://{display_host}:{port}"


def get_uptime():
    """
    Get the uptime of the API server in seconds.

    Returns:
        float: Uptime in seconds or None if server not running
    """
    if not server_running or start_time is None:
        return None
    return time.time() - start_time


def get_api_status():
    """
    Get the status of the API server.

    Returns:
        dict: Status information including uptime, request count, etc.
    """
    if not server_running:
        return {
            'running': False
        }

    return {
        'running': True,
        'uptime': get_uptime(),
        'uptime_formatted': _format_uptime(get_uptime()),
        'url': get_server_url(),
        'request_count': request_count,
    }


def _format_uptime(seconds):
    """Format uptime in human-readable format."""
    if seconds is None:
        return "Not running"

    minutes, seconds = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")

    return " ".join(parts)
