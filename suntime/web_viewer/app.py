#!/usr/bin/env python3
"""
SunTime status viewer
Serves the status line over HTTP and pushes updates with Flask-SocketIO 5.x
"""

import os
import threading
import time
from typing import Any, Dict, Optional

from flask import Flask, jsonify, render_template
from flask_socketio import SocketIO, emit

from ..display import DisplayPort
from ..models import DisplayState
from ..utils import to_local


class StatusViewer(DisplayPort):
    """Display port backed by a small web page and a Socket.IO channel"""

    def __init__(self, app):
        super().__init__(app)
        self.host = app.config.get('Web_Viewer', 'host', fallback='127.0.0.1')
        self.port = app.config.getint('Web_Viewer', 'port', fallback=8080)
        self.started_at = time.time()
        self.updated_at: Optional[float] = None
        self._thread: Optional[threading.Thread] = None

        self.flask_app = Flask(__name__, template_folder=os.path.join(os.path.dirname(__file__), 'templates'))
        self.flask_app.config['SECRET_KEY'] = 'suntime_status_viewer'
        self.socketio = SocketIO(
            self.flask_app,
            cors_allowed_origins="*",
            logger=False,
            engineio_logger=False,
            async_mode='threading'
        )

        self._setup_routes()
        self._setup_socketio_handlers()

    def snapshot(self) -> Dict[str, Any]:
        """Current status as a JSON-friendly dict"""
        data: Dict[str, Any] = {
            'status': self.status_text,
            'event': None,
            'time': None,
            'local_time': None,
            'updated_at': self.updated_at,
        }
        if self.state is not None:
            data['event'] = self.state.label.value
            data['time'] = self.state.time.isoformat()
            data['local_time'] = to_local(self.state.time, self.timezone).isoformat()
        return data

    def render(self, state: DisplayState, text: str, changed: bool):
        self.updated_at = time.time()
        self.logger.info(f"🌅 Status: {self.describe(state)}")
        try:
            self.socketio.emit('status', self.snapshot())
        except Exception as e:
            self.logger.error(f"Error broadcasting status: {e}")

    def _dispatch_refresh(self):
        """Hand a refresh from a web thread over to the scheduler's loop"""
        loop = getattr(self.app, 'loop', None)
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self.request_refresh)
        else:
            self.request_refresh()

    def _setup_routes(self):
        """Setup Flask routes"""

        @self.flask_app.route('/')
        def index():
            """Status page"""
            return render_template('index.html', status=self.status_text,
                                   refresh_label=self.translator.translate('display.refresh'))

        @self.flask_app.route('/api/health')
        def api_health():
            """Health check endpoint"""
            scheduler = getattr(self.app, 'scheduler', None)
            return jsonify({
                'status': 'healthy',
                'uptime': time.time() - self.started_at,
                'scheduler_state': scheduler.state if scheduler is not None else None,
                'timestamp': time.time(),
            })

        @self.flask_app.route('/api/status')
        def api_status():
            """Current status line"""
            return jsonify(self.snapshot())

        @self.flask_app.route('/api/refresh', methods=['POST'])
        def api_refresh():
            """Ask the scheduler to recompute now"""
            self._dispatch_refresh()
            return jsonify({'refresh': 'requested'}), 202

    def _setup_socketio_handlers(self):
        """Setup SocketIO event handlers"""

        @self.socketio.on('connect')
        def handle_connect():
            """Send the current status to a new client"""
            emit('status', self.snapshot())

        @self.socketio.on('refresh')
        def handle_refresh():
            """Refresh requested from the page"""
            self._dispatch_refresh()

        @self.socketio.on_error_default
        def default_error_handler(e):
            """Handle SocketIO errors gracefully"""
            self.logger.error(f"SocketIO error: {e}")

    def run(self):
        """Run the web server (blocking)"""
        self.logger.info(f"Starting status viewer on {self.host}:{self.port}")
        try:
            self.socketio.run(
                self.flask_app,
                host=self.host,
                port=self.port,
                debug=False,
                use_reloader=False,
                allow_unsafe_werkzeug=True
            )
        except Exception as e:
            self.logger.error(f"Error running status viewer: {e}")

    def start(self):
        """Run the web server in a daemon thread"""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, name='status-viewer', daemon=True)
        self._thread.start()
