#!/usr/bin/env python3
"""
Flux Backend - Main application entry point
"""
from flux import create_app
import os

app = create_app()

if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('DEBUG', 'True').lower() == 'true'

    if app.config['REALTIME_FANOUT'] == 'socketio':
        from flux.extensions import socketio
        socketio.run(app, host='0.0.0.0', port=port, debug=debug)
    else:
        app.run(
            host='0.0.0.0',
            port=port,
            debug=debug
        )
