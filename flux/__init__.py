import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

_startup_logger = logging.getLogger("flux.startup")

_CRITICAL_ENV_VARS = [
    "JWT_SECRET",
    "SECRET_KEY",
    "DATABASE_URL",
]

_RECOMMENDED_ENV_VARS = [
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "CORS_ORIGINS",
]


def _check_environment(config_name):
    if config_name in ('development', 'testing'):
        return
    missing_critical = [v for v in _CRITICAL_ENV_VARS if not os.environ.get(v)]
    missing_recommended = [v for v in _RECOMMENDED_ENV_VARS if not os.environ.get(v)]
    if missing_critical:
        _startup_logger.critical(
            "MISSING CRITICAL ENV VARS (app may not work correctly): %s",
            ", ".join(missing_critical),
        )
    if missing_recommended:
        _startup_logger.warning(
            "Missing recommended env vars: %s",
            ", ".join(missing_recommended),
        )


def _init_sentry(app):
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
    )


def create_app(config_name=None, **overrides):
    """Flask application factory"""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    from config import config
    app.config.from_object(config[config_name])
    app.config.update(overrides)

    from flux.middleware import RequestIdMiddleware, configure_logging
    configure_logging(app)
    _check_environment(config_name)
    _init_sentry(app)

    # Initialize extensions
    from flux.extensions import limiter, socketio
    db.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})
    limiter.init_app(app)
    if app.config['REALTIME_FANOUT'] == 'socketio':
        from flux import socket_events  # noqa: F401  registers the handlers
        socketio.init_app(app, cors_allowed_origins=app.config['CORS_ORIGINS'])

    # Fact publisher: built once per process, handed to services through the app
    from flux.services.fanout import build_fanout
    app.extensions['fanout'] = build_fanout(app)

    app.wsgi_app = RequestIdMiddleware(app.wsgi_app)

    # Register blueprints
    from flux.routes.orders import orders_bp
    from flux.routes.deliveries import deliveries_bp
    from flux.routes.credits import credits_bp
    from flux.routes.billing import billing_bp, webhook_bp
    from flux.routes.admin import admin_bp
    from flux.routes.users import users_bp

    api_prefix = app.config['API_PREFIX']
    app.register_blueprint(orders_bp, url_prefix=f'{api_prefix}/orders')
    app.register_blueprint(deliveries_bp, url_prefix=f'{api_prefix}/deliveries')
    app.register_blueprint(credits_bp, url_prefix=f'{api_prefix}/credits')
    app.register_blueprint(billing_bp, url_prefix=f'{api_prefix}/billing')
    app.register_blueprint(webhook_bp, url_prefix=f'{api_prefix}/webhooks')
    app.register_blueprint(admin_bp, url_prefix=f'{api_prefix}/admin')
    app.register_blueprint(users_bp, url_prefix=f'{api_prefix}/users')

    _register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'service': 'flux-backend'}, 200

    return app


def _register_error_handlers(app):
    from flux.errors import FluxError

    logger = logging.getLogger('flux.errors')

    @app.errorhandler(FluxError)
    def handle_domain_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(429)
    def ratelimit_handler(e):
        retry_after = e.get_headers().get("Retry-After") if hasattr(e, "get_headers") else None
        retry_after_seconds = int(retry_after) if retry_after else 60
        return jsonify({
            "success": False,
            "error": "Too many requests. Please try again later.",
            "retry_after": retry_after_seconds,
        }), 429

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'success': False, 'error': 'Not found', 'code': 'not_found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return jsonify({'success': False, 'error': e.description}), e.code
        db.session.rollback()
        logger.exception("Unhandled error: %s", e)
        return jsonify({'success': False, 'error': 'Internal server error', 'code': 'internal_error'}), 500
