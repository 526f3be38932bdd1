"""
Testing configuration for the Flux backend
"""
import os
from config.settings import Config


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""

    TESTING = True
    DEBUG = False

    # conftest points this at a per-test SQLite file
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'TEST_DATABASE_URL',
        'sqlite:///:memory:'
    )
    # SQLite takes no pool sizing or postgres connect args; the busy timeout
    # lets concurrent writers in the race tests wait instead of failing.
    SQLALCHEMY_ENGINE_OPTIONS = {
        'connect_args': {'timeout': 30, 'check_same_thread': False},
    }

    JWT_SECRET = 'test-jwt-secret'

    # Use test Stripe keys
    STRIPE_SECRET_KEY = 'sk_test_mock'
    STRIPE_WEBHOOK_SECRET = 'whsec_test_secret'
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = 300

    # Disable rate limiting in tests
    RATELIMIT_ENABLED = False

    ACCEPTED_CANCELLATION_POLICY = 'either'
    REALTIME_FANOUT = 'logging'

    # Logging
    LOG_LEVEL = 'WARNING'
    SENTRY_DSN = None

    # CORS - allow all in tests
    CORS_ORIGINS = ['http://localhost:5173', 'http://localhost:3000']
