"""
Configuration settings for different environments
"""
import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _database_url(default):
    url = os.environ.get('DATABASE_URL') or default
    # Fix postgres:// to postgresql:// for SQLAlchemy 2.x
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


def _csv(var_name, default):
    raw = os.environ.get(var_name, default)
    return [part.strip() for part in raw.split(',') if part.strip()]


DB_CONNECT_TIMEOUT_SECONDS = int(os.environ.get('DB_CONNECT_TIMEOUT_SECONDS', '20'))
DB_STATEMENT_TIMEOUT_MS = int(os.environ.get('DB_STATEMENT_TIMEOUT_MS', '30000'))


class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    API_PREFIX = '/api'

    # Database
    SQLALCHEMY_DATABASE_URI = _database_url('postgresql://localhost/flux_dev')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
        'pool_timeout': DB_CONNECT_TIMEOUT_SECONDS,
        'connect_args': {
            'connect_timeout': DB_CONNECT_TIMEOUT_SECONDS,
            'options': f'-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}',
        },
    }

    # Identity provider tokens
    JWT_SECRET = os.environ.get('JWT_SECRET') or 'dev-jwt-secret-change-in-production'
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')
    JWT_AUDIENCE = os.environ.get('JWT_AUDIENCE') or None

    # Security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Rate limiting
    RATELIMIT_ENABLED = os.environ.get('RATELIMIT_ENABLED', 'true').lower() in ['true', 'on', '1']

    # Pagination
    ITEMS_PER_PAGE = 20
    MAX_ITEMS_PER_PAGE = 100

    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1MB

    # Stripe
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get('STRIPE_WEBHOOK_TOLERANCE_SECONDS', '300'))
    STRIPE_API_TIMEOUT_SECONDS = int(os.environ.get('STRIPE_API_TIMEOUT_SECONDS', '35'))
    STRIPE_PAYMENT_METHOD_TYPES = _csv('STRIPE_PAYMENT_METHOD_TYPES', 'card')

    # Checkout redirects
    CHECKOUT_ALLOWED_HOSTS = _csv('CHECKOUT_ALLOWED_HOSTS', 'iflux.space,www.iflux.space,app.iflux.space')
    CHECKOUT_DEFAULT_SUCCESS_URL = os.environ.get(
        'CHECKOUT_DEFAULT_SUCCESS_URL', 'https://app.iflux.space/creditos?checkout=success'
    )
    CHECKOUT_DEFAULT_CANCEL_URL = os.environ.get(
        'CHECKOUT_DEFAULT_CANCEL_URL', 'https://iflux.space/#planos'
    )

    # Order lifecycle
    DELIVERY_CODE_MAX_ATTEMPTS = 5
    CODE_GENERATION_RETRIES = int(os.environ.get('CODE_GENERATION_RETRIES', '3'))
    # "either": company or driver may cancel an accepted order.
    # "company_only": only the owning company may.
    ACCEPTED_CANCELLATION_POLICY = os.environ.get('ACCEPTED_CANCELLATION_POLICY', 'either')

    # Realtime fan-out transport: "logging" or "socketio"
    REALTIME_FANOUT = os.environ.get('REALTIME_FANOUT', 'logging')

    # Logging / monitoring
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    SENTRY_DSN = os.environ.get('SENTRY_DSN')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enforce HTTPS
    SESSION_COOKIE_SECURE = True

    # Production-specific settings
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
        'pool_timeout': DB_CONNECT_TIMEOUT_SECONDS,
        'connect_args': {
            'connect_timeout': DB_CONNECT_TIMEOUT_SECONDS,
            'options': f'-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}',
        },
    }
