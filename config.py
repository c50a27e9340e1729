"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'voxpopulous')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'voxpopulous')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'voxpopulous')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    # SQLite only: seconds a writer waits for the database lock
    SQLITE_BUSY_TIMEOUT = int(os.getenv('SQLITE_BUSY_TIMEOUT', '15'))

    # Front-end paths used to build login / billing links in error payloads
    PUBLIC_BASE_PATH = os.getenv('PUBLIC_BASE_PATH', '/structures')
    SUPERADMIN_LOGIN_PATH = os.getenv('SUPERADMIN_LOGIN_PATH', '/superadmin/login')

    # Billing gate: reject writes for suspended / unpaid tenants
    BILLING_GATE_ENABLED = os.getenv('BILLING_GATE_ENABLED', 'true').lower() == 'true'
    BILLING_WEBHOOK_SECRET = os.getenv('BILLING_WEBHOOK_SECRET')
    DEFAULT_SUSPENDED_MESSAGE = os.getenv(
        'DEFAULT_SUSPENDED_MESSAGE',
        "Votre structure est suspendue. Les données restent consultables mais ne peuvent plus être modifiées."
    )
    DEFAULT_BLOCK_MESSAGE = os.getenv(
        'DEFAULT_BLOCK_MESSAGE',
        "Votre compte est actuellement suspendu pour défaut de paiement. Veuillez régulariser votre situation."
    )

    # Redis Cache Configuration
    # Only the public /features payload is cached; authorization checks always hit the database
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_ENTITLEMENTS_TTL = int(os.getenv('CACHE_ENTITLEMENTS_TTL', '60'))  # seconds
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'voxpop')

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')
