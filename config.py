import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator, field_validator
from typing import Optional

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_DB_URI = f'sqlite:///{os.path.join(BASE_DIR, "shelfpass.db")}'


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',  # Ignore extra fields from .env
    )

    # Security configuration
    SECRET_KEY: str

    # Database
    DATABASE_URL: str = DEFAULT_DB_URI
    SQLALCHEMY_DATABASE_URI: Optional[str] = None
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    # Book files are served from here (storage itself is handled elsewhere)
    UPLOAD_FOLDER: str = os.path.join(BASE_DIR, 'uploads')

    # Internationalization
    LANGUAGES: list = ['en', 'pl']
    BABEL_DEFAULT_LOCALE: str = 'en'
    BABEL_DEFAULT_TIMEZONE: str = 'UTC'
    BABEL_TRANSLATION_DIRECTORIES: str = os.path.join(BASE_DIR, 'translations')

    # Subscriptions
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    USAGE_PERIOD_DAYS: int = 30
    DUPLICATE_TITLE_THRESHOLD: float = 0.8

    # Background expiry sweep. The host process starts it (see wsgi.py).
    SCHEDULER_ENABLED: bool = False
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = 60

    # Audit trail as JSON lines; disabled when unset
    AUDIT_LOG_DIR: Optional[str] = None

    # Application environment: development | staging | production
    APP_ENV: str = os.getenv('FLASK_ENV', 'development')

    # `SESSION_COOKIE_SECURE` is promoted to True in production unless the
    # environment sets it explicitly.
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SECURE: bool = False
    SESSION_COOKIE_SAMESITE: str = 'Lax'
    PERMANENT_SESSION_LIFETIME: int = 3600  # 1 hour session timeout

    @field_validator('DUPLICATE_TITLE_THRESHOLD')
    @classmethod
    def _check_threshold(cls, v):
        if not 0 < v <= 1:
            raise ValueError('DUPLICATE_TITLE_THRESHOLD must be in (0, 1]')
        return v

    @field_validator('EXPIRY_SWEEP_INTERVAL_MINUTES', 'SUBSCRIPTION_PERIOD_DAYS', 'USAGE_PERIOD_DAYS', mode='before')
    @classmethod
    def _parse_positive_int(cls, v):
        """Allow values like '60  # hourly' coming from .env files."""
        if isinstance(v, str):
            v = v.split('#', 1)[0].strip()
        v = int(v)
        if v <= 0:
            raise ValueError('must be a positive integer')
        return v

    @model_validator(mode='after')
    def set_database_config(self) -> 'Config':
        """Set SQLALCHEMY_DATABASE_URI from DATABASE_URL and configure engine options"""
        self.SQLALCHEMY_DATABASE_URI = self.DATABASE_URL

        if 'mysql' in self.DATABASE_URL or 'mariadb' in self.DATABASE_URL:
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                'pool_size': 10,
                'pool_recycle': 3600,
                'pool_pre_ping': True,
                'max_overflow': 20,
                'connect_args': {
                    'charset': 'utf8mb4',
                }
            }
        elif self.DATABASE_URL.startswith('postgresql'):
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                'pool_size': 10,
                'pool_pre_ping': True,
            }

        return self

    @model_validator(mode='after')
    def enforce_production_cookies(self) -> 'Config':
        env = self.APP_ENV or 'development'
        if env.lower() != 'production':
            # never send 'Secure' on non-HTTPS, avoids missing session
            self.SESSION_COOKIE_SECURE = False
        elif 'SESSION_COOKIE_SECURE' not in os.environ:
            self.SESSION_COOKIE_SECURE = True
        return self
