"""
Module-level connection constants for code that runs outside the FastAPI app
(migrations, scripts). New code should use backend.app.core.settings.get_settings().
"""
from dotenv import load_dotenv

from backend.app.core.settings import get_settings

# Load variables from .env before Settings reads the environment
load_dotenv()

_settings = get_settings()

DB_URL = _settings.db_url
DB_POOL_SIZE = _settings.DB_POOL_SIZE
DB_MAX_OVERFLOW = _settings.DB_MAX_OVERFLOW
DB_POOL_RECYCLE = _settings.DB_POOL_RECYCLE
DB_POOL_TIMEOUT = _settings.DB_POOL_TIMEOUT
STORE_TIMEOUT_SECONDS = _settings.STORE_TIMEOUT_SECONDS
REDIS_HOST = _settings.REDIS_HOST
REDIS_PORT = _settings.REDIS_PORT
REDIS_DB = _settings.REDIS_DB
