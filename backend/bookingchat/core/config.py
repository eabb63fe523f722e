# backend/bookingchat/core/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# Project root .env: backend/bookingchat/core/../../../.env
env_path = Path(__file__).resolve().parent.parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# --- Database ---
POSTGRES_USER = os.getenv("POSTGRES_USER", "bookingchat")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "bookingchat")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB", "bookingchat")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)
# "null" disables connection pooling (tests, one-shot scripts)
DATABASE_POOL = os.getenv("DATABASE_POOL", "queue").lower()
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "false").lower() == "true"

# --- Auth ---
SECRET_KEY = os.getenv("SECRET_KEY", "dev-unsafe-secret-key")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

# --- Realtime ---
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
# "redis" fans events out across server instances, "off" keeps delivery local
REALTIME_RELAY = os.getenv("REALTIME_RELAY", "off").lower()
RELAY_CHANNEL = os.getenv("RELAY_CHANNEL", "bookingchat:events")

# --- HTTP ---
ALLOWED_ORIGINS = [origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",") if origin.strip()]
MESSAGE_PAGE_LIMIT = int(os.getenv("MESSAGE_PAGE_LIMIT", "500"))

# --- Media ---
MEDIA_BACKEND = os.getenv("MEDIA_BACKEND", "local").lower()
MEDIA_STORE_URL = os.getenv("MEDIA_STORE_URL", "")
MEDIA_STORE_TOKEN = os.getenv("MEDIA_STORE_TOKEN", "")
MEDIA_STORE_TIMEOUT = float(os.getenv("MEDIA_STORE_TIMEOUT", "30"))
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MEDIA_URL_PREFIX = "/media"
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_MB", "10")) * 1024 * 1024

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
