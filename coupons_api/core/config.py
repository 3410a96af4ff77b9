import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coupons.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Admin routes
ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "").strip()

# Currency symbol used in customer-facing validation messages
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")

# Pagination
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

# Migrations
AUTO_APPLY_MIGRATIONS = os.getenv("AUTO_APPLY_MIGRATIONS", "").strip().lower()
CREATE_SCHEMA_ON_STARTUP = os.getenv(
    "CREATE_SCHEMA_ON_STARTUP",
    "1" if IS_DEV else "0",
).strip().lower() in _TRUTHY
