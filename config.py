"""
Runtime configuration for the Storefront API.

Everything is read from the environment once, at import time.
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", 5))

# Category creation is left open while the dashboard is being set up
DEV_MODE = _flag("DEV_MODE")

CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY")
CLERK_JWT_KEY = os.getenv("CLERK_JWT_KEY")
CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1").rstrip("/")
CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
CHECKOUT_CURRENCY = os.getenv("CHECKOUT_CURRENCY", "pkr")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")

GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 10))
