import os

# --- Storage ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./crowdstack.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# --- QR pass signing ---
QR_PASS_SECRET = os.environ.get("QR_PASS_SECRET", "dev_secret_change_me")
QR_PASS_TTL_MINUTES = int(os.environ.get("QR_PASS_TTL_MINUTES", str(60 * 24 * 30)))

# --- Hosted auth sessions ---
AUTH_JWT_SECRET = os.environ.get("AUTH_JWT_SECRET", "dev_auth_secret_change_me")
AUTH_JWT_AUDIENCE = os.environ.get("AUTH_JWT_AUDIENCE", "authenticated")
SESSION_COOKIE_NAME = os.environ.get("SESSION_COOKIE_NAME", "sb-access-token")

APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000").rstrip("/")

# single_use | per_day
CHECKIN_POLICY = os.environ.get("CHECKIN_POLICY", "single_use").lower()

# Requests per minute
REDEEM_RATE_LIMIT = int(os.environ.get("REDEEM_RATE_LIMIT", "30"))
CHECKIN_RATE_LIMIT = int(os.environ.get("CHECKIN_RATE_LIMIT", "120"))

IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
