import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL must be set in the environment")

ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS")
if not ALLOWED_ORIGINS_RAW:
    raise ValueError("ALLOWED_ORIGINS must be set in the environment")

ALLOWED_ORIGINS: list[str] = [
    origin.strip() for origin in ALLOWED_ORIGINS_RAW.split(",")
]

# Payment gateway (mobile money)
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://api.sandbox.pawapay.io").rstrip("/")
GATEWAY_API_KEY = os.getenv("GATEWAY_API_KEY", "")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))
DEFAULT_COUNTRY_PREFIX = os.getenv("DEFAULT_COUNTRY_PREFIX", "250")

# Currencies and exchange rates
SETTLEMENT_CURRENCY = os.getenv("SETTLEMENT_CURRENCY", "USD").upper()
LOCAL_CURRENCY = os.getenv("LOCAL_CURRENCY", "RWF").upper()
EXCHANGE_API_URL = os.getenv(
    "EXCHANGE_API_URL", "https://hexarate.paikama.co/api/rates/latest"
).rstrip("/")
EXCHANGE_RATE_TTL_SECONDS = int(os.getenv("EXCHANGE_RATE_TTL_SECONDS", "3600"))
FALLBACK_BASE_RATE = Decimal(os.getenv("FALLBACK_BASE_RATE", "1450"))

# Wallet distribution
PLATFORM_WALLET_OWNER = os.getenv("PLATFORM_WALLET_OWNER", "platform")
DISTRIBUTION_WINDOW_DAYS = int(os.getenv("DISTRIBUTION_WINDOW_DAYS", "30"))

# Reconciliation poller
RECONCILE_BATCH_SIZE = int(os.getenv("RECONCILE_BATCH_SIZE", "50"))
RECONCILE_MAX_AGE_HOURS = int(os.getenv("RECONCILE_MAX_AGE_HOURS", "24"))

# Notifications are only logged when no delivery endpoint is configured
NOTIFICATION_API_URL = os.getenv("NOTIFICATION_API_URL")
