"""
Runtime configuration for DesignDen

Values come from the environment and are read once at import time.
"""
import json
import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "designden")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Login rate limiting (per-IP)
RATE_LIMIT_WINDOW_SEC = 60 * 15  # 15 minutes
RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "20"))

_DEFAULT_TIERS = [
    {"minEarnings": 0, "designerRate": 80},
    {"minEarnings": 50000, "designerRate": 85},
    {"minEarnings": 150000, "designerRate": 90},
]


def _load_tiers(raw):
    if not raw:
        return _DEFAULT_TIERS
    tiers = json.loads(raw)
    return sorted(
        ({"minEarnings": float(t["minEarnings"]), "designerRate": float(t["designerRate"])} for t in tiers),
        key=lambda t: t["minEarnings"],
    )


COMMISSION_TIERS = _load_tiers(os.getenv("COMMISSION_TIERS"))
MINIMUM_PAYOUT = float(os.getenv("MINIMUM_PAYOUT", "500"))
PAYOUT_HOLD_DAYS = int(os.getenv("PAYOUT_HOLD_DAYS", "7"))
DEFAULT_DESIGN_PRICE = float(os.getenv("DEFAULT_DESIGN_PRICE", "500"))

# Demo data seeding; once an admin exists only an admin may re-run it
ALLOW_SEED = os.getenv("ALLOW_SEED", "true").lower() == "true"
