"""
Application configuration, read from the environment (and a .env file) once at import.
"""
import os

from dotenv import load_dotenv
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Tokens
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
# Hard ceiling on token age, checked independently of the exp claim
TOKEN_MAX_AGE_SECONDS = 24 * 60 * 60
BCRYPT_SALT_ROUNDS = int(os.getenv("BCRYPT_SALT_ROUNDS", "12"))

# Storage
STORE_BACKEND = os.getenv("STORE_BACKEND", "json")
DATA_DIR = os.getenv("DATA_DIR", "./data")
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "true")

# HTTP
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
DEV_MODE = _flag("DEV_MODE", "false")
# Only honour client-ip / X-Forwarded-For when a trusted proxy sets them
TRUST_PROXY_HEADERS = _flag("TRUST_PROXY_HEADERS", "false")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Pricing
SHIPPING_FLAT_FEE = int(os.getenv("SHIPPING_FLAT_FEE", "15"))
FREE_SHIPPING_THRESHOLD = int(os.getenv("FREE_SHIPPING_THRESHOLD", "100"))
DELIVERY_LEAD_DAYS = 7
SHIPPED_DELIVERY_LEAD_DAYS = 3

# Rate limiting: endpoint -> (max requests, window in milliseconds)
RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "true")
RATE_LIMITS = {
    "login": (5, 15 * 60 * 1000),
    "register": (3, 60 * 60 * 1000),
    "products": (100, 60 * 1000),
    "product-create": (20, 60 * 60 * 1000),
    "product-manage": (20, 60 * 60 * 1000),
    "order-create": (10, 60 * 60 * 1000),
    "orders": (50, 60 * 1000),
    "order-manage": (20, 60 * 60 * 1000),
}
