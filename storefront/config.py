# storefront/config.py
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

# -------------------------
# optional .env (instance/.env)
# -------------------------
BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR.parent / "instance" / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _env_list(var_name: str, fallback: list[str]) -> list[str]:
    raw = os.getenv(var_name, "")
    if raw.strip():
        return [u.strip() for u in raw.split(",") if u.strip()]
    return fallback


def _env_decimal(var_name: str, default: str) -> Decimal:
    raw = os.getenv(var_name, "").strip() or default
    try:
        return Decimal(raw)
    except InvalidOperation:
        return Decimal(default)


def _env_optional_decimal(var_name: str):
    raw = os.getenv(var_name, "").strip()
    if not raw:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def normalize_database_url(raw_url: str) -> str:
    """
    Hosted Postgres hands out URLs like postgres://... which need the psycopg
    driver spelled out; SSL is forced for those. Empty URL -> local SQLite file.
    """
    if not raw_url:
        return f"sqlite:///{BASE_DIR / 'database' / 'app.db'}"
    url = raw_url
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    if url.startswith("postgresql+psycopg://") and "sslmode=" not in url:
        sep = "&" if "?" in url else "?"
        url = f"{url}{sep}sslmode=require"
    return url


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "maison_darin_dev_secret")

    # Database
    SQLALCHEMY_DATABASE_URI = normalize_database_url(os.getenv("DATABASE_URL", ""))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS only for the storefront domain on /api/*
    CORS_ORIGINS = _env_list("CORS_ORIGINS", [
        "https://maisondarin.com",
        "https://www.maisondarin.com",
    ])

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    DEBUG_ROUTES = os.getenv("DEBUG_ROUTES") == "1"

    # Orders
    ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "MD")
    SHIPPING_FLAT_RATE = _env_decimal("SHIPPING_FLAT_RATE", "50")
    FREE_SHIPPING_THRESHOLD = _env_optional_decimal("FREE_SHIPPING_THRESHOLD")
    TAX_RATE = _env_decimal("TAX_RATE", "0")  # percent

    # Payments
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "EGP").upper()
    ALLOWED_CURRENCIES = [c.upper() for c in _env_list("ALLOWED_CURRENCIES", ["EGP", "USD", "EUR"])]
    PAYMENT_TIMEOUT_MINUTES = int(os.getenv("PAYMENT_TIMEOUT_MINUTES", "30"))
    IDENTIFIER_MAX_ATTEMPTS = int(os.getenv("IDENTIFIER_MAX_ATTEMPTS", "99"))

    # HTTP gateway (empty = internal simulated gateway)
    PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "")
    PAYMENT_GATEWAY_TOKEN = os.getenv("PAYMENT_GATEWAY_TOKEN", "")
    GATEWAY_TIMEOUT = int(os.getenv("GATEWAY_TIMEOUT", "30"))
    HTTP_GATEWAY_PROVIDERS = _env_list("HTTP_GATEWAY_PROVIDERS", ["paymob", "fawry", "paypal", "stripe"])

    # Bank transfer details shown to the customer
    BANK_TRANSFER_DETAILS = {
        "bank_name": os.getenv("BANK_NAME", "National Bank of Egypt"),
        "account_name": os.getenv("BANK_ACCOUNT_NAME", "Maison Darin Perfumes"),
        "account_number": os.getenv("BANK_ACCOUNT_NUMBER", ""),
        "iban": os.getenv("BANK_IBAN", ""),
        "swift_code": os.getenv("BANK_SWIFT", "NBEAEGCX"),
    }
