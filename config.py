import os
import re
from datetime import timedelta


def parse_duration(value: str) -> timedelta:
    """Parse durations like "15m", "12h", "7d" or "900" (seconds)."""
    value = value.replace('"', "").replace("'", "").strip()
    match = re.fullmatch(r"(\d+)\s*([smhd]?)", value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = int(match.group(1)), match.group(2) or "s"
    return {
        "s": timedelta(seconds=amount),
        "m": timedelta(minutes=amount),
        "h": timedelta(hours=amount),
        "d": timedelta(days=amount),
    }[unit]


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "printshop")

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", JWT_SECRET + ":refresh")
JWT_ALGO = "HS256"
ACCESS_TOKEN_TTL = parse_duration(os.getenv("ACCESS_TOKEN_TIME", "15m"))
REFRESH_TOKEN_TTL = timedelta(days=7)
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
OTP_TTL_MINUTES = 5

# Refresh cookie
APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"
REFRESH_COOKIE_NAME = "refreshToken"

# Mail
MAIL_HOST = os.getenv("MAIL_HOST", "smtp.gmail.com")
MAIL_PORT = int(os.getenv("MAIL_PORT", "465"))
_mail_secure = os.getenv("MAIL_SECURE")
MAIL_SECURE = MAIL_PORT == 465 if _mail_secure is None else _mail_secure.lower() in ("true", "1", "yes")
MAIL_USER = os.getenv("MAIL_USER")
MAIL_PASS = os.getenv("MAIL_PASS")
MAIL_FROM = os.getenv("MAIL_FROM") or MAIL_USER
MAIL_TIMEOUT = 10

# Super admin seeded on startup
SUPER_ADMIN_EMAIL = os.getenv("SUPER_ADMIN_EMAIL")
SUPER_ADMIN_PASSWORD = os.getenv("SUPER_ADMIN_PASSWORD")
SUPER_ADMIN_NAME = os.getenv("SUPER_ADMIN_NAME", "Super Admin")

# App
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
