import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "1440"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 6

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@flashmat.com")
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

# Server
CLIENT_URL = os.getenv("CLIENT_URL", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))

# System settings defaults (overridable at runtime through /api/admin/settings)
ALLOW_REGISTRATIONS = _flag("ALLOW_REGISTRATIONS", True)
MAINTENANCE_MODE = _flag("MAINTENANCE_MODE", False)
MAX_CLASS_SIZE = int(os.getenv("MAX_CLASS_SIZE", "30"))
MAX_DECKS_PER_USER = int(os.getenv("MAX_DECKS_PER_USER", "50"))
MAX_CARDS_PER_DECK = int(os.getenv("MAX_CARDS_PER_DECK", "100"))

# Grading
MIN_GRADE_TO_PASS = 70
NEEDS_REVIEW_BELOW = 70
