import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calint.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Fernet key for OAuth tokens at rest (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
# Falls back to a key derived from SECRET_KEY
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY")

# Frontend base URL for redirects (success/error pages)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Pipedrive OAuth Configuration
PIPEDRIVE_CLIENT_ID = os.getenv("PIPEDRIVE_CLIENT_ID")
PIPEDRIVE_CLIENT_SECRET = os.getenv("PIPEDRIVE_CLIENT_SECRET")
PIPEDRIVE_REDIRECT_URI = os.getenv("PIPEDRIVE_REDIRECT_URI", "http://localhost:8000/api/v1/auth/callback")

# Calendly OAuth Configuration
CALENDLY_CLIENT_ID = os.getenv("CALENDLY_CLIENT_ID")
CALENDLY_CLIENT_SECRET = os.getenv("CALENDLY_CLIENT_SECRET")
CALENDLY_REDIRECT_URI = os.getenv(
    "CALENDLY_REDIRECT_URI", "http://localhost:8000/api/v1/auth/calendly/callback"
)
# Public URL Calendly posts invitee notifications to; subscription is skipped when unset
CALENDLY_WEBHOOK_URL = os.getenv("CALENDLY_WEBHOOK_URL")
# Signing key registered with the webhook subscription; verification is skipped when unset
CALENDLY_WEBHOOK_SIGNING_KEY = os.getenv("CALENDLY_WEBHOOK_SIGNING_KEY")

# Outbound HTTP
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
# Treat tokens as expired this many seconds before their recorded expiry
TOKEN_EXPIRY_SKEW_SECONDS = int(os.getenv("TOKEN_EXPIRY_SKEW_SECONDS", "60"))

# Plaintext identity cookie set after the Pipedrive login
IDENTITY_COOKIE_NAME = "userId"
IDENTITY_COOKIE_MAX_AGE = int(os.getenv("IDENTITY_COOKIE_MAX_AGE", "3600"))
