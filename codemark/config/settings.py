"""
codemark/config/settings.py
Environment-driven settings for storage, auth and the analysis provider
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./codemark.db")

# ================= AUTH =================

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
AUTH_TOKEN_URL = os.getenv("AUTH_TOKEN_URL", "/api/auth/login")

# ================= UPLOADS =================

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "./uploads"))
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50")) * 1024 * 1024
# Ceiling on the total uncompressed size of an extracted archive
MAX_EXTRACTED_SIZE = int(os.getenv("MAX_EXTRACTED_SIZE_MB", "200")) * 1024 * 1024
UPLOAD_RATE_LIMIT = os.getenv("UPLOAD_RATE_LIMIT", "10/minute")

# ================= ANALYSIS PROVIDER =================

ANALYSIS_PROVIDER_URL = os.getenv("ANALYSIS_PROVIDER_URL", "http://localhost:9000")
ANALYSIS_PROVIDER_TOKEN = os.getenv("ANALYSIS_PROVIDER_TOKEN", "")
ANALYSIS_PROVIDER_NAME = os.getenv("ANALYSIS_PROVIDER_NAME", "sonarqube")
ANALYSIS_REQUEST_TIMEOUT = float(os.getenv("ANALYSIS_REQUEST_TIMEOUT", "30"))

POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "60"))
POLL_SWEEP_INTERVAL_SECONDS = int(os.getenv("POLL_SWEEP_INTERVAL_SECONDS", "300"))

# ================= CORS =================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
