import os
from dotenv import load_dotenv

load_dotenv()

# Database (SQLite locally, PostgreSQL in deployment)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///school_portal.db").strip()

# Server
PORT = int(os.getenv("PORT", "4000"))
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
CORS_ORIGINS = [
    o.strip().rstrip("/")
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Uploads
UPLOAD_RATE_LIMIT = os.getenv("UPLOAD_RATE_LIMIT", "30/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1").strip().lower() in ("1", "true", "yes")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

# Exam results
DEFAULT_SUBJECT_MAX_MARKS = float(os.getenv("DEFAULT_SUBJECT_MAX_MARKS", "100"))


def is_production() -> bool:
    return APP_ENV == "production"
