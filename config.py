import os
from dotenv import load_dotenv

load_dotenv()

# --- DATABASE ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coatcard.db")

# --- SESSIONS ---
SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-session-secret-change-me")
SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = "coatcard_session"
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "14"))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

# --- AI PROVIDER ---
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/")
AI_MODEL = os.getenv("AI_MODEL", "gemini-2.0-flash")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "0"))

# --- MAIL ---
EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASS = os.getenv("EMAIL_PASS", "")
# local development only: log recipient and subject instead of sending
MAIL_LOG_ONLY = os.getenv("MAIL_LOG_ONLY", "false").lower() in ("1", "true", "yes")

# public URL used to build password reset links
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")

MAX_AVATAR_BYTES = int(os.getenv("MAX_AVATAR_BYTES", "5000000"))
