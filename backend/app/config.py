import logging
import os
import secrets
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
OAUTH_REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI", "http://localhost:5001/auth/google/callback")
ORIGIN_URI = os.getenv("ORIGIN_URI", "http://localhost:3000")

# Spreadsheet whose tabs get copied into every new spreadsheet
TEMPLATE_SHEET_ID = os.getenv("TEMPLATE_SHEET_ID", "")

SESSION_SECRET = os.getenv("SESSION_SECRET")
if not SESSION_SECRET:
    log.warning("SESSION_SECRET not set, sessions will not survive a restart")
    SESSION_SECRET = secrets.token_urlsafe(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24)))
COOKIE_SECURE = _flag("COOKIE_SECURE", "false")

USERS_PATH = os.getenv("USERS_PATH", "/tmp/users.json")

# Seconds per Google API call / per streamed duplication
HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "60"))
CREATE_SHEET_TIMEOUT = int(os.getenv("CREATE_SHEET_TIMEOUT", "300"))

CLEANUP_ON_FAILURE = _flag("CLEANUP_ON_FAILURE", "true")
