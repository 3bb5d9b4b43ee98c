"""User records persisted to a JSON file, keyed by Google account id."""
import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

log = logging.getLogger(__name__)


@dataclass
class User:
    google_id: str
    display_name: str = ""
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: str | None = None  # naive UTC, ISO format

    @property
    def expiry(self) -> datetime | None:
        if not self.token_expiry:
            return None
        return datetime.fromisoformat(self.token_expiry)

    def public_dict(self) -> dict:
        return {"googleId": self.google_id, "displayName": self.display_name}


class UserStore:
    """Thread-safe store; every write rewrites the whole file."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            return json.load(f)

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self.path)

    def get(self, google_id: str) -> User | None:
        with self._lock:
            record = self._load().get(google_id)
        if record is None:
            return None
        return User(**record)

    def upsert_login(
        self,
        google_id: str,
        display_name: str,
        access_token: str,
        refresh_token: str | None,
        expiry: datetime | None,
    ) -> User:
        """Create the user on first login, refresh its tokens afterwards.

        Google only sends a refresh token on the first consent, so an
        existing one is kept when the new login carries none.
        """
        with self._lock:
            data = self._load()
            existing = data.get(google_id)
            user = User(**existing) if existing else User(google_id=google_id)
            if existing is None:
                log.info("New user %s", google_id)

            user.display_name = display_name
            user.access_token = access_token
            if refresh_token:
                user.refresh_token = refresh_token
            user.token_expiry = expiry.isoformat() if expiry else None

            data[google_id] = asdict(user)
            self._save(data)
        return user

    def update_token(self, google_id: str, access_token: str, expiry: datetime | None) -> None:
        with self._lock:
            data = self._load()
            if google_id not in data:
                return
            data[google_id]["access_token"] = access_token
            data[google_id]["token_expiry"] = expiry.isoformat() if expiry else None
            self._save(data)
