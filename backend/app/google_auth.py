"""Google OAuth2 web flow and per-user credentials for Sheets and Drive APIs."""
import logging
import os
from dataclasses import dataclass

import httplib2
from google.auth.transport.requests import Request
from google.oauth2 import id_token
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from app.config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, HTTP_TIMEOUT, OAUTH_REDIRECT_URI
from app.users import User, UserStore

log = logging.getLogger(__name__)

# Google may return granted scopes in a different order / with extras
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]


@dataclass
class GoogleIdentity:
    google_id: str
    display_name: str


def _client_config() -> dict:
    """Build OAuth client config dict from env vars."""
    return {
        "web": {
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": TOKEN_URI,
            "redirect_uris": [OAUTH_REDIRECT_URI],
        }
    }


def build_flow(state: str | None = None, code_verifier: str | None = None) -> Flow:
    return Flow.from_client_config(
        _client_config(),
        scopes=SCOPES,
        redirect_uri=OAUTH_REDIRECT_URI,
        state=state,
        code_verifier=code_verifier,
    )


def authorization_url() -> tuple[str, str, str | None]:
    """Return (consent url, state, PKCE code verifier) for a new login."""
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise ValueError("GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET missing from .env")

    flow = build_flow()
    # offline + consent so Google hands out a refresh token
    url, state = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
    )
    return url, state, flow.code_verifier


def exchange_code(code: str, state: str, code_verifier: str | None) -> tuple[GoogleIdentity, Credentials]:
    """Trade the callback code for tokens and the verified account identity."""
    flow = build_flow(state=state, code_verifier=code_verifier)
    flow.fetch_token(code=code)
    creds = flow.credentials

    claims = id_token.verify_oauth2_token(creds.id_token, Request(), GOOGLE_CLIENT_ID)
    identity = GoogleIdentity(
        google_id=claims["sub"],
        display_name=claims.get("name", ""),
    )
    return identity, creds


def user_credentials(user: User, store: UserStore) -> Credentials:
    """Delegated credential for a logged in user.

    Refreshes an expired access token when a refresh token is on file and
    saves the new one. Raises google.auth.exceptions.RefreshError if Google
    refuses the refresh.
    """
    creds = Credentials(
        token=user.access_token,
        refresh_token=user.refresh_token,
        token_uri=TOKEN_URI,
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
        expiry=user.expiry,
    )

    if creds.expired and creds.refresh_token:
        log.info("Refreshing access token for user %s", user.google_id)
        creds.refresh(Request())
        store.update_token(user.google_id, creds.token, creds.expiry)

    return creds


def _authorized_http(creds: Credentials) -> AuthorizedHttp:
    return AuthorizedHttp(creds, http=httplib2.Http(timeout=HTTP_TIMEOUT))


def get_sheets_service(creds: Credentials):
    return build("sheets", "v4", http=_authorized_http(creds), cache_discovery=False)


def get_drive_service(creds: Credentials):
    return build("drive", "v3", http=_authorized_http(creds), cache_discovery=False)
