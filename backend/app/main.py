"""FastAPI backend: Google login + copying template tabs into new spreadsheets"""
import asyncio
import json
import logging

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from google.auth.exceptions import GoogleAuthError, RefreshError
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse
from starlette.middleware.sessions import SessionMiddleware

from app import google_auth
from app.config import (
    CLEANUP_ON_FAILURE,
    COOKIE_SECURE,
    CREATE_SHEET_TIMEOUT,
    ORIGIN_URI,
    SESSION_MAX_AGE,
    SESSION_SECRET,
    TEMPLATE_SHEET_ID,
    USERS_PATH,
)
from app.logging_setup import configure_logging
from app.sheets.duplicator import DuplicationRequest, SheetDuplicator
from app.sheets.exceptions import DuplicationError
from app.users import User, UserStore

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="Template Sheet Duplicator")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[ORIGIN_URI],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Signed cookie, nothing kept server side
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    max_age=SESSION_MAX_AGE,
    https_only=COOKIE_SECURE,
)


class Unauthorized(Exception):
    pass


class CreateSheetBody(BaseModel):
    title: str | None = None
    tabs: list[str] = []


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return JSONResponse({"error": str(exc)}, status_code=401)


@app.exception_handler(DuplicationError)
async def duplication_error_handler(request: Request, exc: DuplicationError):
    content = {"error": "Failed to create spreadsheet", "details": exc.message}
    if exc.orphaned:
        content["orphaned_spreadsheet_id"] = exc.spreadsheet_id
    return JSONResponse(content, status_code=500)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error", "details": str(exc)}, status_code=500)


# ── Dependencies ──

_user_store = UserStore(USERS_PATH)


def get_user_store() -> UserStore:
    return _user_store


def get_session_user(request: Request, store: UserStore = Depends(get_user_store)) -> User | None:
    user_id = request.session.get("user_id")
    return store.get(user_id) if user_id else None


def get_current_user(user: User | None = Depends(get_session_user)) -> User:
    if user is None or not user.access_token:
        raise Unauthorized("Unauthorized")
    return user


def get_credentials(user: User = Depends(get_current_user), store: UserStore = Depends(get_user_store)):
    try:
        return google_auth.user_credentials(user, store)
    except RefreshError as e:
        log.warning("Token refresh failed for user %s: %s", user.google_id, e)
        raise Unauthorized("Unauthorized") from e
    except GoogleAuthError as e:
        # Token endpoint unreachable, not a rejected login
        raise DuplicationError(f"Token refresh failed: {e}") from e


def get_duplicator() -> SheetDuplicator:
    if not TEMPLATE_SHEET_ID:
        raise DuplicationError("TEMPLATE_SHEET_ID is not configured")
    return SheetDuplicator(TEMPLATE_SHEET_ID, cleanup_on_failure=CLEANUP_ON_FAILURE)


# ── Auth ──

@app.get("/auth/google")
def auth_login(request: Request):
    url, state, code_verifier = google_auth.authorization_url()
    request.session["oauth_state"] = state
    request.session["code_verifier"] = code_verifier
    return RedirectResponse(url)


@app.get("/auth/google/callback")
def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    store: UserStore = Depends(get_user_store),
):
    expected_state = request.session.pop("oauth_state", None)
    code_verifier = request.session.pop("code_verifier", None)
    failed = RedirectResponse(f"{ORIGIN_URI}?login=failed", status_code=302)

    if error or not code or not state or state != expected_state:
        log.warning("OAuth callback rejected (error=%s, state ok=%s)", error, state == expected_state)
        return failed

    try:
        identity, creds = google_auth.exchange_code(code, state, code_verifier)
    except Exception:
        log.exception("OAuth code exchange failed")
        return failed

    user = store.upsert_login(
        google_id=identity.google_id,
        display_name=identity.display_name,
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=creds.expiry,
    )
    request.session["user_id"] = user.google_id
    log.info("User %s logged in", user.google_id)
    return RedirectResponse(ORIGIN_URI, status_code=302)


@app.get("/auth/user")
def auth_user(user: User | None = Depends(get_session_user)):
    if user is None:
        raise Unauthorized("Not authenticated")
    return user.public_dict()


@app.post("/auth/logout")
def auth_logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


# ── Spreadsheets ──

@app.post("/create-sheet")
def create_sheet(
    body: CreateSheetBody | None = None,
    credentials=Depends(get_credentials),
    duplicator: SheetDuplicator = Depends(get_duplicator),
):
    body = body or CreateSheetBody()
    result = duplicator.duplicate(credentials, DuplicationRequest(title=body.title, tabs=body.tabs))
    return result.to_dict()


@app.get("/create-sheet/stream")
async def create_sheet_stream(
    title: str | None = None,
    tabs: list[str] = Query(default=[]),
    credentials=Depends(get_credentials),
    duplicator: SheetDuplicator = Depends(get_duplicator),
):
    """SSE endpoint that streams progress while duplicating the template tabs"""

    queue: asyncio.Queue = asyncio.Queue()
    loop = asyncio.get_running_loop()
    request = DuplicationRequest(title=title, tabs=tabs)

    def on_progress(msg):
        # Called from the worker thread
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "progress", "message": msg})

    async def run_pipeline():
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(duplicator.duplicate, credentials, request, on_progress),
                timeout=CREATE_SHEET_TIMEOUT,
            )
        except DuplicationError as e:
            msg = {"type": "error", "message": e.message}
            if e.orphaned:
                msg["orphaned_spreadsheet_id"] = e.spreadsheet_id
            await queue.put(msg)
            return
        except asyncio.TimeoutError:
            # The worker thread may still finish; nothing is cleaned up here
            log.error("Duplication timed out after %ss", CREATE_SHEET_TIMEOUT)
            await queue.put({"type": "error", "message": f"Timed out after {CREATE_SHEET_TIMEOUT}s"})
            return
        except Exception as e:
            log.exception("Streamed duplication failed")
            await queue.put({"type": "error", "message": str(e) or e.__class__.__name__})
            return

        await queue.put({"type": "done", "message": "Spreadsheet ready", "url": result.url})

    async def event_generator():
        task = asyncio.create_task(run_pipeline())

        while True:
            try:
                msg = await asyncio.wait_for(queue.get(), timeout=1.0)
                yield {"event": "message", "data": json.dumps(msg)}
                if msg["type"] in ("done", "error"):
                    break
            except asyncio.TimeoutError:
                yield {"comment": "keepalive"}

        await task

    return EventSourceResponse(event_generator())


@app.get("/api/health")
def health():
    return {"status": "ok"}
