"""
Sheet Duplicator: creates a new spreadsheet holding copies of selected
tabs from the template spreadsheet.

Steps (all sequential, one Google API call at a time):
  1. Create the spreadsheet (comes with a default "Sheet1" tab)
  2. Copy each requested template tab into it
  3. Rename the copies back to their template names in one batchUpdate
  4. Delete the default tab if anything else exists
"""
import http.client
import logging
from dataclasses import dataclass, field

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from app.google_auth import get_drive_service, get_sheets_service
from app.sheets.exceptions import DuplicationError

log = logging.getLogger(__name__)

DEFAULT_TITLE = "New Google Sheet"

# Everything a Google API call can raise that means "the provider failed"
PROVIDER_ERRORS = (
    HttpError,
    GoogleAuthError,
    httplib2.HttpLib2Error,
    http.client.HTTPException,
    OSError,
)


def spreadsheet_url(spreadsheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit"


def _error_message(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        return getattr(exc, "reason", None) or str(exc)
    return str(exc) or exc.__class__.__name__


@dataclass
class DuplicationRequest:
    title: str | None = None
    tabs: list[str] = field(default_factory=list)

    @property
    def effective_title(self) -> str:
        return self.title or DEFAULT_TITLE


@dataclass
class TabMapping:
    name: str
    template_sheet_id: int
    copy_sheet_id: int


@dataclass
class DuplicationResult:
    spreadsheet_id: str
    url: str
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "spreadsheet_id": self.spreadsheet_id,
            "copied": self.copied,
            "skipped": self.skipped,
        }


class SheetDuplicator:
    """Copies tabs of one fixed template spreadsheet into new spreadsheets.

    Holds no per-request state, so one instance serves concurrent callers.
    A call is neither transactional nor idempotent: every call creates a new
    spreadsheet. When a step after creation fails, the partial spreadsheet is
    deleted through Drive if cleanup_on_failure is set; otherwise (or if that
    delete fails too) its id is reported on the DuplicationError.
    """

    def __init__(
        self,
        template_id: str,
        sheets_factory=get_sheets_service,
        drive_factory=get_drive_service,
        cleanup_on_failure: bool = True,
    ):
        self.template_id = template_id
        self._sheets_factory = sheets_factory
        self._drive_factory = drive_factory
        self.cleanup_on_failure = cleanup_on_failure

    def duplicate(self, credentials, request: DuplicationRequest, on_progress=None) -> DuplicationResult:
        """
        Args:
            credentials: delegated Google credentials of the calling user
            request: title + ordered tab names to copy
            on_progress: optional callable receiving progress messages
        Returns:
            DuplicationResult with the new spreadsheet URL
        Raises:
            DuplicationError on any Google API failure, or on any
            other failure once the spreadsheet exists
        """

        def emit(msg: str):
            log.debug(msg)
            if on_progress:
                on_progress(msg)

        try:
            service = self._sheets_factory(credentials)
        except PROVIDER_ERRORS as e:
            raise DuplicationError(_error_message(e)) from e

        # ── Step 1: create (fatal on failure, nothing to clean up) ──
        title = request.effective_title
        emit(f"Creating spreadsheet '{title}'...")
        try:
            created = service.spreadsheets().create(
                body={"properties": {"title": title}},
                fields="spreadsheetId,sheets.properties",
            ).execute()
        except PROVIDER_ERRORS as e:
            log.error("Spreadsheet create failed: %s", _error_message(e))
            raise DuplicationError(_error_message(e)) from e

        spreadsheet_id = created["spreadsheetId"]
        default_sheet_id = created["sheets"][0]["properties"]["sheetId"]
        log.info("Created spreadsheet %s", spreadsheet_id)

        # ── Steps 2-4 ──
        try:
            copied, skipped = self._copy_tabs(service, spreadsheet_id, request.tabs, emit)
            self._remove_default_tab(service, spreadsheet_id, default_sheet_id, emit)
        except Exception as e:
            # The spreadsheet exists now, so every failure goes through cleanup
            message = _error_message(e)
            log.error(
                "Duplication into %s failed: %s",
                spreadsheet_id,
                message,
                exc_info=not isinstance(e, PROVIDER_ERRORS),
            )
            cleaned_up = self._cleanup(credentials, spreadsheet_id, emit)
            raise DuplicationError(message, spreadsheet_id=spreadsheet_id, cleaned_up=cleaned_up) from e

        emit("Spreadsheet ready")
        return DuplicationResult(
            spreadsheet_id=spreadsheet_id,
            url=spreadsheet_url(spreadsheet_id),
            copied=copied,
            skipped=skipped,
        )

    def _template_tabs(self, service) -> dict[str, int]:
        """Template tab title -> sheetId. First tab wins on duplicate titles."""
        meta = service.spreadsheets().get(
            spreadsheetId=self.template_id,
            fields="sheets.properties(sheetId,title)",
        ).execute()
        tabs: dict[str, int] = {}
        for s in meta.get("sheets", []):
            props = s["properties"]
            tabs.setdefault(props["title"], props["sheetId"])
        return tabs

    def _copy_tabs(self, service, spreadsheet_id: str, names: list[str], emit) -> tuple[list[str], list[str]]:
        if not names:
            return [], []

        # Template is fixed for the whole call, one listing is enough
        template_tabs = self._template_tabs(service)

        mappings: list[TabMapping] = []
        skipped: list[str] = []
        for name in names:
            template_sheet_id = template_tabs.get(name)
            if template_sheet_id is None:
                log.info("Tab '%s' not in template %s, skipping", name, self.template_id)
                emit(f"Tab '{name}' not found in template, skipped")
                skipped.append(name)
                continue

            emit(f"Copying tab '{name}'...")
            copy = service.spreadsheets().sheets().copyTo(
                spreadsheetId=self.template_id,
                sheetId=template_sheet_id,
                body={"destinationSpreadsheetId": spreadsheet_id},
            ).execute()
            mappings.append(TabMapping(name, template_sheet_id, copy["sheetId"]))

        # Copies arrive as "Copy of X", put the template names back
        if mappings:
            emit(f"Renaming {len(mappings)} copied tab(s)...")
            requests = [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": m.copy_sheet_id, "title": m.name},
                        "fields": "title",
                    }
                }
                for m in mappings
            ]
            service.spreadsheets().batchUpdate(
                spreadsheetId=spreadsheet_id,
                body={"requests": requests},
            ).execute()

        return [m.name for m in mappings], skipped

    def _remove_default_tab(self, service, spreadsheet_id: str, default_sheet_id: int, emit) -> None:
        current = service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields="sheets.properties.sheetId",
        ).execute()
        # A spreadsheet cannot lose its last tab
        if len(current.get("sheets", [])) <= 1:
            return

        emit("Removing default tab...")
        service.spreadsheets().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"requests": [{"deleteSheet": {"sheetId": default_sheet_id}}]},
        ).execute()

    def _cleanup(self, credentials, spreadsheet_id: str, emit) -> bool:
        """Best-effort delete of a half built spreadsheet. True if deleted."""
        if not self.cleanup_on_failure:
            log.warning("Leaving partial spreadsheet %s in place", spreadsheet_id)
            return False

        emit("Deleting partially created spreadsheet...")
        try:
            drive = self._drive_factory(credentials)
            drive.files().delete(fileId=spreadsheet_id).execute()
        except Exception as e:
            log.warning("Could not delete partial spreadsheet %s: %s", spreadsheet_id, _error_message(e))
            return False

        log.info("Deleted partial spreadsheet %s", spreadsheet_id)
        return True
