"""Shared fixtures: in-memory Google Sheets / Drive services and an API client."""

import json
import os

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

import httplib2
import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError

TEMPLATE_ID = "template-123"
TEMPLATE_TABS = {"Summary": 101, "Detail": 102, "Notes": 103}


def http_error(status: int, message: str) -> HttpError:
    resp = httplib2.Response({"status": status})
    content = json.dumps({"error": {"code": status, "message": message}}).encode()
    return HttpError(resp, content)


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeSheetsService:
    """Keeps spreadsheets as {id: [{"sheetId": int, "title": str}, ...]}.

    fail_on maps an operation name ("create", "get_template", "copy",
    "rename", "get", "delete_sheet") to the HttpError it should raise.
    """

    def __init__(self, template_id=TEMPLATE_ID, template_tabs=None):
        self.template_id = template_id
        tabs = TEMPLATE_TABS if template_tabs is None else template_tabs
        self.docs = {template_id: [{"sheetId": i, "title": t} for t, i in tabs.items()]}
        self.calls = []
        self.fail_on = {}
        self._next_doc = 1
        self._next_sheet = 1000

    # googleapiclient resource chain
    def spreadsheets(self):
        return self

    def sheets(self):
        return self

    def _record(self, op):
        self.calls.append(op)
        if op in self.fail_on:
            raise self.fail_on[op]

    def create(self, body, fields=None):
        def run():
            self._record("create")
            doc_id = f"ss-{self._next_doc}"
            self._next_doc += 1
            self.docs[doc_id] = [{"sheetId": 0, "title": "Sheet1"}]
            return {
                "spreadsheetId": doc_id,
                "properties": {"title": body["properties"]["title"]},
                "sheets": [{"properties": dict(s)} for s in self.docs[doc_id]],
            }

        return _Call(run)

    def get(self, spreadsheetId, fields=None):
        def run():
            self._record("get_template" if spreadsheetId == self.template_id else "get")
            return {"sheets": [{"properties": dict(s)} for s in self.docs[spreadsheetId]]}

        return _Call(run)

    def copyTo(self, spreadsheetId, sheetId, body):
        def run():
            self._record("copy")
            source = next(s for s in self.docs[spreadsheetId] if s["sheetId"] == sheetId)
            new = {"sheetId": self._next_sheet, "title": f"Copy of {source['title']}"}
            self._next_sheet += 1
            self.docs[body["destinationSpreadsheetId"]].append(new)
            return dict(new)

        return _Call(run)

    def batchUpdate(self, spreadsheetId, body):
        def run():
            tabs = self.docs[spreadsheetId]
            for req in body["requests"]:
                if "updateSheetProperties" in req:
                    self._record("rename")
                    props = req["updateSheetProperties"]["properties"]
                    tab = next(s for s in tabs if s["sheetId"] == props["sheetId"])
                    tab["title"] = props["title"]
                elif "deleteSheet" in req:
                    self._record("delete_sheet")
                    if len(tabs) == 1:
                        raise http_error(400, "You can't remove all the sheets in a document.")
                    sheet_id = req["deleteSheet"]["sheetId"]
                    self.docs[spreadsheetId] = [s for s in tabs if s["sheetId"] != sheet_id]
            self.calls.append("batchUpdate")
            return {"spreadsheetId": spreadsheetId}

        return _Call(run)

    def titles(self, doc_id):
        return [s["title"] for s in self.docs[doc_id]]


class FakeDriveService:
    def __init__(self, sheets: FakeSheetsService):
        self._sheets = sheets
        self.deleted = []
        self.error = None

    def files(self):
        return self

    def delete(self, fileId):
        def run():
            if self.error:
                raise self.error
            self._sheets.docs.pop(fileId)
            self.deleted.append(fileId)
            return ""

        return _Call(run)


@pytest.fixture
def sheets_service():
    return FakeSheetsService()


@pytest.fixture
def drive_service(sheets_service):
    return FakeDriveService(sheets_service)


@pytest.fixture
def duplicator(sheets_service, drive_service):
    from app.sheets.duplicator import SheetDuplicator

    return SheetDuplicator(
        TEMPLATE_ID,
        sheets_factory=lambda creds: sheets_service,
        drive_factory=lambda creds: drive_service,
    )


@pytest.fixture
def user_store(tmp_path):
    from app.users import UserStore

    return UserStore(tmp_path / "users.json")


@pytest.fixture
def client(user_store, duplicator):
    """API client with fake Google services; not logged in."""
    from app import main

    main.app.dependency_overrides[main.get_user_store] = lambda: user_store
    main.app.dependency_overrides[main.get_duplicator] = lambda: duplicator
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def logged_in_client(client, user_store):
    """API client whose caller is an authenticated user."""
    from app import main

    user = user_store.upsert_login(
        google_id="g-1",
        display_name="Test User",
        access_token="test-access-token",
        refresh_token="test-refresh-token",
        expiry=None,
    )
    main.app.dependency_overrides[main.get_current_user] = lambda: user
    return client
