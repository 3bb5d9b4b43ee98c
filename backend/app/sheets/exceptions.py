"""Spreadsheet duplication exceptions."""


class DuplicationError(Exception):
    """Raised when a Google API call fails while duplicating template tabs.

    spreadsheet_id is set once the new spreadsheet exists. cleaned_up tells
    whether that partial spreadsheet was deleted again.
    """

    def __init__(self, message: str, spreadsheet_id: str | None = None, cleaned_up: bool = False):
        self.message = message
        self.spreadsheet_id = spreadsheet_id
        self.cleaned_up = cleaned_up
        super().__init__(message)

    @property
    def orphaned(self) -> bool:
        return self.spreadsheet_id is not None and not self.cleaned_up
