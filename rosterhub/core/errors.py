"""
Error taxonomy for the roster import engine.

- ImportValidationError and subclasses: structural problems with an uploaded
  file. Raised before any job exists; routers turn them into 4xx responses.
- RowError: a single row could not be committed. Caught by the job processor,
  recorded on the job, never propagated past the row.
- JobFatalError: the job as a whole cannot continue. Sets the job to failed.
"""

from __future__ import annotations


class ImportValidationError(Exception):
    code = "invalid_file"
    http_status = 422

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class FileTooLarge(ImportValidationError):
    code = "file_too_large"
    http_status = 413

    def __init__(self, size: int, limit: int):
        super().__init__(f"File is {size} bytes, maximum allowed is {limit}")
        self.size = size
        self.limit = limit


class MalformedFile(ImportValidationError):
    code = "malformed_file"


class EmptyFile(ImportValidationError):
    code = "empty_file"

    def __init__(self, message: str = "The CSV file has no data rows"):
        super().__init__(message)


class RowLimitExceeded(ImportValidationError):
    code = "row_limit_exceeded"

    def __init__(self, rows: int, limit: int):
        super().__init__(f"The file has {rows} rows, maximum allowed is {limit}")
        self.rows = rows
        self.limit = limit

    def to_detail(self) -> dict:
        return {**super().to_detail(), "rows": self.rows, "limit": self.limit}


class MissingColumns(ImportValidationError):
    code = "missing_columns"

    def __init__(self, names: list[str]):
        super().__init__(f"Missing required column(s): {', '.join(names)}")
        self.names = list(names)

    def to_detail(self) -> dict:
        return {**super().to_detail(), "columns": self.names}


class InvalidKeyFields(ImportValidationError):
    code = "invalid_key_fields"

    def __init__(self, field: str, rows: list[int]):
        super().__init__(f"{len(rows)} row(s) have an empty or invalid {field}")
        self.field = field
        self.rows = list(rows)

    def to_detail(self) -> dict:
        return {**super().to_detail(), "field": self.field, "rows": self.rows[:50]}


class InvalidMapping(ImportValidationError):
    code = "invalid_mapping"


class RowError(Exception):
    """A row-level commit failure. The message is persisted, so keep it free of PII."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class JobFatalError(Exception):
    pass


class SourceUnavailable(JobFatalError):
    pass


class IdentityProviderUnavailable(JobFatalError):
    pass


class InvalidOverride(ImportValidationError):
    code = "invalid_override"
