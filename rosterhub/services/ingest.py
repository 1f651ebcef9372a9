"""
CSV ingestion: bytes -> headers + rows, with the structural checks that must
pass before anything else looks at the file. Pure; no database access.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from enum import Enum

from rosterhub.core.errors import (
    EmptyFile,
    FileTooLarge,
    InvalidKeyFields,
    MalformedFile,
    MissingColumns,
    RowLimitExceeded,
)
from rosterhub.services.field_mapping import auto_map_headers, has_email_column, normalize_header
from rosterhub.services.identity import is_valid_email, normalize_email


class ImportKind(str, Enum):
    USERS = "users"
    TEAMS = "teams"


REQUIRED_TEAM_COLUMNS = ("Team ID", "Name", "Division")

TEAM_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# headers typical of the external registration platform export
EXPORT_MARKERS = ("profile type", "participant id", "mentor id", "signed up", "team name(s)", "parent guardian email")
EXPORT_CONFIDENCE_THRESHOLD = 0.5


@dataclass
class ParsedCSV:
    kind: ImportKind
    headers: list[str]
    rows: list[dict[str, str]]
    warnings: list[str] = field(default_factory=list)
    invalid_rows: list[int] = field(default_factory=list)  # 1-based row numbers with unusable keys


def decode_csv(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedFile(f"File is not valid UTF-8 text (byte {e.start})")


def read_rows(text: str) -> tuple[list[str], list[dict[str, str]]]:
    try:
        reader = csv.DictReader(io.StringIO(text, newline=""))
        headers = [h.strip() for h in (reader.fieldnames or [])]
        reader.fieldnames = headers
        rows = []
        for row in reader:
            row.pop(None, None)  # overflow cells past the last header
            values = {k: (v or "") for k, v in row.items()}
            if not any(v.strip() for v in values.values()):
                continue
            rows.append(values)
    except csv.Error as e:
        raise MalformedFile(f"Could not parse CSV: {e}")
    return headers, rows


def export_confidence(headers: list[str]) -> float:
    normalized = {normalize_header(h) for h in headers}
    hits = sum(1 for marker in EXPORT_MARKERS if marker in normalized)
    return hits / len(EXPORT_MARKERS)


def parse_csv(content: bytes, kind: ImportKind, *, max_bytes: int, max_rows: int) -> ParsedCSV:
    if len(content) > max_bytes:
        raise FileTooLarge(len(content), max_bytes)

    headers, rows = read_rows(decode_csv(content))
    if not rows:
        raise EmptyFile()
    if len(rows) > max_rows:
        raise RowLimitExceeded(len(rows), max_rows)

    parsed = ParsedCSV(kind=kind, headers=headers, rows=rows)
    if kind == ImportKind.TEAMS:
        _check_team_file(parsed)
    else:
        _check_user_file(parsed)
    return parsed


def _check_user_file(parsed: ParsedCSV) -> None:
    if not has_email_column(auto_map_headers(parsed.headers)):
        raise MissingColumns(["Email"])

    if export_confidence(parsed.headers) < EXPORT_CONFIDENCE_THRESHOLD:
        parsed.warnings.append(
            "Column names do not look like a registration platform export; check the column mapping"
        )

    mapping = auto_map_headers(parsed.headers)
    email_header = [h for h, f in mapping.items() if f == "email"][-1]
    for number, row in enumerate(parsed.rows, start=1):
        email = normalize_email(row.get(email_header))
        if not email or not is_valid_email(email):
            parsed.invalid_rows.append(number)
    if parsed.invalid_rows:
        parsed.warnings.append(f"{len(parsed.invalid_rows)} row(s) have an empty or invalid email and will not be imported")


def _check_team_file(parsed: ParsedCSV) -> None:
    present = {normalize_header(h) for h in parsed.headers}
    missing = [c for c in REQUIRED_TEAM_COLUMNS if c.lower() not in present]
    if missing:
        raise MissingColumns(missing)

    team_id_header = next(h for h in parsed.headers if normalize_header(h) == "team id")
    bad_rows = [
        number
        for number, row in enumerate(parsed.rows, start=1)
        if not TEAM_ID_RE.match((row.get(team_id_header) or "").strip())
    ]
    if bad_rows:
        raise InvalidKeyFields("Team ID", bad_rows)

    seen: set[str] = set()
    duplicates = 0
    for row in parsed.rows:
        team_id = row[team_id_header].strip()
        if team_id in seen:
            duplicates += 1
        seen.add(team_id)
    if duplicates:
        parsed.warnings.append(f"{duplicates} duplicate Team ID(s); only the first row of each is imported")
