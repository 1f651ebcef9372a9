"""Typed rows produced from parsed CSV data. Transient: never stored on their own."""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from rosterhub.services.field_mapping import field_columns
from rosterhub.services.identity import is_valid_email, normalize_email, parse_email_list

DIVISIONS = {"beginner": "Beginner", "junior": "Junior", "senior": "Senior"}

EMPTY_MARKERS = {"", "-"}


@dataclass
class SourceRecord:
    row_index: int  # 0-based position among data rows; all cross-references use it
    raw: dict[str, str] = field(default_factory=dict, repr=False)

    email: str | None = None
    tg_id: str | None = None
    profile_type: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    company_name: str | None = None
    school_name: str | None = None
    team_name: str | None = None
    team_division: str | None = None
    parent_name: str | None = None
    parent_email: str | None = None
    city: str | None = None
    state: str | None = None
    age: int | None = None
    parental_consent: str | None = None
    media_consent: str | None = None
    signed_up_at: str | None = None

    @property
    def row_number(self) -> int:
        """1-based, as an operator counts rows below the header."""
        return self.row_index + 1

    @property
    def has_valid_email(self) -> bool:
        return bool(self.email) and is_valid_email(self.email)

    def canonical_values(self) -> dict[str, object]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("row_index", "raw")
        }


# profile columns an import writes, in export column order
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "tg_id",
    "parent_name",
    "parent_email",
    "school_name",
    "company_name",
    "city",
    "state",
    "profile_type",
)

WHITELIST_FIELDS = PROFILE_FIELDS + (
    "team_name",
    "team_division",
    "age",
    "parental_consent",
    "media_consent",
    "signed_up_at",
)


@dataclass
class TeamSourceRecord:
    row_index: int
    raw: dict[str, str] = field(default_factory=dict, repr=False)
    tg_team_id: str = ""
    name: str | None = None
    category: str | None = None  # beginner | junior | senior
    city: str | None = None
    state: str | None = None
    student_emails: list[str] = field(default_factory=list)
    mentor_emails: list[str] = field(default_factory=list)

    @property
    def row_number(self) -> int:
        return self.row_index + 1


def clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return None if value in EMPTY_MARKERS else value


def parse_age(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


def canonical_division(value: str | None) -> str | None:
    if value is None:
        return None
    return DIVISIONS.get(value.strip().lower(), value.strip())


def team_category(value: str | None) -> str | None:
    """Team file division -> teams.category (lower-case), None when unrecognized."""
    if not value:
        return None
    key = value.strip().lower()
    return key if key in DIVISIONS else None


def build_source_records(rows: list[dict[str, str]], mapping: dict[str, str]) -> list[SourceRecord]:
    columns = field_columns(mapping)
    records = []
    for index, row in enumerate(rows):
        values: dict[str, object] = {}
        for canonical, header in columns.items():
            value = clean_value(row.get(header))
            if value is None:
                continue
            if canonical in ("email", "parent_email"):
                values[canonical] = normalize_email(value)
            elif canonical == "age":
                values[canonical] = parse_age(value)
            elif canonical == "profile_type":
                values[canonical] = value.lower()
            elif canonical == "team_division":
                values[canonical] = canonical_division(value)
            else:
                values[canonical] = value
        records.append(SourceRecord(row_index=index, raw=dict(row), **values))
    return records


def _cell(row: dict[str, str], *names: str) -> str | None:
    lowered = {k.strip().lower(): v for k, v in row.items() if k is not None}
    for name in names:
        value = clean_value(lowered.get(name.lower()))
        if value is not None:
            return value
    return None


def build_team_records(rows: list[dict[str, str]]) -> list[TeamSourceRecord]:
    records = []
    for index, row in enumerate(rows):
        records.append(
            TeamSourceRecord(
                row_index=index,
                raw=dict(row),
                tg_team_id=_cell(row, "Team ID", "team_id") or "",
                name=_cell(row, "Name", "name"),
                category=team_category(_cell(row, "Division", "division")),
                city=_cell(row, "City", "city"),
                state=_cell(row, "State", "state"),
                student_emails=parse_email_list(_cell(row, "Student emails", "student_emails")),
                mentor_emails=parse_email_list(_cell(row, "Mentor emails", "mentor_emails")),
            )
        )
    return records
