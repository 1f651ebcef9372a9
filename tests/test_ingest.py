import pytest

from rosterhub.core.errors import (
    EmptyFile,
    FileTooLarge,
    InvalidKeyFields,
    MalformedFile,
    MissingColumns,
    RowLimitExceeded,
)
from rosterhub.services.ingest import ImportKind, export_confidence, parse_csv
from tests.helpers import csv_bytes

LIMITS = {"max_bytes": 1024 * 1024, "max_rows": 100}

EXPORT_HEADER = "Email,First name,Last name,Profile type,Participant ID,Mentor ID,Signed up,Team name(s),Parent guardian email"


def test_parses_user_file_and_flags_invalid_emails():
    parsed = parse_csv(
        csv_bytes("Email,First name", "ana@example.org,Ana", ",Nobody", "not-an-email,Bad", "bea@example.org,Bea"),
        ImportKind.USERS,
        **LIMITS,
    )
    assert parsed.headers == ["Email", "First name"]
    assert len(parsed.rows) == 4
    assert parsed.invalid_rows == [2, 3]
    assert any("2 row(s) have an empty or invalid email" in w for w in parsed.warnings)


def test_bom_and_blank_rows_are_ignored():
    content = "\ufeffEmail,First name\r\nana@example.org,Ana\r\n,\r\n\r\n".encode("utf-8")
    parsed = parse_csv(content, ImportKind.USERS, **LIMITS)
    assert parsed.headers == ["Email", "First name"]
    assert len(parsed.rows) == 1


def test_export_headers_raise_confidence_and_skip_warning():
    assert export_confidence(EXPORT_HEADER.split(",")) == 1.0
    parsed = parse_csv(csv_bytes(EXPORT_HEADER, "ana@example.org,Ana,,student,,,,,"), ImportKind.USERS, **LIMITS)
    assert parsed.warnings == []


def test_hand_made_sheet_gets_mapping_warning():
    parsed = parse_csv(csv_bytes("Correo,Nombre", "ana@example.org,Ana"), ImportKind.USERS, **LIMITS)
    assert any("column mapping" in w for w in parsed.warnings)


def test_file_too_large():
    with pytest.raises(FileTooLarge) as exc:
        parse_csv(csv_bytes("Email", "ana@example.org"), ImportKind.USERS, max_bytes=5, max_rows=10)
    assert exc.value.http_status == 413


def test_header_only_file_is_empty():
    with pytest.raises(EmptyFile):
        parse_csv(csv_bytes("Email,First name"), ImportKind.USERS, **LIMITS)


def test_row_limit():
    content = csv_bytes("Email", *[f"user{i}@example.org" for i in range(4)])
    with pytest.raises(RowLimitExceeded) as exc:
        parse_csv(content, ImportKind.USERS, max_bytes=10_000, max_rows=3)
    assert exc.value.to_detail()["rows"] == 4


def test_not_utf8_is_malformed():
    with pytest.raises(MalformedFile):
        parse_csv(b"Email\n\xff\xfe\xfa@example.org\n", ImportKind.USERS, **LIMITS)


def test_user_file_without_email_column():
    with pytest.raises(MissingColumns) as exc:
        parse_csv(csv_bytes("First name,Last name", "Ana,One"), ImportKind.USERS, **LIMITS)
    assert exc.value.names == ["Email"]


def test_team_file_missing_columns():
    with pytest.raises(MissingColumns) as exc:
        parse_csv(csv_bytes("Team ID,Name", "T1,Rocket"), ImportKind.TEAMS, **LIMITS)
    assert exc.value.names == ["Division"]


def test_team_file_rejects_bad_team_ids():
    content = csv_bytes("Team ID,Name,Division", "T1,Rocket,Junior", "T 2,Comet,Senior", ",Nameless,Senior")
    with pytest.raises(InvalidKeyFields) as exc:
        parse_csv(content, ImportKind.TEAMS, **LIMITS)
    assert exc.value.rows == [2, 3]
    assert exc.value.to_detail()["field"] == "Team ID"


def test_team_file_duplicate_ids_warn():
    content = csv_bytes("team id,name,division", "T1,Rocket,Junior", "T1,Rocket again,Junior", "T2,Comet,Senior")
    parsed = parse_csv(content, ImportKind.TEAMS, **LIMITS)
    assert len(parsed.rows) == 3
    assert parsed.warnings == ["1 duplicate Team ID(s); only the first row of each is imported"]
