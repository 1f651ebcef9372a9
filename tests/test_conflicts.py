import pytest

from rosterhub.core.errors import InvalidOverride
from rosterhub.services.conflicts import (
    ACTION_IMPORT,
    ACTION_SKIP,
    ACTION_UPDATE,
    ALREADY_ACTIVE,
    ALREADY_IN_WHITELIST,
    DUPLICATE_IN_BATCH,
    PARENT_EMAIL_MATCH,
    classify_records,
)
from rosterhub.services.field_mapping import auto_map_headers
from rosterhub.services.ingest import read_rows
from rosterhub.services.records import build_source_records
from tests.helpers import create_profile, create_whitelist_entry


def records_from(*lines):
    headers, rows = read_rows("\n".join(lines) + "\n")
    return build_source_records(rows, auto_map_headers(headers))


def test_in_file_duplicates(db_session):
    records = records_from("Email,First name", "a@x.org,Ana", "A@X.org,Ana again", "b@x.org,Bea")
    result = classify_records(db_session, records)

    assert list(result.conflicts) == [1]
    conflict = result.conflicts[1]
    assert conflict.conflict_type == DUPLICATE_IN_BATCH
    assert conflict.sibling_rows == [0, 1]
    assert conflict.action == ACTION_SKIP
    assert result.counts == {
        "total": 3,
        "new": 2,
        "in_whitelist": 0,
        "active": 0,
        "duplicates": 1,
        "parent_email": 0,
        "invalid": 0,
    }


def test_verified_profile_is_already_active_and_pinned(db_session):
    create_profile(db_session, "a@x.org", verified=True)
    records = records_from("Email", "a@x.org", "b@x.org")
    result = classify_records(db_session, records)

    conflict = result.for_row(0)
    assert conflict.conflict_type == ALREADY_ACTIVE
    result.apply_overrides({"0": ACTION_UPDATE}, len(records))
    assert conflict.override == ACTION_UPDATE
    assert conflict.action == ACTION_SKIP
    assert result.for_row(1) is None


def test_pending_profile_and_whitelist_entry_are_in_whitelist(db_session):
    create_profile(db_session, "p@x.org", verified=False, first_name="Pat")
    create_whitelist_entry(db_session, "w@x.org", first_name="Wen", phone="555")
    records = records_from("Email", "p@x.org", "w@x.org")
    result = classify_records(db_session, records)

    assert result.for_row(0).conflict_type == ALREADY_IN_WHITELIST
    assert result.for_row(1).conflict_type == ALREADY_IN_WHITELIST
    assert result.for_row(1).action == ACTION_UPDATE
    assert result.provisional["p@x.org"].values["first_name"] == "Pat"
    assert result.provisional["w@x.org"].values["phone"] == "555"
    assert result.provisional["w@x.org"].profile_id is None


def test_whitelist_entry_linked_to_active_profile_is_active(db_session):
    profile = create_profile(db_session, "primary@x.org", verified=True)
    create_whitelist_entry(db_session, "alias@x.org", matched_profile_id=profile.id)

    result = classify_records(db_session, records_from("Email", "alias@x.org"))
    assert result.for_row(0).conflict_type == ALREADY_ACTIVE


def test_secondary_email_matches_profile(db_session):
    create_profile(db_session, "main@x.org", verified=True, tg_email="tg@x.org")
    result = classify_records(db_session, records_from("Email", "tg@x.org"))
    assert result.for_row(0).conflict_type == ALREADY_ACTIVE


def test_one_conflict_per_row(db_session):
    create_profile(db_session, "a@x.org", verified=True)
    records = records_from("Email,Parent guardian email", "a@x.org,", "a@x.org,", "kid@x.org,a@x.org")
    result = classify_records(db_session, records)

    assert result.for_row(0).conflict_type == ALREADY_ACTIVE
    assert result.for_row(1).conflict_type == DUPLICATE_IN_BATCH
    assert result.for_row(2) is None
    assert len(result.conflicts) == 2


def test_parent_email_match_is_advisory(db_session):
    records = records_from(
        "Email,Parent guardian email",
        "kid@x.org,mum@x.org",
        "mum@x.org,",
    )
    result = classify_records(db_session, records)

    conflict = result.for_row(1)
    assert conflict.conflict_type == PARENT_EMAIL_MATCH
    assert conflict.sibling_rows == [0]
    assert conflict.action == ACTION_IMPORT
    assert result.counts["new"] == 2
    assert result.counts["parent_email"] == 1


def test_invalid_rows_are_not_classified(db_session):
    records = records_from("Email", "not-an-email", ",")
    result = classify_records(db_session, records)
    assert result.conflicts == {}
    assert result.counts["invalid"] == 1
    assert result.counts["new"] == 0


def test_lookup_pages(db_session):
    for i in range(5):
        create_profile(db_session, f"user{i}@x.org", verified=True)
    records = records_from("Email", *[f"user{i}@x.org" for i in range(5)])
    result = classify_records(db_session, records, page_size=2)
    assert result.counts["active"] == 5


def test_overrides_validation(db_session):
    records = records_from("Email", "a@x.org", "a@x.org")
    result = classify_records(db_session, records)

    with pytest.raises(InvalidOverride):
        result.apply_overrides({"one": ACTION_SKIP}, len(records))
    with pytest.raises(InvalidOverride):
        result.apply_overrides({"2": ACTION_SKIP}, len(records))
    with pytest.raises(InvalidOverride):
        result.apply_overrides({"1": "merge"}, len(records))

    # rows without a conflict: accepted and ignored
    result.apply_overrides({"0": ACTION_IMPORT, 1: ACTION_IMPORT}, len(records))
    assert result.for_row(0) is None
    assert result.for_row(1).action == ACTION_IMPORT
