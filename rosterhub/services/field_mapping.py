"""
Header -> canonical field mapping for user CSVs.

Exports from the external registration platform use English headers
("Parent guardian email", "Team name(s)", ...); hand-made sheets often use
Spanish ones. Each header is lower-cased, trimmed and tested against
FIELD_PATTERNS in order; the first field with a matching pattern wins.
Order matters: more specific fields (guardian email) sit above the generic
ones (email) they would otherwise be swallowed by.
"""

from __future__ import annotations

from rosterhub.core.errors import InvalidMapping

IGNORED_FIELD = "ignore"

# (field, substring patterns, exact patterns)
FIELD_PATTERNS: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    ("parent_email", ("parent guardian email", "parent_email", "guardian email", "tutor email", "email tutor"), ()),
    ("parent_name", ("parent guardian name", "parent_name", "guardian name", "tutor"), ()),
    ("tg_id", ("participant id", "participant_id", "mentor id", "mentor_id", "tg_id", "technovation_id"), ()),
    ("email", ("email", "e-mail", "correo"), ("mail",)),
    ("team_division", ("team division", "division", "división", "categoría", "category"), ()),
    ("team_name", ("team name", "team_name", "equipo"), ("team",)),
    ("first_name", ("first name", "first_name", "firstname", "nombre"), ()),
    ("last_name", ("last name", "last_name", "lastname", "surname", "apellido"), ()),
    ("phone", ("phone", "telefono", "teléfono", "mobile"), ("tel",)),
    ("profile_type", ("profile type", "profile_type"), ("role", "rol")),
    ("school_name", ("school", "colegio", "centro", "institución"), ()),
    ("company_name", ("company", "empresa"), ()),
    ("city", ("city", "ciudad", "localidad"), ()),
    ("state", ("state", "comunidad", "provincia", "region"), ()),
    ("age", (), ("age", "edad")),
    ("parental_consent", ("parental consent", "consentimiento parental"), ()),
    ("media_consent", ("media consent", "image consent", "consentimiento medios"), ()),
    ("signed_up_at", ("signed up", "signup date", "registration date", "fecha registro"), ()),
]

CANONICAL_FIELDS: tuple[str, ...] = tuple(field for field, _, _ in FIELD_PATTERNS)


def normalize_header(header: str) -> str:
    return header.strip().lower()


def match_header(header: str) -> str:
    h = normalize_header(header)
    if not h:
        return IGNORED_FIELD
    for field, contains, exact in FIELD_PATTERNS:
        if h in exact or any(p in h for p in contains):
            return field
    return IGNORED_FIELD


def auto_map_headers(headers: list[str]) -> dict[str, str]:
    """header -> canonical field (or IGNORED_FIELD), in header order."""
    return {header: match_header(header) for header in headers}


def apply_overrides(mapping: dict[str, str], overrides: dict[str, str] | None) -> dict[str, str]:
    """Operator choices always beat the heuristic."""
    if not overrides:
        return dict(mapping)

    result = dict(mapping)
    for header, field in overrides.items():
        if header not in result:
            raise InvalidMapping(f"Unknown column in mapping: {header!r}")
        if field != IGNORED_FIELD and field not in CANONICAL_FIELDS:
            raise InvalidMapping(f"Unknown field in mapping: {field!r}")
        result[header] = field
    return result


def field_columns(mapping: dict[str, str]) -> dict[str, str]:
    """
    canonical field -> source header.

    If two headers are mapped to the same field the later one wins. This is
    known and left alone: the preview shows the mapping back to the operator.
    """
    columns: dict[str, str] = {}
    for header, field in mapping.items():
        if field != IGNORED_FIELD:
            columns[field] = header
    return columns


def has_email_column(mapping: dict[str, str]) -> bool:
    return "email" in mapping.values()
