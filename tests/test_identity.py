import json
import uuid

import httpx
import pytest

from rosterhub.core.errors import IdentityProviderUnavailable, RowError
from rosterhub.models.profile import Profile
from rosterhub.services.identity import (
    Created,
    DuplicateExists,
    ProviderRejected,
    RateLimited,
    create_identity_with_retry,
    is_valid_email,
    map_role,
    mask_email,
    membership_type_for_role,
    normalize_email,
    parse_email_list,
    redact_text,
)
from rosterhub.services.identity_provider import LocalIdentityProvider, SupabaseIdentityProvider
from tests.helpers import SleepRecorder, create_profile


class ScriptedProvider:
    def __init__(self, results, lookup=None):
        self.results = list(results)
        self.lookup = lookup
        self.calls = []

    def create_identity(self, email, metadata):
        self.calls.append((email, metadata))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def lookup_identity_by_email(self, email):
        return self.lookup


def test_email_helpers():
    assert normalize_email("  Ana@Example.ORG ") == "ana@example.org"
    assert normalize_email(None) == ""
    assert is_valid_email("ana@example.org")
    assert not is_valid_email("ana@example")
    assert not is_valid_email("ana@@example.org")
    assert not is_valid_email("@example.org")
    assert not is_valid_email("ana smith@example.org")
    assert parse_email_list(" A@x.org, b@x.org ,junk, a@x.org ") == ["a@x.org", "b@x.org"]
    assert parse_email_list(None) == []
    assert parse_email_list("foo@, @bar, a@b, ok@x.org") == ["ok@x.org"]


def test_role_mapping():
    assert map_role("Student") == "participant"
    assert map_role("mentor") == "mentor"
    assert map_role("Chapter Ambassador") == "chapter_ambassador"
    assert map_role("admin") is None
    assert map_role(None) is None
    assert membership_type_for_role("mentor") == "mentor"
    assert membership_type_for_role("judge") == "participant"


def test_redaction():
    assert redact_text("User ana@example.org already exists") == "User [redacted] already exists"
    assert mask_email("ana@example.org") == "a***@example.org"
    assert mask_email("broken") == "***"


def test_retry_backs_off_exponentially_then_succeeds():
    identity_id = uuid.uuid4()
    provider = ScriptedProvider([RateLimited(), RateLimited(), Created(identity_id)])
    sleeper = SleepRecorder()

    result = create_identity_with_retry(
        provider, "Ana@Example.org", {"intended_role": "participant"}, max_retries=3, base_delay=0.1, sleep=sleeper
    )

    assert result == (identity_id, True)
    assert sleeper.calls == [0.1, 0.2]
    assert provider.calls[0] == ("ana@example.org", {"intended_role": "participant"})


def test_retry_honors_retry_after():
    provider = ScriptedProvider([RateLimited(retry_after=5.0), Created(uuid.uuid4())])
    sleeper = SleepRecorder()
    create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1, sleep=sleeper)
    assert sleeper.calls == [5.0]


def test_retry_gives_up_after_max_retries():
    provider = ScriptedProvider([RateLimited()] * 4)
    sleeper = SleepRecorder()
    with pytest.raises(RowError) as exc:
        create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1, sleep=sleeper)
    assert exc.value.reason == "Rate limit creating identity (details omitted)"
    assert len(provider.calls) == 4
    assert sleeper.calls == [0.1, 0.2, 0.4]


def test_retry_uses_retry_after_only_when_longer():
    provider = ScriptedProvider([RateLimited(retry_after=0.05), RateLimited(), Created(uuid.uuid4())])
    sleeper = SleepRecorder()
    create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1, sleep=sleeper)
    assert sleeper.calls == [0.1, 0.2]


def test_unavailable_provider_is_not_retried():
    provider = ScriptedProvider([IdentityProviderUnavailable("Identity provider unreachable")])
    sleeper = SleepRecorder()
    with pytest.raises(IdentityProviderUnavailable):
        create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1, sleep=sleeper)
    assert len(provider.calls) == 1
    assert sleeper.calls == []


def test_duplicate_resolves_by_lookup():
    existing = uuid.uuid4()
    provider = ScriptedProvider([DuplicateExists()], lookup=existing)
    assert create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1) == (existing, False)


def test_duplicate_without_lookup_result_is_row_error():
    provider = ScriptedProvider([DuplicateExists()], lookup=None)
    with pytest.raises(RowError):
        create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1)


def test_rejection_reason_is_redacted():
    provider = ScriptedProvider([ProviderRejected("400 invalid address a@x.org")])
    with pytest.raises(RowError) as exc:
        create_identity_with_retry(provider, "a@x.org", {}, max_retries=3, base_delay=0.1)
    assert exc.value.reason == "Create identity failed: 400 invalid address [redacted]"


def test_local_provider_creates_pending_profile(db_session, session_factory):
    provider = LocalIdentityProvider(session_factory)

    result = provider.create_identity("New@Example.org", {"intended_role": "mentor"})
    assert isinstance(result, Created)

    profile = db_session.get(Profile, result.identity_id)
    assert profile.email == "new@example.org"
    assert profile.verification_status == "pending"
    assert profile.profile_type == "mentor"

    assert isinstance(provider.create_identity("new@example.org", {}), DuplicateExists)
    assert provider.lookup_identity_by_email("NEW@example.org") == result.identity_id
    assert provider.lookup_identity_by_email("nobody@example.org") is None


def test_local_provider_sees_existing_profiles(db_session, session_factory):
    p = create_profile(db_session, "old@example.org", verified=True)
    provider = LocalIdentityProvider(session_factory)
    assert isinstance(provider.create_identity("old@example.org", {}), DuplicateExists)
    assert provider.lookup_identity_by_email("old@example.org") == p.id


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

def _supabase(handler) -> SupabaseIdentityProvider:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SupabaseIdentityProvider("https://project.example.co/", "service-key", client=client)


def test_supabase_create_sends_confirmed_user():
    identity_id = uuid.uuid4()
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": str(identity_id), "email": "a@x.org"})

    result = _supabase(handler).create_identity("A@x.org", {"intended_role": "participant"})

    assert result == Created(identity_id)
    assert seen["url"] == "https://project.example.co/auth/v1/admin/users"
    assert seen["auth"] == "Bearer service-key"
    assert seen["body"] == {
        "email": "a@x.org",
        "email_confirm": True,
        "user_metadata": {"intended_role": "participant"},
    }


def test_supabase_create_accepts_wrapped_user():
    identity_id = uuid.uuid4()
    provider = _supabase(lambda request: httpx.Response(201, json={"user": {"id": str(identity_id)}}))
    assert provider.create_identity("a@x.org", {}) == Created(identity_id)


@pytest.mark.parametrize(
    "response, expected",
    [
        (httpx.Response(422, json={"msg": "A user with this email address has already been registered"}), DuplicateExists()),
        (httpx.Response(400, json={"message": "User already exists"}), DuplicateExists()),
        (httpx.Response(429, json={"msg": "Too many requests"}, headers={"Retry-After": "2"}), RateLimited(2.0)),
        (httpx.Response(429, text="slow down"), RateLimited(None)),
        (httpx.Response(400, json={"msg": "Unable to validate email address"}), ProviderRejected("400 Unable to validate email address")),
    ],
)
def test_supabase_create_classifies_responses(response, expected):
    assert _supabase(lambda request: response).create_identity("a@x.org", {}) == expected


@pytest.mark.parametrize("status_code", [502, 503, 504])
def test_supabase_gateway_errors_are_fatal(status_code):
    provider = _supabase(lambda request: httpx.Response(status_code, text="upstream down"))
    with pytest.raises(IdentityProviderUnavailable):
        provider.create_identity("a@x.org", {})


def test_supabase_transport_error_is_fatal():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IdentityProviderUnavailable):
        _supabase(handler).create_identity("a@x.org", {})


def test_supabase_lookup():
    identity_id = uuid.uuid4()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rest/v1/profiles"
        assert request.url.params["email"] == "eq.a@x.org"
        return httpx.Response(200, json=[{"id": str(identity_id)}])

    assert _supabase(handler).lookup_identity_by_email("A@x.org") == identity_id
    assert _supabase(lambda request: httpx.Response(200, json=[])).lookup_identity_by_email("a@x.org") is None
    assert _supabase(lambda request: httpx.Response(404, json={})).lookup_identity_by_email("a@x.org") is None
