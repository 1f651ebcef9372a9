"""
Identity provider clients.

The provider owns accounts; a profile row with the same id appears once an
account exists (a database trigger in production, the provider itself locally).
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx
from sqlalchemy.orm import Session, sessionmaker

from rosterhub.core.config import Settings
from rosterhub.core.errors import IdentityProviderUnavailable
from rosterhub.models.profile import Profile
from rosterhub.services.identity import (
    Created,
    CreateResult,
    DuplicateExists,
    IdentityProvider,
    ProviderRejected,
    RateLimited,
    mask_email,
    normalize_email,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = {502, 503, 504}


class LocalIdentityProvider:
    """In-database provider for development and tests: an account is a pending profile."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_identity(self, email: str, metadata: dict[str, Any]) -> CreateResult:
        email = normalize_email(email)
        db: Session = self.session_factory()
        try:
            if db.query(Profile.id).filter(Profile.email == email).first() is not None:
                return DuplicateExists()
            profile = Profile(
                id=uuid.uuid4(),
                email=email,
                profile_type=metadata.get("intended_role"),
                verification_status="pending",
            )
            db.add(profile)
            db.commit()
            return Created(profile.id)
        finally:
            db.close()

    def lookup_identity_by_email(self, email: str) -> uuid.UUID | None:
        db: Session = self.session_factory()
        try:
            row = db.query(Profile.id).filter(Profile.email == normalize_email(email)).first()
            return row[0] if row else None
        finally:
            db.close()


class SupabaseIdentityProvider:
    """Admin API client. Needs the service role key; never expose it to browsers."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        self._client.close()

    def create_identity(self, email: str, metadata: dict[str, Any]) -> CreateResult:
        payload = {"email": normalize_email(email), "email_confirm": True, "user_metadata": metadata}
        try:
            response = self._client.post(f"{self.base_url}/auth/v1/admin/users", json=payload, headers=self.headers)
        except httpx.TransportError as e:
            raise IdentityProviderUnavailable(f"Identity provider unreachable: {type(e).__name__}") from e

        if response.status_code in (200, 201):
            data = response.json()
            user = data.get("user", data)
            return Created(uuid.UUID(user["id"]))

        message = _error_message(response)
        if response.status_code == 429 or "429" in message:
            return RateLimited(retry_after=_retry_after(response))
        if response.status_code == 422 or "already been registered" in message or "already exists" in message:
            return DuplicateExists()
        if response.status_code in UNAVAILABLE_STATUSES:
            raise IdentityProviderUnavailable(f"Identity provider returned {response.status_code}")

        logger.warning("Identity creation for %s rejected with %s", mask_email(email), response.status_code)
        return ProviderRejected(f"{response.status_code} {message}")

    def lookup_identity_by_email(self, email: str) -> uuid.UUID | None:
        try:
            response = self._client.get(
                f"{self.base_url}/rest/v1/profiles",
                params={"select": "id", "email": f"eq.{normalize_email(email)}"},
                headers=self.headers,
            )
            response.raise_for_status()
        except httpx.TransportError as e:
            raise IdentityProviderUnavailable(f"Identity provider unreachable: {type(e).__name__}") from e
        except httpx.HTTPStatusError as e:
            logger.warning("Profile lookup failed with %s", e.response.status_code)
            return None

        rows = response.json()
        return uuid.UUID(rows[0]["id"]) if rows else None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("msg") or data.get("message") or data.get("error_description") or data.get("error") or "")
    return ""


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def get_identity_provider(settings: Settings, session_factory: sessionmaker) -> IdentityProvider:
    if settings.IDENTITY_PROVIDER == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("IDENTITY_PROVIDER=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        return SupabaseIdentityProvider(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, timeout=settings.HTTP_TIMEOUT_SECONDS
        )
    return LocalIdentityProvider(session_factory)
