"""
Identity resolution helpers shared by the classifier, planner and job processor.

Emails are keys everywhere: always pass them through ``normalize_email`` before
comparing or querying.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Union

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from rosterhub.core.errors import RowError

logger = logging.getLogger(__name__)

ROLE_MAP: dict[str, str] = {
    "student": "participant",
    "participant": "participant",
    "mentor": "mentor",
    "judge": "judge",
    "chapter_ambassador": "chapter_ambassador",
}

_EMAIL_IN_TEXT = re.compile(r"[^\s@<>\"',;]+@[^\s@<>\"',;]+")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Plausibility check only: one @, non-empty local part, dotted domain, no spaces."""
    parts = email.split("@")
    return (
        len(parts) == 2
        and len(parts[0]) > 0
        and "." in parts[1]
        and not parts[1].startswith(".")
        and not parts[1].endswith(".")
        and " " not in email
    )


def parse_email_list(cell: str | None) -> list[str]:
    """Comma-separated cell -> normalized addresses that look like emails, order kept, no repeats."""
    if not cell or not cell.strip():
        return []
    seen: list[str] = []
    for part in cell.split(","):
        email = normalize_email(part)
        if is_valid_email(email) and email not in seen:
            seen.append(email)
    return seen


def map_role(profile_type: str | None) -> str | None:
    """CSV "Profile type" -> platform role. Unknown types (and admin) map to None."""
    if not profile_type:
        return None
    key = re.sub(r"\s+", "_", profile_type.strip().lower())
    return ROLE_MAP.get(key)


def membership_type_for_role(role: str | None) -> str:
    return "mentor" if role == "mentor" else "participant"


def redact_text(text: str) -> str:
    """Strip email addresses out of free text before it is persisted or logged."""
    return _EMAIL_IN_TEXT.sub("[redacted]", text)


def mask_email(email: str) -> str:
    """a***@example.org - for log lines that need some hint of which row failed."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


# ---------------------------------------------------------------------------
# Provider results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Created:
    identity_id: uuid.UUID


@dataclass(frozen=True)
class DuplicateExists:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after: float | None = None


@dataclass(frozen=True)
class ProviderRejected:
    reason: str


CreateResult = Union[Created, DuplicateExists, RateLimited, ProviderRejected]


class IdentityProvider(Protocol):
    def create_identity(self, email: str, metadata: dict[str, Any]) -> CreateResult: ...

    def lookup_identity_by_email(self, email: str) -> uuid.UUID | None: ...


def _rate_limit_wait(base_delay: float) -> Callable[[RetryCallState], float]:
    """Exponential backoff, stretched to the provider's Retry-After when it sends one."""
    backoff = wait_exponential(multiplier=base_delay)

    def wait(retry_state: RetryCallState) -> float:
        delay = backoff(retry_state)
        result = retry_state.outcome.result()
        if result.retry_after:
            delay = max(delay, result.retry_after)
        return delay

    return wait


def create_identity_with_retry(
    provider: IdentityProvider,
    email: str,
    metadata: dict[str, Any],
    *,
    max_retries: int,
    base_delay: float,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[uuid.UUID, bool]:
    """
    Create an identity, treating "already exists" as success.

    Returns (identity_id, created). ``created`` is False when the provider
    reported a duplicate and the identity was resolved by lookup instead; a
    retried job that already created the account in an earlier run lands here.

    Rate limiting is retried up to ``max_retries`` times with exponential
    backoff (base_delay * 2**attempt). Anything else raises RowError.
    IdentityProviderUnavailable from the provider propagates untouched.
    """
    email = normalize_email(email)
    retryer = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=_rate_limit_wait(base_delay),
        retry=retry_if_result(lambda r: isinstance(r, RateLimited)),
        before_sleep=lambda rs: logger.warning(
            "Identity provider rate limited, retry %d/%d in %.2fs",
            rs.attempt_number,
            max_retries,
            rs.next_action.sleep,
        ),
        sleep=sleep,
    )
    try:
        result = retryer(provider.create_identity, email, metadata)
    except RetryError:
        raise RowError("Rate limit creating identity (details omitted)") from None

    if isinstance(result, Created):
        return result.identity_id, True

    if isinstance(result, DuplicateExists):
        existing = provider.lookup_identity_by_email(email)
        if existing is None:
            raise RowError("Identity exists without profile (details omitted)")
        logger.info("Identity %s already existed, resolved by lookup", mask_email(email))
        return existing, False

    raise RowError(f"Create identity failed: {redact_text(result.reason)}")
