"""Completion summary for the operator who submitted an import. Best-effort only."""

from __future__ import annotations

import html
import logging
from typing import Any, Protocol

import httpx

from rosterhub.core.config import Settings

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"
MAX_LISTED_ERRORS = 20


class Notifier(Protocol):
    def send_summary(self, admin_email: str, summary: dict[str, Any], errors: list[dict[str, Any]]) -> None: ...


def build_summary_email(summary: dict[str, Any], errors: list[dict[str, Any]]) -> tuple[str, str]:
    """(subject, html body). Every interpolated value is escaped."""
    new = summary.get("records_new", 0)
    updated = summary.get("records_updated", 0)
    activated = summary.get("records_activated", 0)
    skipped = summary.get("records_skipped", 0)
    total_errors = summary.get("error_count", len(errors))
    nothing_changed = new + updated + activated == 0 and skipped > 0

    if nothing_changed:
        subject = "Import completed - no changes detected"
    else:
        subject = f"Import completed - {new} new, {updated} updated"

    items = [
        ("New users created", new),
        ("Users updated", updated),
        ("Users activated (pending to verified)", activated),
        ("Unchanged (skipped)", skipped),
        ("Duplicate emails in file", summary.get("duplicates", 0)),
        ("Teams created", summary.get("teams_created", 0)),
        ("Errors", total_errors),
    ]
    parts = ["<h2>Import results</h2>", "<ul>"]
    parts += [f"<li><strong>{html.escape(label)}:</strong> {html.escape(str(value))}</li>" for label, value in items]
    parts.append("</ul>")

    if errors:
        parts.append("<h3>Errors</h3><ul>")
        for error in errors[:MAX_LISTED_ERRORS]:
            row = error.get("row")
            prefix = f"Row {row}: " if row else ""
            parts.append(f"<li>{html.escape(prefix + str(error.get('reason', '')))}</li>")
        parts.append("</ul>")
        if total_errors > MAX_LISTED_ERRORS:
            parts.append(f"<p>... and {total_errors - MAX_LISTED_ERRORS} more errors</p>")

    if nothing_changed:
        parts.append("<p>No changes detected: every record is already up to date.</p>")

    return subject, "\n".join(parts)


class LogNotifier:
    def send_summary(self, admin_email: str, summary: dict[str, Any], errors: list[dict[str, Any]]) -> None:
        subject, _ = build_summary_email(summary, errors)
        logger.info("Import summary (no email channel configured): %s", subject)


class BrevoNotifier:
    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self._client = client or httpx.Client(timeout=timeout)

    def send_summary(self, admin_email: str, summary: dict[str, Any], errors: list[dict[str, Any]]) -> None:
        subject, body = build_summary_email(summary, errors)
        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": admin_email}],
            "subject": subject,
            "htmlContent": body,
        }
        try:
            response = self._client.post(
                BREVO_SEND_URL,
                json=payload,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
            )
            response.raise_for_status()
            logger.info("Import summary email sent")
        except httpx.HTTPError as e:
            logger.error("Failed to send import summary email: %s", type(e).__name__)


def get_notifier(settings: Settings) -> Notifier:
    if settings.BREVO_API_KEY:
        return BrevoNotifier(
            settings.BREVO_API_KEY,
            settings.BREVO_SENDER_EMAIL,
            settings.BREVO_SENDER_NAME,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    return LogNotifier()
