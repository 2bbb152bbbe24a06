"""Resend integration: audience contacts, digest sends and subscriptions.

Contacts carry two properties read by the send loop:

* ``frequency``: ``daily`` or ``weekly`` (anything else counts as weekly)
* ``preference``: ``all`` or ``projects`` (anything else counts as all)
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from capturedesk.core.exceptions import UpstreamError, ValidationError
from capturedesk.core.http_client import create_client
from capturedesk.newsletter.generate import NewsletterBundle, get_jinja_env

logger = logging.getLogger(__name__)

RESEND_API_BASE = "https://api.resend.com"
CONTACTS_PAGE_SIZE = 100
FREQUENCIES = ("daily", "weekly")
PREFERENCES = ("all", "projects")

WELCOME_SUBJECT = "Welcome to {title}"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_frequency(value: Any) -> str:
    return "daily" if value == "daily" else "weekly"


def normalize_preference(value: Any) -> str:
    return "projects" if value == "projects" else "all"


def property_value(properties: Any, key: str) -> Any:
    """``properties[key]["value"]`` when present, else the bare value, else None."""
    if not isinstance(properties, dict):
        return None
    raw = properties.get(key)
    if isinstance(raw, dict):
        return raw.get("value")
    return raw


class ResendClient:
    """Minimal async client for the Resend REST API.

    Args:
        api_key: Resend API key.
        client: Optional preconfigured httpx client (tests use MockTransport).
    """

    def __init__(self, api_key: str, *, client: Optional[httpx.AsyncClient] = None):
        self._client = client or create_client(base_url=RESEND_API_BASE, token=api_key)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Mail API unreachable: {e}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise UpstreamError(
                f"Mail API error: HTTP {response.status_code} {message or ''}".strip(),
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        return payload

    async def list_contacts(self, audience_id: str) -> list[dict[str, Any]]:
        """Every contact of the audience, following ``has_more`` pagination."""
        contacts: list[dict[str, Any]] = []
        after: Optional[str] = None
        while True:
            params = {"limit": str(CONTACTS_PAGE_SIZE)}
            if after:
                params["after"] = after
            page = await self._request(
                "GET", f"/audiences/{audience_id}/contacts", params=params
            )
            batch = page.get("data") or []
            contacts.extend(batch)
            if not page.get("has_more") or not batch:
                break
            after = batch[-1].get("id")
            if not after:
                break
        return contacts

    async def get_contact(self, audience_id: str, contact_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"/audiences/{audience_id}/contacts/{contact_id}"
        )

    async def create_contact(
        self, audience_id: str, email: str, properties: dict[str, str]
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/audiences/{audience_id}/contacts",
            json={
                "email": email,
                "first_name": "",
                "last_name": "",
                "unsubscribed": False,
                "properties": properties,
            },
        )

    async def send_email(
        self, *, sender: str, to: str, subject: str, html: str, text: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/emails",
            json={"from": sender, "to": to, "subject": subject, "html": html, "text": text},
        )


@dataclass
class Recipient:
    email: str
    frequency: str
    preference: str
    unsubscribed: bool = False


@dataclass
class SendReport:
    contacts_scanned: int = 0
    eligible: int = 0
    sent: int = 0
    failed: int = 0


async def resolve_recipient(
    client: ResendClient, audience_id: str, contact: dict[str, Any]
) -> Recipient:
    """Read a contact's properties; defaults apply when the lookup fails."""
    recipient = Recipient(
        email=contact.get("email", ""),
        frequency="weekly",
        preference="all",
        unsubscribed=bool(contact.get("unsubscribed")),
    )
    try:
        details = await client.get_contact(audience_id, contact["id"])
    except UpstreamError as e:
        logger.warning(
            "Contact lookup failed, using defaults",
            extra={"contact_id": contact.get("id"), "error": str(e)},
        )
        return recipient

    data = details.get("data", details)
    properties = data.get("properties") if isinstance(data, dict) else None
    recipient.frequency = normalize_frequency(property_value(properties, "frequency"))
    recipient.preference = normalize_preference(property_value(properties, "preference"))
    return recipient


async def send_newsletter(
    client: ResendClient,
    bundle: NewsletterBundle,
    *,
    audience_id: str,
    sender: str,
) -> SendReport:
    """Send the matching variant to every subscribed contact of this cadence.

    A failed send is counted and logged; the loop carries on.
    """
    report = SendReport()
    contacts = await client.list_contacts(audience_id)
    report.contacts_scanned = len(contacts)

    recipients = []
    for contact in contacts:
        recipient = await resolve_recipient(client, audience_id, contact)
        if recipient.unsubscribed or recipient.frequency != bundle.type:
            continue
        recipients.append(recipient)
    report.eligible = len(recipients)

    for recipient in recipients:
        variant = bundle.variants[recipient.preference]
        try:
            await client.send_email(
                sender=sender,
                to=recipient.email,
                subject=bundle.subject,
                html=variant.html,
                text=variant.text,
            )
        except UpstreamError as e:
            report.failed += 1
            logger.error(
                "Newsletter send failed",
                extra={"email": recipient.email, "error": str(e)},
            )
            continue
        report.sent += 1

    logger.info(
        "Newsletter send complete",
        extra={
            "type": bundle.type,
            "subject": bundle.subject,
            "contacts_scanned": report.contacts_scanned,
            "eligible": report.eligible,
            "sent": report.sent,
            "failed": report.failed,
        },
    )
    return report


def validate_subscription(
    email: Any, frequency: Any, preference: Any = None
) -> tuple[str, str, str]:
    """Check a subscribe request.

    Returns:
        ``(email, frequency, preference)``

    Raises:
        ValidationError: On a missing field or bad value.
    """
    if not email or not frequency:
        raise ValidationError("Email and frequency are required")
    if not isinstance(email, str) or not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    if frequency not in FREQUENCIES:
        raise ValidationError("Frequency must be daily or weekly")
    if preference is None:
        preference = "all"
    if preference not in PREFERENCES:
        raise ValidationError("Preference must be all or projects")
    return email, frequency, preference


def render_welcome(
    frequency: str, preference: str, *, newsletter_title: str, site_url: str = ""
) -> dict[str, str]:
    """Subject, HTML and text of the welcome mail."""
    env = get_jinja_env()
    context = {
        "frequency": frequency,
        "preference": preference,
        "newsletter_title": newsletter_title,
        "site_url": site_url,
    }
    return {
        "subject": WELCOME_SUBJECT.format(title=newsletter_title),
        "html": env.get_template("welcome.html.j2").render(**context),
        "text": env.get_template("welcome.txt.j2").render(**context),
    }


async def subscribe(
    client: ResendClient,
    config,
    email: Any,
    frequency: Any,
    preference: Any = None,
) -> None:
    """Add a contact to the audience and send the welcome mail.

    Raises:
        ValidationError: Bad input, or the address is already subscribed.
        UpstreamError: The mail API failed.
    """
    email, frequency, preference = validate_subscription(email, frequency, preference)
    try:
        await client.create_contact(
            config.resend_audience_id,
            email,
            {"frequency": frequency, "preference": preference},
        )
    except UpstreamError as e:
        if "already exists" in str(e):
            raise ValidationError("This email is already subscribed")
        raise

    welcome = render_welcome(
        frequency,
        preference,
        newsletter_title=config.newsletter_title,
        site_url=config.site_url,
    )
    await client.send_email(
        sender=config.resend_from_email,
        to=email,
        subject=welcome["subject"],
        html=welcome["html"],
        text=welcome["text"],
    )
    logger.info("Subscriber added", extra={"frequency": frequency, "preference": preference})


def create_resend_client(config) -> ResendClient:
    """Build the client from configuration. Raises ConfigurationError if unset."""
    config.require_resend()
    return ResendClient(config.resend_api_key)
