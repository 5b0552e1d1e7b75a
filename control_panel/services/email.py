from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.core.settings import settings


logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 10.0


class EmailDeliveryError(Exception):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str | None = None


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


@dataclass
class ResendEmailSender:
    api_key: str
    from_email: str = settings.email_from
    reply_to: str | None = settings.email_reply_to
    timeout: float = RESEND_TIMEOUT_SECONDS

    async def send(self, message: EmailMessage) -> None:
        payload: dict[str, object] = {
            "from": self.from_email,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if self.reply_to:
            payload["reply_to"] = self.reply_to

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                RESEND_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if response.status_code >= 400:
            raise EmailDeliveryError(f"resend responded {response.status_code}: {response.text}")
        logger.info("Email sent to %s", message.to)


@dataclass
class LoggingEmailSender:
    """Used when no provider is configured: the message is logged and dropped."""

    async def send(self, message: EmailMessage) -> None:
        logger.warning("No email provider configured, skipping email to %s (%s)", message.to, message.subject)


def build_email_sender() -> EmailSender:
    if settings.resend_api_key:
        return ResendEmailSender(api_key=settings.resend_api_key)
    return LoggingEmailSender()


async def send_email_best_effort(
    sender: EmailSender,
    message: EmailMessage,
    *,
    reporter: FailureReporter = default_failure_reporter,
) -> bool:
    try:
        await sender.send(message)
    except Exception as exc:
        reporter.report("email_send", exc, recipient=message.to, subject=message.subject)
        return False
    return True


def build_super_admin_invite_email(*, recipient: str, invite_link: str, inviter_name: str) -> EmailMessage:
    safe_inviter = html.escape(inviter_name)
    safe_link = html.escape(invite_link, quote=True)
    body = (
        "<h1>You've been invited as a Super Admin</h1>"
        f"<p>{safe_inviter} has invited you to help operate the platform as a Super Admin.</p>"
        f'<p><a href="{safe_link}">Accept invitation</a></p>'
        f"<p>This invitation expires in {settings.invitation_ttl_days} days.</p>"
    )
    text = (
        f"{inviter_name} has invited you to become a Super Admin.\n\n"
        f"Accept your invitation here:\n{invite_link}\n\n"
        f"This invitation expires in {settings.invitation_ttl_days} days.\n"
    )
    return EmailMessage(
        to=recipient,
        subject="You've been invited as a Super Admin",
        html=body,
        text=text,
    )


def build_organization_invite_email(
    *,
    recipient: str,
    invite_link: str,
    organization_name: str,
    role: str,
    inviter_name: str | None = None,
    recipient_name: str | None = None,
) -> EmailMessage:
    role_label = role.replace("_", " ").title()
    inviter_text = f" by {inviter_name}" if inviter_name else ""
    html_greeting = f"<p>Hi {html.escape(recipient_name)},</p>" if recipient_name else ""
    text_greeting = f"Hi {recipient_name},\n\n" if recipient_name else ""
    body = (
        f"<h1>You're invited to join {html.escape(organization_name)}</h1>"
        f"{html_greeting}"
        f"<p>You've been invited{html.escape(inviter_text)} to join "
        f"{html.escape(organization_name)} as {html.escape(role_label)}.</p>"
        f'<p><a href="{html.escape(invite_link, quote=True)}">Accept invitation</a></p>'
    )
    text = (
        f"{text_greeting}"
        f"You've been invited{inviter_text} to join {organization_name} as {role_label}.\n\n"
        f"Accept your invitation here:\n{invite_link}\n\n"
        "If you didn't expect this invitation, you can safely ignore this email.\n"
    )
    return EmailMessage(
        to=recipient,
        subject=f"You're invited to join {organization_name}",
        html=body,
        text=text,
    )
