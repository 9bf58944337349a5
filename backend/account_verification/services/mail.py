"""Composing verification emails and handing them to a mail transport."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from typing import Protocol

from account_verification.core.config import Settings
from account_verification.core.exceptions import DeliveryPermanentFailure, DeliveryTransientFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str
    html_body: str


class MailTransport(Protocol):
    def send(self, to: str, subject: str, body: str, *, html_body: str | None = None) -> None:
        """Deliver one message or raise a ``DeliveryException`` subclass."""
        ...


def _wrap_email_html(*, title: str, intro: str, content: str, footer: str) -> str:
    return f"""\
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>{escape(title)}</title>
  </head>
  <body style="margin:0;padding:0;background:#f3f6f8;font-family:Arial,sans-serif;color:#0f172a;">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="padding:24px 12px;">
      <tr>
        <td align="center">
          <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="max-width:620px;background:#ffffff;border-radius:14px;border:1px solid #e2e8f0;">
            <tr>
              <td style="padding:20px 24px;background:#1d4ed8;color:#ffffff;">
                <h1 style="margin:0;font-size:20px;line-height:1.3;">{escape(title)}</h1>
              </td>
            </tr>
            <tr>
              <td style="padding:24px;">
                <p style="margin:0 0 14px;font-size:15px;line-height:1.6;">{escape(intro)}</p>
                {content}
              </td>
            </tr>
            <tr>
              <td style="padding:16px 24px;background:#f8fafc;border-top:1px solid #e2e8f0;">
                <p style="margin:0;font-size:12px;line-height:1.6;color:#475569;">{escape(footer)}</p>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""


def _cta_button(label: str, href: str) -> str:
    safe_label = escape(label)
    safe_href = escape(href, quote=True)
    return (
        '<p style="margin:20px 0;">'
        f'<a href="{safe_href}" '
        'style="display:inline-block;background:#1d4ed8;color:#ffffff;text-decoration:none;'
        'padding:12px 18px;border-radius:8px;font-weight:600;font-size:14px;">'
        f"{safe_label}</a></p>"
    )


def build_verification_email(settings: Settings, *, email: str, token: str) -> RenderedEmail:
    link = settings.verification_url(token)
    hours = settings.VERIFICATION_TOKEN_TTL_HOURS
    subject = f"Verify your {settings.APP_NAME} email address"
    body = (
        "Hello,\n\n"
        f"Please confirm that {email} is your email address by opening the link below.\n\n"
        f"{link}\n\n"
        f"This link expires in {hours} hours and can only be used once.\n\n"
        "If you did not create an account, you can ignore this email."
    )
    html_content = (
        '<p style="margin:0 0 12px;font-size:14px;color:#334155;">Hello,</p>'
        '<p style="margin:0 0 16px;font-size:14px;color:#334155;line-height:1.6;">'
        f"Please confirm that {escape(email)} is your email address.</p>"
        f"{_cta_button('Verify my email', link)}"
        '<p style="margin:0;font-size:12px;color:#64748b;line-height:1.6;">'
        f"If the button does not work, copy this link:<br>{escape(link)}</p>"
    )
    html_body = _wrap_email_html(
        title="Email verification",
        intro=f"This link expires in {hours} hours and can only be used once.",
        content=html_content,
        footer="If you did not create an account, you can ignore this email.",
    )
    return RenderedEmail(subject=subject, body=body, html_body=html_body)


class SmtpMailTransport:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _message(self, to: str, subject: str, body: str, html_body: str | None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.SMTP_FROM
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        if html_body:
            message.add_alternative(html_body, subtype="html")
        return message

    def send(self, to: str, subject: str, body: str, *, html_body: str | None = None) -> None:
        if not self.settings.smtp_ready:
            raise DeliveryPermanentFailure("smtp_not_configured")

        message = self._message(to, subject, body, html_body)
        try:
            with smtplib.SMTP(
                self.settings.SMTP_HOST,
                self.settings.SMTP_PORT,
                timeout=self.settings.SMTP_TIMEOUT_SECONDS,
            ) as server:
                server.ehlo()
                if self.settings.SMTP_TLS:
                    server.starttls()
                    server.ehlo()
                if self.settings.SMTP_USER:
                    server.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
                server.send_message(message)
        except smtplib.SMTPRecipientsRefused as exc:
            codes = [code for code, _ in exc.recipients.values()]
            if codes and all(code >= 500 for code in codes):
                raise DeliveryPermanentFailure(f"recipient_refused:{codes[0]}") from exc
            raise DeliveryTransientFailure(f"recipient_deferred:{codes[0] if codes else 'unknown'}") from exc
        except smtplib.SMTPAuthenticationError as exc:
            raise DeliveryPermanentFailure(f"smtp_auth_failed:{exc.smtp_code}") from exc
        except smtplib.SMTPResponseException as exc:
            if exc.smtp_code >= 500:
                raise DeliveryPermanentFailure(f"smtp_rejected:{exc.smtp_code}") from exc
            raise DeliveryTransientFailure(f"smtp_deferred:{exc.smtp_code}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryTransientFailure(f"smtp_unavailable:{exc.__class__.__name__}") from exc
        logger.info("Email sent: %s", to)


class LogMailTransport:
    """Development transport: writes the message to the log instead of sending it."""

    def send(self, to: str, subject: str, body: str, *, html_body: str | None = None) -> None:
        logger.info("SMTP not configured; email to %s logged instead of sent\nSubject: %s\n\n%s", to, subject, body)


def build_mail_transport(settings: Settings) -> MailTransport:
    if settings.smtp_ready:
        return SmtpMailTransport(settings)
    logger.warning("SMTP not configured; verification emails will only be logged")
    return LogMailTransport()
