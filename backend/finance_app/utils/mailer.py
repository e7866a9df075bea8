"""Outgoing email: SMTP delivery and Jinja2-rendered message bodies.

When `MAIL_HOST` is not configured nothing is sent; the helpers log the
skip and return False so callers can report it.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import List, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from ..config import settings
from ..auth import role_description
from ..models import HouseholdRole

logger = logging.getLogger("finance_app.mail")

_templates = Environment(
    loader=PackageLoader("finance_app", "templates"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def email_enabled() -> bool:
    return bool(settings.MAIL_HOST)


def render(name: str, **context) -> str:
    return _templates.get_template(name).render(app_url=settings.APP_URL, **context)


def send_email(to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
    """Deliver one message over SMTP; returns False when skipped or failed."""
    if not email_enabled():
        logger.info("Email not sent (MAIL_HOST not configured): to=%s subject=%s", to_email, subject)
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.MAIL_FROM
    msg["To"] = to_email
    msg.set_content(text_body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    try:
        if settings.MAIL_USE_SSL:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(settings.MAIL_HOST, settings.MAIL_PORT, context=context,
                                  timeout=settings.MAIL_TIMEOUT_SECONDS) as smtp:
                if settings.MAIL_USERNAME:
                    smtp.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(settings.MAIL_HOST, settings.MAIL_PORT, timeout=settings.MAIL_TIMEOUT_SECONDS) as smtp:
                smtp.ehlo()
                if settings.MAIL_USE_TLS:
                    smtp.starttls(context=ssl.create_default_context())
                    smtp.ehlo()
                if settings.MAIL_USERNAME:
                    smtp.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
                smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Email send failed: to=%s subject=%s", to_email, subject)
        return False
    logger.info("Email sent: to=%s subject=%s", to_email, subject)
    return True


def send_invitation_email(to_email: str, inviter_name: str, household_name: str,
                          role: HouseholdRole, invitation_link: str, expires_at) -> bool:
    context = dict(
        inviter_name=inviter_name,
        household_name=household_name,
        role=role.value,
        permissions=role_description(role),
        invitation_link=invitation_link,
        expires_at=expires_at,
    )
    subject = f"{inviter_name} invited you to join the {household_name} household!"
    return send_email(to_email, subject, render("invitation.txt", **context), render("invitation.html", **context))


def send_weekly_summary_email(to_email: str, user_name: str, summaries: List[dict]) -> bool:
    context = dict(user_name=user_name, summaries=summaries)
    if len(summaries) == 1:
        s = summaries[0]
        subject = f"Your {s['period']['month_name']} summary for {s['household_name']}"
    else:
        subject = f"Your household finance summary ({len(summaries)} households)"
    return send_email(to_email, subject, render("weekly_summary.txt", **context), render("weekly_summary.html", **context))
