"""Centralized transactional email delivery with retry logic."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Optional

from flask import current_app, render_template
from flask_mail import Mail, Message

mail = Mail()
logger = logging.getLogger(__name__)


@dataclass
class EmailPayload:
    to_email: str
    subject: str
    template_name: str
    context: dict


def init_mail(app):
    mail.init_app(app)


def is_valid_recipient(email: str) -> bool:
    _, parsed = parseaddr(email or "")
    return bool(parsed and "@" in parsed)


def send_templated_email(payload: EmailPayload, *, retries: int = 3, backoff_s: float = 1.5) -> bool:
    if not current_app.config.get("MAIL_ENABLED"):
        logger.info("Mail disabled; skipping '%s' to %s", payload.subject, payload.to_email)
        return False
    if not is_valid_recipient(payload.to_email):
        logger.warning("Skipping email; invalid recipient: %s", payload.to_email)
        return False

    context = {"site_url": current_app.config.get("SITE_URL", ""), **payload.context}
    html_body = render_template(f"emails/{payload.template_name}.html", **context)
    text_body = render_template(f"emails/{payload.template_name}.txt", **context)

    msg = Message(
        subject=payload.subject,
        recipients=[payload.to_email],
        html=html_body,
        body=text_body,
    )

    for attempt in range(1, max(1, retries) + 1):
        try:
            mail.send(msg)
            logger.info("Email sent: subject=%s to=%s", payload.subject, payload.to_email)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.exception("Email send failed on attempt %s: %s", attempt, exc)
            if attempt < retries:
                time.sleep(backoff_s * attempt)

    return False


def send_welcome_email(to_email: str, name: str) -> bool:
    return send_templated_email(
        EmailPayload(
            to_email=to_email,
            subject="Welcome to SignalsLoop",
            template_name="welcome",
            context={"name": name},
        )
    )


def send_gift_email(to_email: str, claim_link: str, duration_months: int, gift_message: Optional[str]) -> bool:
    return send_templated_email(
        EmailPayload(
            to_email=to_email,
            subject="You've been gifted SignalsLoop Pro",
            template_name="gift",
            context={
                "claim_link": claim_link,
                "duration_months": duration_months,
                "gift_message": gift_message,
            },
        ),
        retries=current_app.config.get("MAIL_MAX_RETRIES", 3),
    )


def send_scan_complete_email(to_email: str, project_name: str, scan: dict) -> bool:
    return send_templated_email(
        EmailPayload(
            to_email=to_email,
            subject=f"Feedback hunt finished for {project_name}",
            template_name="scan_complete",
            context={"project_name": project_name, "scan": scan},
        )
    )


def send_trial_reminder_email(to_email: str, project_name: str, days_left: int) -> bool:
    return send_templated_email(
        EmailPayload(
            to_email=to_email,
            subject=f"Your SignalsLoop Pro trial ends in {days_left} day{'s' if days_left != 1 else ''}",
            template_name="trial_reminder",
            context={"project_name": project_name, "days_left": days_left},
        )
    )


def send_payment_warning_email(to_email: str, project_name: str, status: str) -> bool:
    return send_templated_email(
        EmailPayload(
            to_email=to_email,
            subject="Action needed: update your SignalsLoop payment method",
            template_name="payment_warning",
            context={"project_name": project_name, "status": status},
        )
    )
