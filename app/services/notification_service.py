"""Best-effort email notifications for request transitions.

Engine operations only *queue* messages on a :class:`NotificationOutbox`. The caller
flushes the outbox after its transaction commits, so a rolled back transition never
emails anyone and a failing mail server never fails a transition. Every delivery
error is logged and swallowed inside :meth:`NotificationOutbox.flush`.

When ``SMTP_HOST`` is not configured, messages are logged instead of sent.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Role, User

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates' / 'email'

SUBJECTS = {
    'purchase_submitted': '[NEW REQUEST] {reference} - {title}',
    'purchase_approved': '[PURCHASING APPROVAL] {reference} - {title}',
    'purchase_rejected': '[REJECTED] {reference} - {title}',
    'purchase_validated': '[VALIDATED] {reference} - {title}',
    'purchase_finalized': '[FINALIZED] {reference} - {title}',
    'internal_created': 'New internal request #{reference}',
    'internal_approved': 'Internal request #{reference} approved',
    'internal_rejected': 'Internal request #{reference} rejected',
}

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(['html']),
)


class EmailSender(Protocol):
    def send(self, *, to: str | list[str], subject: str, html: str) -> bool: ...


class LogOnlyEmailSender:
    def send(self, *, to: str | list[str], subject: str, html: str) -> bool:
        logger.info('Email (log-only mode): to=%s subject=%r', to, subject)
        return True


class SmtpEmailSender:
    def send(self, *, to: str | list[str], subject: str, html: str) -> bool:
        recipients = [to] if isinstance(to, str) else list(to)
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = settings.smtp_from
        msg['To'] = ', '.join(recipients)
        msg.attach(MIMEText(html, 'html', 'utf-8'))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(msg)
        logger.info('Email sent: to=%s subject=%r', recipients, subject)
        return True


def get_email_sender() -> EmailSender:
    if settings.smtp_configured:
        return SmtpEmailSender()
    return LogOnlyEmailSender()


def render_notification(template: str, context: dict) -> tuple[str, str]:
    subject = SUBJECTS[template].format(**context)
    html = _env.get_template(f'{template}.html').render(**context)
    return subject, html


@dataclass
class Notification:
    template: str
    recipients: list[str]
    context: dict


@dataclass
class NotificationOutbox:
    sender: EmailSender | None = None
    enabled: bool = True
    pending: list[Notification] = field(default_factory=list)

    def queue(self, template: str, recipients: list[str], context: dict) -> None:
        unique = list(dict.fromkeys(address for address in recipients if address))
        if not unique:
            logger.info('No recipients for %s notification, skipping', template)
            return
        self.pending.append(Notification(template=template, recipients=unique, context=dict(context)))

    def discard(self) -> None:
        self.pending.clear()

    def flush(self) -> int:
        """Deliver queued messages, one per recipient. Returns the number delivered."""
        notifications, self.pending = self.pending, []
        if not self.enabled:
            return 0
        sender = self.sender or get_email_sender()
        delivered = 0
        for notification in notifications:
            try:
                subject, html = render_notification(notification.template, notification.context)
            except Exception:
                logger.exception('Could not render %s notification', notification.template)
                continue
            for address in notification.recipients:
                try:
                    if sender.send(to=address, subject=subject, html=html):
                        delivered += 1
                    else:
                        logger.warning('Email to %s was not accepted (%s)', address, notification.template)
                except Exception:
                    logger.exception('Email to %s failed (%s)', address, notification.template)
        return delivered


def build_outbox() -> NotificationOutbox:
    return NotificationOutbox(enabled=settings.notifications_enabled)


def emails_for_roles(db: Session, roles: list[Role]) -> list[str]:
    rows = db.execute(
        select(User.email).where(User.role.in_(roles), User.active.is_(True)).order_by(User.id.asc())
    ).scalars().all()
    return list(rows)


def email_for_user(db: Session, user_id: int) -> list[str]:
    email = db.execute(select(User.email).where(User.id == user_id, User.active.is_(True))).scalar_one_or_none()
    return [email] if email else []


def user_name(db: Session, user_id: int) -> str:
    name = db.execute(select(User.name).where(User.id == user_id)).scalar_one_or_none()
    return name or f'User {user_id}'


def request_url(path: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/{path.lstrip('/')}"
