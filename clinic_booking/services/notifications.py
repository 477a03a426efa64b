"""
Patient email notifications.

Notifications are published as events after a booking or status change has
been committed and are delivered outside the request's write path. Delivery
failures are logged and never reach the caller.
"""
from email.message import EmailMessage
from functools import lru_cache
from typing import Callable, Dict, Optional, Tuple
import logging
import smtplib

import httpx
from pydantic import BaseModel

from ..core.config import settings
from ..core.exceptions import NotificationFailure
from ..models.appointment import Appointment

logger = logging.getLogger(__name__)

BOOKING_RECEIVED = "booking_received"
APPOINTMENT_CONFIRMED = "appointment_confirmed"

TEMPLATES: Dict[str, Dict[str, str]] = {
    BOOKING_RECEIVED: {
        "subject": "Your appointment request with {doctor_name}",
        "body": (
            "Hello {patient_name},\n\n"
            "We received your appointment request with {doctor_name} ({specialty}) "
            "on {date}, {time_range}.\n"
            "The clinic will confirm it shortly.\n"
        ),
    },
    APPOINTMENT_CONFIRMED: {
        "subject": "Appointment confirmed: {date} {time_range}",
        "body": (
            "Hello {patient_name},\n\n"
            "Your appointment with {doctor_name} ({specialty}) on {date}, "
            "{time_range} is confirmed.\n"
        ),
    },
}


class NotificationEvent(BaseModel):
    template: str
    recipient: str
    fields: Dict[str, str]


Publisher = Callable[[NotificationEvent], None]


def appointment_event(template: str, appointment: Appointment) -> NotificationEvent:
    """Build the notification event for an appointment and its slot."""
    slot = appointment.time_slot
    doctor = appointment.doctor
    return NotificationEvent(
        template=template,
        recipient=appointment.email,
        fields={
            "patient_name": appointment.patient_name,
            "doctor_name": doctor.name,
            "specialty": doctor.specialty,
            "date": slot.date.strftime("%B %d, %Y"),
            "time_range": slot.time_range,
        },
    )


def render(template: str, fields: Dict[str, str]) -> Tuple[str, str]:
    try:
        parts = TEMPLATES[template]
    except KeyError:
        raise NotificationFailure(f"Unknown notification template '{template}'")
    return parts["subject"].format(**fields), parts["body"].format(**fields)


class Notifier:
    """Base notifier: ``send`` reports success or failure, it does not raise."""

    def send(self, template: str, recipient: str, fields: Dict[str, str]) -> bool:
        try:
            subject, body = render(template, fields)
            self.deliver(recipient, subject, body)
        except NotificationFailure as e:
            logger.warning(f"Notification '{template}' to {recipient} failed: {e}")
            return False
        logger.info(f"Notification '{template}' sent to {recipient}")
        return True

    def deliver(self, recipient: str, subject: str, body: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the log, used when no mail backend is configured."""

    def deliver(self, recipient: str, subject: str, body: str) -> None:
        logger.info(f"Email to {recipient}: {subject}")


class SMTPNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        sender: str = settings.NOTIFICATION_FROM,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.sender = sender

    def deliver(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(str(e)) from e


class HTTPNotifier(Notifier):
    """Sends mail through a transactional email HTTP API."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        sender: str = settings.NOTIFICATION_FROM,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.sender = sender
        self.transport = transport

    def deliver(self, recipient: str, subject: str, body: str) -> None:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "text": body,
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationFailure(str(e)) from e

        if response.status_code >= 400:
            raise NotificationFailure(
                f"Email API responded with {response.status_code}"
            )


def deliver(notifier: Notifier, event: NotificationEvent) -> bool:
    """Deliver one event. Never raises, the booking already stands."""
    try:
        return notifier.send(event.template, event.recipient, event.fields)
    except Exception:
        logger.exception(
            f"Unexpected error delivering '{event.template}' to {event.recipient}"
        )
        return False


@lru_cache()
def get_notifier() -> Notifier:
    """Notifier configured from settings."""
    backend = settings.NOTIFIER_BACKEND.lower()

    if backend == "smtp" and settings.SMTP_HOST:
        return SMTPNotifier(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
        )
    if backend == "http" and settings.EMAIL_API_URL:
        return HTTPNotifier(
            url=settings.EMAIL_API_URL,
            api_key=settings.EMAIL_API_KEY,
            timeout=settings.EMAIL_API_TIMEOUT,
        )
    if backend != "log":
        logger.warning(
            f"Notifier backend '{backend}' is not fully configured, logging emails instead"
        )
    return LogNotifier()
