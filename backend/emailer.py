import logging
import os
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional

logger = logging.getLogger(__name__)

PROVIDER_NAME = "smtp"
SMTP_TIMEOUT_SECONDS = int(os.environ.get("SMTP_TIMEOUT_SECONDS", "20"))
RELAY_PREFIXES = ("SMTP_PRIMARY", "SMTP_SECONDARY")

TRUE_VALUES = {"1", "true", "yes", "on"}


class EmailDeliveryError(RuntimeError):
    pass


@dataclass
class Relay:
    name: str
    host: str
    port: int
    sender: str
    user: Optional[str] = None
    password: Optional[str] = None
    starttls: bool = True
    implicit_tls: bool = False

    def from_header(self) -> str:
        display = os.environ.get("FROM_NAME") or os.environ.get("EVENT_NAME")
        return formataddr((display, self.sender)) if display else self.sender


def _relay_from_env(prefix: str) -> Optional[Relay]:
    def env(key: str) -> Optional[str]:
        return os.environ.get(f"{prefix}_{key}")

    host, port, sender = env("HOST"), env("PORT"), env("FROM")
    if not (host and port and sender):
        return None
    if not port.strip().isdigit():
        raise EmailDeliveryError(f"{prefix}_PORT must be a number, got {port!r}")

    return Relay(
        name=prefix,
        host=host,
        port=int(port),
        sender=sender,
        user=env("USER"),
        password=env("PASS"),
        starttls=(env("TLS") or "true").strip().lower() in TRUE_VALUES,
        implicit_tls=(env("SSL") or "false").strip().lower() in TRUE_VALUES,
    )


def configured_relays() -> List[Relay]:
    relays = [_relay_from_env(prefix) for prefix in RELAY_PREFIXES]
    if relays[0] is None:
        raise EmailDeliveryError("SMTP_PRIMARY configuration missing")
    return [relay for relay in relays if relay is not None]


def _compose(relay: Relay, to_email: str, subject: str, html: str, text: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = relay.from_header()
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text or " ")
    message.add_alternative(html, subtype="html")
    return message


def _deliver(relay: Relay, message: EmailMessage) -> None:
    context = ssl.create_default_context()
    if relay.implicit_tls:
        client = smtplib.SMTP_SSL(relay.host, relay.port, context=context, timeout=SMTP_TIMEOUT_SECONDS)
    else:
        client = smtplib.SMTP(relay.host, relay.port, timeout=SMTP_TIMEOUT_SECONDS)

    with client:
        if not relay.implicit_tls and relay.starttls:
            client.starttls(context=context)
        if relay.user and relay.password:
            client.login(relay.user, relay.password)
        client.send_message(message)


def send_email(to_email: str, subject: str, html: str, text: str) -> None:
    """Deliver one message, trying each configured relay in order."""
    last_error = None
    for relay in configured_relays():
        try:
            _deliver(relay, _compose(relay, to_email, subject, html, text))
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("%s failed for %s: %s", relay.name, to_email, exc)
            last_error = exc
            continue
        logger.info("Email sent to %s via %s", to_email, relay.name)
        return
    raise EmailDeliveryError(f"All SMTP relays failed for {to_email}: {last_error}")
