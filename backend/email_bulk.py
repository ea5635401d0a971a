import html as html_lib
import logging
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from emailer import PROVIDER_NAME, send_email
from models import CommunicationLog, CommunicationStatus
from time_utils import now_tz

logger = logging.getLogger(__name__)

EMAIL_SEND_DELAY_SECONDS = float(os.environ.get("EMAIL_SEND_DELAY_SECONDS", "0.6"))
EMAIL_ERROR_REPORT_LIMIT = int(os.environ.get("EMAIL_ERROR_REPORT_LIMIT", "10"))

MUSTACHE_PATTERN = re.compile(r"\{\{\s*([a-z0-9_]+)\s*\}\}", re.IGNORECASE)

# keys are matched case-insensitively, so teamName arrives as "teamname"
PLACEHOLDER_KEYS = {
    "name": "name",
    "email": "email",
    "teamname": "team_name",
    "team_name": "team_name",
}


class TargetGroup(str, Enum):
    UNVERIFIED_ALL = "unverified_all"
    UNVERIFIED_LEADER = "unverified_leader"
    VERIFIED_ALL = "verified_all"
    VERIFIED_LEADER = "verified_leader"
    ALL = "all"


LEGACY_TARGET_GROUPS = {
    "unverified": TargetGroup.UNVERIFIED_ALL,
    "verified": TargetGroup.VERIFIED_ALL,
}


def parse_target_group(value: Optional[str]) -> TargetGroup:
    key = str(value or TargetGroup.ALL.value).strip().lower()
    if key in LEGACY_TARGET_GROUPS:
        return LEGACY_TARGET_GROUPS[key]
    return TargetGroup(key)


@dataclass
class Recipient:
    email: str
    name: str
    team_id: Optional[int] = None
    member_id: Optional[int] = None
    team_name: str = ""

    def context(self) -> Dict[str, Any]:
        return {"name": self.name, "email": self.email, "team_name": self.team_name}


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.sent + self.failed

    def stats(self) -> Dict[str, int]:
        return {"sent": self.sent, "failed": self.failed, "total": self.total}


def render_email_template(template: str, context: Dict[str, Any], *, html_mode: bool) -> str:
    if not template:
        return ""

    def repl(match: re.Match) -> str:
        key = PLACEHOLDER_KEYS.get(match.group(1).lower())
        if key is None:
            return match.group(0)
        value = context.get(key)
        value = "" if value is None else str(value)
        if html_mode:
            return html_lib.escape(value)
        return value

    return MUSTACHE_PATTERN.sub(repl, template)


def derive_text_from_html(html: str) -> str:
    if not html:
        return ""
    text = re.sub(r"<\s*(style|script)[^>]*>.*?<\s*/\s*\1\s*>", "", html, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<\s*br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<\s*/p\s*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html_lib.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n", text)
    return text.strip()


def available_placeholders() -> Iterable[str]:
    return ["{{name}}", "{{email}}", "{{teamName}}"]


class BulkEmailDispatcher:
    """Sends one personalised message per recipient, one at a time.

    Each attempt is paced by ``delay_seconds`` to stay under the relay's rate
    limit and is recorded in ``communication_logs``. A failed recipient is
    counted and reported; the loop always moves on to the next one.
    """

    def __init__(
        self,
        sender: Callable[[str, str, str, str], None] = send_email,
        delay_seconds: float = EMAIL_SEND_DELAY_SECONDS,
        error_limit: int = EMAIL_ERROR_REPORT_LIMIT,
        sleep: Callable[[float], None] = time.sleep,
        provider: str = PROVIDER_NAME,
    ):
        self._sender = sender
        self.delay_seconds = delay_seconds
        self.error_limit = error_limit
        self._sleep = sleep
        self.provider = provider

    def _log(
        self,
        db: Session,
        recipient: Recipient,
        subject: str,
        content: str,
        template_name: str,
        error: Optional[str] = None,
    ) -> None:
        now = now_tz()
        db.add(CommunicationLog(
            team_id=recipient.team_id,
            member_id=recipient.member_id,
            channel="EMAIL",
            template_name=template_name,
            subject=subject,
            content=content,
            recipient_email=recipient.email,
            status=CommunicationStatus.FAILED if error else CommunicationStatus.SENT,
            provider=self.provider,
            sent_at=None if error else now,
            failed_at=now if error else None,
            error_message=error,
        ))
        db.commit()

    def dispatch(
        self,
        db: Session,
        recipients: List[Recipient],
        subject: str,
        html: str,
        template_name: str = "custom",
    ) -> DispatchResult:
        result = DispatchResult()
        logger.info("Sending %s emails (%s)", len(recipients), template_name)

        for recipient in recipients:
            context = recipient.context()
            rendered_subject = render_email_template(subject, context, html_mode=False)
            rendered_html = render_email_template(html, context, html_mode=True)
            try:
                self._sender(recipient.email, rendered_subject, rendered_html, derive_text_from_html(rendered_html))
            except Exception as exc:
                result.failed += 1
                if len(result.errors) < self.error_limit:
                    result.errors.append({"email": recipient.email, "error": str(exc)})
                logger.error("Failed to send email to %s: %s", recipient.email, exc)
                self._log(db, recipient, rendered_subject, rendered_html, template_name, error=str(exc) or exc.__class__.__name__)
            else:
                result.sent += 1
                self._log(db, recipient, rendered_subject, rendered_html, template_name)

            if self.delay_seconds > 0:
                self._sleep(self.delay_seconds)

        logger.info("Bulk email complete: %s sent, %s failed", result.sent, result.failed)
        return result
