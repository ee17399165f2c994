"""SMTP mail transport.

One connection per message: delivery volume is low and a fresh
connection keeps a broken session from poisoning later sends.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import TYPE_CHECKING
from uuid import uuid4

from certdesk.delivery.base import MailTransport, SendResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certdesk.config.settings import SmtpSettings
    from certdesk.delivery.base import Attachment

log = logging.getLogger(__name__)

_PERMANENT_SMTP_CODE = 500


class SmtpMailTransport(MailTransport):
    """Sends mail through the configured SMTP relay.

    ``SMTPRecipientsRefused`` and 5xx replies are reported as permanent
    (bounces); connection problems and 4xx replies as transient.
    """

    def __init__(self, settings: SmtpSettings) -> None:
        self._smtp = settings

    def _build_message(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: Sequence[Attachment] | None,
    ) -> tuple[MIMEMultipart, str]:
        msg = MIMEMultipart("mixed")
        message_id = make_msgid(domain=self._smtp.from_address.rpartition("@")[2] or None)
        msg["From"] = self._smtp.from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        for att in attachments or ():
            _, _, subtype = att.content_type.partition("/")
            part = MIMEApplication(att.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=att.filename)
            msg.attach(part)
        return msg, message_id

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> SendResult:
        msg, message_id = self._build_message(to, subject, html_body, attachments)
        try:
            with smtplib.SMTP(
                self._smtp.host,
                self._smtp.port,
                timeout=self._smtp.timeout_seconds,
            ) as server:
                server.ehlo()
                if self._smtp.use_tls:
                    server.starttls()
                    server.ehlo()
                if self._smtp.username:
                    server.login(self._smtp.username, self._smtp.password)
                server.sendmail(self._smtp.from_address, [to], msg.as_string())
        except smtplib.SMTPRecipientsRefused as exc:
            code, reply = next(iter(exc.recipients.values()), (550, b"refused"))
            detail = reply.decode("utf-8", "replace") if isinstance(reply, bytes) else str(reply)
            log.warning("Recipient %s refused: %s %s", to, code, detail)
            return SendResult(
                error=f"recipient refused ({code}): {detail}",
                permanent=code >= _PERMANENT_SMTP_CODE,
            )
        except smtplib.SMTPResponseException as exc:
            detail = (
                exc.smtp_error.decode("utf-8", "replace")
                if isinstance(exc.smtp_error, bytes)
                else str(exc.smtp_error)
            )
            log.warning("SMTP error sending to %s: %s %s", to, exc.smtp_code, detail)
            return SendResult(
                error=f"smtp error ({exc.smtp_code}): {detail}",
                permanent=exc.smtp_code >= _PERMANENT_SMTP_CODE,
            )
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("SMTP transport failure sending to %s: %s", to, exc)
            return SendResult(error=f"transport failure: {exc}")
        return SendResult(id=message_id)


class LogOnlyMailTransport(MailTransport):
    """Used when SMTP is disabled: logs the message and reports success."""

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> SendResult:
        message_id = f"<logged-{uuid4()}@certdesk>"
        log.info(
            "SMTP disabled; recorded email to %s (%s) without sending",
            to,
            subject,
            extra={"message_id": message_id, "attachments": len(attachments or ())},
        )
        return SendResult(id=message_id)
