"""
Fire-and-forget outbound mail.

`EmailQueue.enqueue` hands a message to a small worker pool and returns
immediately. Delivery failures are logged and dropped; callers never see them.
"""
import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import config

logger = logging.getLogger(__name__)


@dataclass
class OutboundEmail:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


class SmtpSender:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None, username: Optional[str] = None,
                 password: Optional[str] = None, sender: str = "Storefront"):
        self.host = host if host is not None else config.MAILING_HOST
        self.port = port if port is not None else config.MAILING_PORT
        self.username = username if username is not None else config.MAILING_EMAIL
        self.password = password if password is not None else config.MAILING_PASSWORD
        self.sender = sender

    def build(self, email: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f'"{self.sender}" <{self.username or "no-reply@localhost"}>'
        msg["To"] = email.to
        msg["Subject"] = email.subject
        msg.set_content(email.text)
        if email.html:
            msg.add_alternative(email.html, subtype="html")
        return msg

    def send(self, email: OutboundEmail) -> None:
        if not self.host:
            logger.info("MAILING_HOST not set, not sending '%s' to %s:\n%s", email.subject, email.to, email.text)
            return
        msg = self.build(email)
        if self.port == 465:
            smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=30)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=30)
        with smtp:
            if self.port != 465:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("Email '%s' sent to %s", email.subject, email.to)


class EmailQueue:
    def __init__(self, sender: Optional[SmtpSender] = None, max_workers: int = 2):
        self.sender = sender or SmtpSender()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mail")

    def enqueue(self, email: OutboundEmail) -> None:
        future = self._executor.submit(self.sender.send, email)
        future.add_done_callback(lambda f: self._log_failure(f, email))

    @staticmethod
    def _log_failure(future: Future, email: OutboundEmail) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Failed to send '%s' to %s", email.subject, email.to, exc_info=exc)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
