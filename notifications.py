"""
Registration confirmation emails.

Registration only enqueues; a single background worker renders and delivers
each message through the Resend HTTP API. Delivery failures are logged and
dropped, never retried and never reported back to the request that caused them.
"""

import asyncio
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from errors import NotificationFailure
from logging_config import get_logger
from models import VaccinationRecord
from utils import redact_email

logger = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
CONFIRMATION_SUBJECT = "Vaccination Registration Confirmation"
DEFAULT_SENDER = "Vaccination System <onboarding@resend.dev>"
PLACEHOLDER_KEY = "your-api-key-here"


def dose_label(dose: Optional[str]) -> str:
    if dose == "Booster":
        return "Booster"
    return f"Dose {dose}"


def long_date(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return date.fromisoformat(value[:10]).strftime("%B %d, %Y")
    except ValueError:
        return value


_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
)
_env.filters["dose_label"] = dose_label
_env.filters["long_date"] = long_date


def render_confirmation(record: VaccinationRecord) -> str:
    template = _env.get_template("confirmation_email.html")
    return template.render(record=record, year=datetime.now(timezone.utc).year)


class ResendEmailSender:
    api_url = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: Optional[str],
        sender: str = DEFAULT_SENDER,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self._client = client

    @classmethod
    def from_env(cls) -> "ResendEmailSender":
        return cls(os.getenv("RESEND_API_KEY"), os.getenv("EMAIL_FROM", DEFAULT_SENDER))

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_KEY and len(self.api_key) >= 10

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def send(self, to: str, subject: str, html: str) -> None:
        if not self.configured:
            raise NotificationFailure("RESEND_API_KEY is not configured")

        try:
            response = await self.client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationFailure(
                "Email API rejected the message",
                details=f"{e.response.status_code}: {e.response.text[:200]}",
            ) from e
        except httpx.HTTPError as e:
            raise NotificationFailure("Email API request failed", details=str(e)) from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class NotificationQueue:
    def __init__(self, sender, maxsize: int = 1000):
        self.sender = sender
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    def enqueue(self, record: VaccinationRecord) -> bool:
        if not record.email:
            return False
        try:
            self.queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning(
                "Notification queue full, dropping confirmation",
                cert_id=record.cert_id,
                recipient=redact_email(record.email),
            )
            return False
        return True

    async def deliver(self, record: VaccinationRecord) -> bool:
        try:
            await self.sender.send(record.email, CONFIRMATION_SUBJECT, render_confirmation(record))
        except NotificationFailure as e:
            logger.warning(
                "Confirmation email not sent",
                cert_id=record.cert_id,
                recipient=redact_email(record.email),
                error=e.message,
                details=e.details,
            )
            return False
        except Exception:
            # The worker must outlive any single bad message.
            logger.exception("Unexpected error sending confirmation", cert_id=record.cert_id)
            return False

        logger.info("Confirmation email sent", cert_id=record.cert_id, recipient=redact_email(record.email))
        return True

    async def _run(self) -> None:
        while True:
            record = await self.queue.get()
            try:
                await self.deliver(record)
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        await self.queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Dropping undelivered confirmations on shutdown", pending=self.queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
