import asyncio
import json

import httpx
import pytest

from errors import NotificationFailure
from models import VaccinationRecord
from notifications import NotificationQueue, ResendEmailSender, render_confirmation


def make_record(**overrides):
    fields = {
        "cert_id": "VAX-20260314-123456",
        "name": "Priya Sharma",
        "email": "priya.sharma@example.com",
        "state": "Karnataka",
        "district": "Bengaluru",
        "vaccine_type": "Covishield",
        "dose": "Booster",
        "date_administered": "2026-03-14",
        "administering_officer": None,
        "created_at": "2026-03-14T10:00:00.000Z",
    }
    fields.update(overrides)
    return VaccinationRecord(**fields)


class FlakySender:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    async def send(self, to, subject, html):
        self.calls.append(to)
        if len(self.calls) <= self.failures:
            raise NotificationFailure("Email API request failed")


def test_render_confirmation():
    html = render_confirmation(make_record(name="<b>Priya</b>"))
    assert "Certificate ID: VAX-20260314-123456" in html
    assert "Booster" in html
    assert "Bengaluru, Karnataka" in html
    assert "March 14, 2026" in html
    assert "&lt;b&gt;Priya&lt;/b&gt;" in html
    assert "Officer:" not in html


def test_render_confirmation_numbered_dose_and_officer():
    html = render_confirmation(make_record(dose="2", administering_officer="Dr. Rao"))
    assert "Dose 2" in html
    assert "Dr. Rao" in html


async def test_unconfigured_sender_fails():
    for key in (None, "", "your-api-key-here", "short"):
        sender = ResendEmailSender(key)
        assert not sender.configured
        with pytest.raises(NotificationFailure):
            await sender.send("a@example.com", "subject", "<p>hi</p>")


async def test_sender_posts_to_resend():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sender = ResendEmailSender("re_1234567890", client=client)
    await sender.send("a@example.com", "Hello", "<p>hi</p>")
    await sender.aclose()

    assert len(requests) == 1
    assert str(requests[0].url) == ResendEmailSender.api_url
    assert requests[0].headers["Authorization"] == "Bearer re_1234567890"
    assert json.loads(requests[0].content) == {
        "from": "Vaccination System <onboarding@resend.dev>",
        "to": ["a@example.com"],
        "subject": "Hello",
        "html": "<p>hi</p>",
    }


async def test_sender_rejected_by_api():
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad to"}))
    )
    sender = ResendEmailSender("re_1234567890", client=client)
    with pytest.raises(NotificationFailure) as exc_info:
        await sender.send("a@example.com", "Hello", "<p>hi</p>")
    assert exc_info.value.details.startswith("422")
    await sender.aclose()


async def test_deliver_swallows_failure():
    queue = NotificationQueue(FlakySender(failures=1))
    assert await queue.deliver(make_record()) is False
    assert await queue.deliver(make_record()) is True


async def test_worker_keeps_running_after_failure():
    sender = FlakySender(failures=1)
    queue = NotificationQueue(sender)
    queue.start()

    assert queue.enqueue(make_record(email="first@example.com"))
    assert queue.enqueue(make_record(email="second@example.com"))
    await asyncio.wait_for(queue.drain(), 1)
    await queue.stop()

    assert sender.calls == ["first@example.com", "second@example.com"]


def test_enqueue_without_email_or_capacity():
    queue = NotificationQueue(FlakySender(), maxsize=1)
    assert queue.enqueue(make_record(email=None)) is False
    assert queue.enqueue(make_record()) is True
    assert queue.enqueue(make_record()) is False
