"""Tests for the mail queue consumer and the email service it drives."""

import asyncio
import smtplib

from reelscore.service.email import EmailService
from reelscore.service.mail_worker import MailWorker
from reelscore.storage.memory import MemoryMailQueue


class RecordingEmailService(EmailService):
    def __init__(self, *, succeed=True):
        super().__init__(base_url="https://reelscore.test")
        self.sent = []
        self.succeed = succeed

    def _send_email(self, to_email, subject, html_body, text_body=None):
        self.sent.append(
            {"to": to_email, "subject": subject, "html": html_body, "text": text_body}
        )
        return self.succeed


class TestMailWorker:
    async def test_confirmation_job_sends_verification_link(self):
        queue = MemoryMailQueue()
        email = RecordingEmailService()
        worker = MailWorker(queue, email, poll_interval=1)
        await queue.enqueue(
            "confirmation", {"email": "alice@example.com", "name": "alice", "token": "tok-123"}
        )

        assert await worker.process_next(timeout=0.1) is True
        assert len(email.sent) == 1
        message = email.sent[0]
        assert message["to"] == "alice@example.com"
        assert "https://reelscore.test/auth/verify?token=tok-123" in message["text"]
        assert "alice" in message["html"]

    async def test_empty_queue_returns_false(self):
        worker = MailWorker(MemoryMailQueue(), RecordingEmailService(), poll_interval=1)
        assert await worker.process_next(timeout=0.01) is False

    async def test_unknown_job_is_skipped(self):
        email = RecordingEmailService()
        worker = MailWorker(MemoryMailQueue(), email, poll_interval=1)
        assert await worker.handle("newsletter", {"email": "a@example.com"}) is False
        assert email.sent == []

    async def test_malformed_confirmation_is_skipped(self):
        email = RecordingEmailService()
        worker = MailWorker(MemoryMailQueue(), email, poll_interval=1)
        assert await worker.handle("confirmation", {"name": "alice"}) is False
        assert email.sent == []

    async def test_delivery_failure_is_reported(self):
        email = RecordingEmailService(succeed=False)
        worker = MailWorker(MemoryMailQueue(), email, poll_interval=1)
        result = await worker.handle(
            "confirmation", {"email": "a@example.com", "name": "a", "token": "t"}
        )
        assert result is False

    async def test_start_stop_drains_queue(self):
        queue = MemoryMailQueue()
        email = RecordingEmailService()
        worker = MailWorker(queue, email, poll_interval=1)
        await queue.enqueue("confirmation", {"email": "a@example.com", "name": "a", "token": "t"})

        await worker.start()
        for _ in range(50):
            if email.sent:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert len(email.sent) == 1
        assert worker._task is None


class TestEmailService:
    def test_unconfigured_service_logs_instead_of_sending(self, monkeypatch):
        def fail_smtp(*args, **kwargs):
            raise AssertionError("SMTP must not be used without configuration")

        monkeypatch.setattr(smtplib, "SMTP", fail_smtp)
        service = EmailService()
        assert service.is_configured is False
        assert service.send_email_verification("a@example.com", "a", "tok") is True

    def test_smtp_failure_returns_false(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("no server")

        monkeypatch.setattr(smtplib, "SMTP", refuse)
        service = EmailService(smtp_host="smtp.invalid", from_email="noreply@example.com")
        assert service.send_email_verification("a@example.com", "a", "tok") is False

    def test_verification_url_escapes_token(self):
        service = EmailService(base_url="https://reelscore.test/")
        assert service.verification_url("a+b/c") == "https://reelscore.test/auth/verify?token=a%2Bb%2Fc"
