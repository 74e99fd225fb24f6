import smtplib
from datetime import datetime

import pytest

from app.config.settings import Settings
from app.services.notifications import EmailDeliveryChannel, MessageTemplate, Recipient
from app.services.notifications.delivery import (
    DeliveryResult,
    digest_payload,
    priority_text,
    task_payload,
)
from app.services.notifications.task_source import TaskSnapshot, TaskStats

RECIPIENT = Recipient(id="u1", email="ann@example.com", first_name="Ann")

TASK = TaskSnapshot(
    id=1,
    user_id="u1",
    title="Submit <b>taxes</b>",
    description="Forms are in the drawer",
    due_date=datetime(2025, 3, 11, 9, 30),
    completed=False,
    priority=4,
)


def _smtp_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "production",
        "SMTP_HOST": "smtp.todolist.test",
        "SMTP_PORT": 2525,
        "SMTP_USER": "mailer",
        "SMTP_PASSWORD": "secret",
        "SMTP_FROM": "noreply@todolist.test",
    }
    values.update(overrides)
    return Settings(**values)


class FakeSMTP:
    """Stands in for smtplib.SMTP and remembers what it was asked to do."""

    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def send_message(self, message):
        self.messages.append(message)


class TestPayloads:
    def test_priority_text(self):
        assert [priority_text(p) for p in (1, 2, 3, 4)] == ["Low", "Medium", "High", "Urgent"]
        assert priority_text(None) == "Medium"
        assert priority_text(9) == "Medium"

    def test_task_payload(self):
        payload = task_payload(TASK)

        assert payload["title"] == TASK.title
        assert payload["due_date"] == "Mar 11, 2025 09:30 UTC"
        assert payload["priority_text"] == "Urgent"

    def test_task_payload_without_due_date(self):
        undated = TaskSnapshot(
            id=2, user_id="u1", title="Someday", description=None,
            due_date=None, completed=False, priority=1,
        )
        assert task_payload(undated)["due_date"] == "No due date"

    def test_result_as_dict(self):
        assert DeliveryResult(success=True, message_id="<m>").as_dict() == {
            "success": True,
            "message_id": "<m>",
        }
        assert DeliveryResult(success=False, error="nope").as_dict() == {
            "success": False,
            "error": "nope",
        }


class TestRendering:
    """Subjects and bodies for each template."""

    def test_due_reminder(self):
        channel = EmailDeliveryChannel(_smtp_settings())

        subject, html = channel.render(
            MessageTemplate.DUE_REMINDER, RECIPIENT, {"task": task_payload(TASK)}
        )

        assert subject == "Task Due Soon: Submit <b>taxes</b>"
        assert "Hello Ann," in html
        assert "Submit &lt;b&gt;taxes&lt;/b&gt;" in html
        assert "Mar 11, 2025 09:30 UTC" in html
        assert "Priority: Urgent" in html

    def test_overdue_alert(self):
        channel = EmailDeliveryChannel(_smtp_settings())

        subject, html = channel.render("overdue_alert", RECIPIENT, {"task": task_payload(TASK)})

        assert subject.startswith("Overdue Task Alert: ")
        assert "Was due: Mar 11, 2025 09:30 UTC" in html
        assert "#dc3545" in html

    def test_daily_digest(self):
        channel = EmailDeliveryChannel(_smtp_settings())
        payload = digest_payload(
            datetime(2025, 3, 10, 8, 0),
            TaskStats(total=7, completed=2, overdue=1, due_soon=0),
            [TASK],
            [],
        )

        subject, html = channel.render(MessageTemplate.DAILY_DIGEST, RECIPIENT, payload)

        assert subject == "Your Daily Task Digest"
        assert "Monday, March 10, 2025" in html
        assert "<h3>7</h3>Total" in html
        assert "Overdue</h3>" in html
        assert "Due in the next 24 hours" not in html

    def test_empty_digest(self):
        channel = EmailDeliveryChannel(_smtp_settings())
        payload = digest_payload(
            datetime(2025, 3, 10, 8, 0), TaskStats(0, 0, 0, 0), [], []
        )

        _, html = channel.render(MessageTemplate.DAILY_DIGEST, RECIPIENT, payload)

        assert "Nothing overdue and nothing due in the next 24 hours." in html

    def test_welcome_uses_email_when_no_first_name(self):
        channel = EmailDeliveryChannel(_smtp_settings())

        subject, html = channel.render(
            MessageTemplate.WELCOME, Recipient(id="u2", email="bo@example.com"), {}
        )

        assert subject == "Welcome to Todo List!"
        assert "Hello bo," in html


class TestSend:
    @pytest.mark.asyncio
    async def test_unknown_template(self):
        channel = EmailDeliveryChannel(_smtp_settings())

        result = await channel.send("weekly_report", RECIPIENT, {})

        assert result.success is False
        assert result.error == "Template 'weekly_report' not found"

    @pytest.mark.asyncio
    async def test_dry_run_without_smtp_host(self, monkeypatch):
        channel = EmailDeliveryChannel(_smtp_settings(ENVIRONMENT="development", SMTP_HOST=""))

        def explode(*args, **kwargs):
            raise AssertionError("SMTP must not be used in dry-run mode")

        monkeypatch.setattr(smtplib, "SMTP", explode)

        result = await channel.send(MessageTemplate.WELCOME, RECIPIENT, {})

        assert channel.dry_run is True
        assert result.success is True
        assert result.message_id.endswith("@todolist.test>")

    @pytest.mark.asyncio
    async def test_production_without_host_is_not_dry_run(self):
        channel = EmailDeliveryChannel(_smtp_settings(SMTP_HOST=""))

        assert channel.dry_run is False

    @pytest.mark.asyncio
    async def test_sends_over_smtp(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
        channel = EmailDeliveryChannel(_smtp_settings())

        result = await channel.send(
            MessageTemplate.DUE_REMINDER, RECIPIENT, {"task": task_payload(TASK)}
        )

        assert result.success is True
        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.todolist.test", 2525)
        assert smtp.calls == ["starttls", ("login", "mailer", "secret")]
        message = smtp.messages[0]
        assert message["To"] == "ann@example.com"
        assert message["From"] == "noreply@todolist.test"
        assert message["Message-ID"] == result.message_id

    @pytest.mark.asyncio
    async def test_no_tls_and_no_login_when_unconfigured(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
        channel = EmailDeliveryChannel(_smtp_settings(SMTP_USE_TLS=False, SMTP_USER=""))

        result = await channel.send(MessageTemplate.WELCOME, RECIPIENT, {})

        assert result.success is True
        assert FakeSMTP.instances[0].calls == []

    @pytest.mark.asyncio
    async def test_smtp_failure_becomes_failed_result(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("Connection refused")

        monkeypatch.setattr(smtplib, "SMTP", refuse)
        channel = EmailDeliveryChannel(_smtp_settings())

        result = await channel.send(MessageTemplate.WELCOME, RECIPIENT, {})

        assert result.success is False
        assert result.error == "SMTP delivery failed: Connection refused"
