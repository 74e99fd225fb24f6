import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from email.utils import make_msgid
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound

from app.config.settings import Settings, settings
from app.services.notifications.task_source import Recipient, TaskSnapshot, TaskStats
from app.utils.datetime_utils import format_due_date
from app.utils.errors import DeliveryFailure
from app.utils.logging import get_logger

logger = get_logger()

TEMPLATE_DIR = Path(__file__).parent / "templates"

PRIORITY_TEXT = {1: "Low", 2: "Medium", 3: "High", 4: "Urgent"}


class MessageTemplate(str, Enum):
    DUE_REMINDER = "due_reminder"
    OVERDUE_ALERT = "overdue_alert"
    DAILY_DIGEST = "daily_digest"
    WELCOME = "welcome"

    @property
    def filename(self) -> str:
        return f"{self.value}.html.j2"


SUBJECTS = {
    MessageTemplate.DUE_REMINDER: "Task Due Soon: {title}",
    MessageTemplate.OVERDUE_ALERT: "Overdue Task Alert: {title}",
    MessageTemplate.DAILY_DIGEST: "Your Daily Task Digest",
    MessageTemplate.WELCOME: "Welcome to Todo List!",
}


@dataclass
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "message_id": self.message_id}
        return {"success": False, "error": self.error}


def priority_text(priority: Optional[int]) -> str:
    return PRIORITY_TEXT.get(priority, "Medium")


def task_payload(task: TaskSnapshot) -> Dict[str, Any]:
    """Template-ready view of a task."""
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "due_date": format_due_date(task.due_date),
        "priority": task.priority,
        "priority_text": priority_text(task.priority),
    }


def digest_payload(
    now: datetime,
    stats: TaskStats,
    overdue_tasks: List[TaskSnapshot],
    due_soon_tasks: List[TaskSnapshot],
) -> Dict[str, Any]:
    return {
        "date": now.strftime("%A, %B %d, %Y"),
        "stats": stats.as_dict(),
        "overdue_tasks": [task_payload(task) for task in overdue_tasks],
        "due_soon_tasks": [task_payload(task) for task in due_soon_tasks],
    }


class DeliveryChannel(ABC):
    """A sink that turns a template plus payload into a message to one user."""

    name: str = "email"

    @abstractmethod
    async def send(
        self,
        template: Union[MessageTemplate, str],
        user: Recipient,
        payload: Dict[str, Any],
    ) -> DeliveryResult:
        """Deliver one message. Failures are reported in the result, not raised."""
        pass


class EmailDeliveryChannel(DeliveryChannel):
    """
    Sends HTML email rendered from the Jinja2 templates next to this module.

    Without an SMTP host outside production the channel runs dry: messages are
    rendered and logged, and a generated message id is returned.
    """

    name = "email"

    def __init__(
        self,
        config: Settings = settings,
        template_dir: Optional[Path] = None,
    ):
        self.config = config
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    @property
    def dry_run(self) -> bool:
        return self.config.email_dry_run

    @property
    def _msgid_domain(self) -> str:
        return self.config.SMTP_FROM.rsplit("@", 1)[-1]

    def render(
        self,
        template: Union[MessageTemplate, str],
        user: Recipient,
        payload: Dict[str, Any],
    ) -> Tuple[str, str]:
        """
        Render subject and HTML body.

        Raises:
            TemplateNotFound: unknown template name
        """
        try:
            template = MessageTemplate(template)
        except ValueError:
            raise TemplateNotFound(str(template))

        html = self.env.get_template(template.filename).render(user=user, **payload)
        title = (payload.get("task") or {}).get("title", "")
        subject = SUBJECTS[template].format(title=title)
        return subject, html

    def _build_message(self, to: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.config.SMTP_FROM
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self._msgid_domain)
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(
                self.config.SMTP_HOST,
                self.config.SMTP_PORT,
                timeout=self.config.DELIVERY_TIMEOUT_SECONDS,
            ) as smtp:
                if self.config.SMTP_USE_TLS:
                    smtp.starttls()
                if self.config.SMTP_USER:
                    smtp.login(self.config.SMTP_USER, self.config.SMTP_PASSWORD)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailure(f"SMTP delivery failed: {e}")

    async def send(
        self,
        template: Union[MessageTemplate, str],
        user: Recipient,
        payload: Dict[str, Any],
    ) -> DeliveryResult:
        try:
            subject, html = self.render(template, user, payload)
        except TemplateNotFound:
            return DeliveryResult(success=False, error=f"Template '{template}' not found")
        except TemplateError as e:
            logger.exception(f"Failed to render template '{template}': {e}")
            return DeliveryResult(success=False, error=f"Template rendering failed: {e}")

        message = self._build_message(user.email, subject, html)
        message_id = message["Message-ID"]

        if self.dry_run:
            logger.info(
                f"[dry-run] Email '{subject}' to {user.email} ({len(html)} bytes) id={message_id}"
            )
            return DeliveryResult(success=True, message_id=message_id)

        # smtplib is blocking
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_sync, message)
        except DeliveryFailure as e:
            return DeliveryResult(success=False, error=e.message)

        logger.info(f"Email '{subject}' sent to {user.email} id={message_id}")
        return DeliveryResult(success=True, message_id=message_id)
