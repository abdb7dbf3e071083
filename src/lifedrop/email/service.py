"""
Outgoing mail: provider backends, the template registry and a rate-limited sender.

Supports SMTP (default), the Resend API and the SendGrid API.
Provider is selected via configuration.
"""

from __future__ import annotations

import hashlib
import ssl
from abc import ABC, abstractmethod
from collections.abc import Callable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

import structlog

from lifedrop.config import get_settings
from lifedrop.email.templates import (
    acceptance_withdrawn,
    donation_request,
    donation_thanks,
    donor_released,
    password_reset,
    request_accepted,
    verify_email,
)
from lifedrop.redis_client import get_optional_redis

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

# Template registry: name -> function returning (subject, html, text)
_TEMPLATE_REGISTRY: dict[str, Callable[..., tuple[str, str, str]]] = {
    "verify_email": verify_email,
    "password_reset": password_reset,
    "donation_request": donation_request,
    "request_accepted": request_accepted,
    "acceptance_withdrawn": acceptance_withdrawn,
    "donor_released": donor_released,
    "donation_thanks": donation_thanks,
}


class BaseEmailProvider(ABC):
    """A delivery backend. ``send`` reports failure by returning False, never by raising."""

    name = "base"

    def __init__(self, from_address: str, from_name: str) -> None:
        self.from_address = from_address
        self.from_name = from_name

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_address}>"

    @abstractmethod
    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        """Hand the message to the backend, raising on any failure."""

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        try:
            await self.deliver(to_email, subject, html_body, text_body)
        except Exception:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return False
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return True


class SMTPProvider(BaseEmailProvider):
    """Plain SMTP through aiosmtplib, with STARTTLS unless disabled."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        super().__init__(from_address, from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = subject
        # Clients pick the last part they can render, so HTML goes second.
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        import aiosmtplib

        await aiosmtplib.send(
            self._build_message(to_email, subject, html_body, text_body),
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.use_tls,
            tls_context=ssl.create_default_context() if self.use_tls else None,
        )


class _HTTPApiProvider(BaseEmailProvider):
    """JSON-over-HTTPS mail APIs authenticated with a bearer key."""

    endpoint = ""
    timeout = 10.0

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        super().__init__(from_address, from_name)
        self.api_key = api_key

    @abstractmethod
    def payload(self, to_email: str, subject: str, html_body: str, text_body: str) -> dict[str, Any]:
        """Request body in the API's own shape."""

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        import httpx

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=self.payload(to_email, subject, html_body, text_body),
            )
            response.raise_for_status()


class ResendProvider(_HTTPApiProvider):
    name = "resend"
    endpoint = "https://api.resend.com/emails"

    def payload(self, to_email: str, subject: str, html_body: str, text_body: str) -> dict[str, Any]:
        return {"from": self.sender, "to": [to_email], "subject": subject, "html": html_body, "text": text_body}


class SendGridProvider(_HTTPApiProvider):
    name = "sendgrid"
    endpoint = "https://api.sendgrid.com/v3/mail/send"

    def payload(self, to_email: str, subject: str, html_body: str, text_body: str) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self.from_address, "name": self.from_name},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text_body},
                {"type": "text/html", "value": html_body},
            ],
        }


def _create_provider() -> BaseEmailProvider:
    """Build the provider named by ``email_provider`` in the settings."""
    settings = get_settings()
    provider_name = settings.email_provider.lower()
    sender = {"from_address": settings.email_from_address, "from_name": settings.email_from_name}

    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            **sender,
        )
    api_keys = {"resend": settings.resend_api_key, "sendgrid": settings.sendgrid_api_key}
    api_providers: dict[str, type[_HTTPApiProvider]] = {"resend": ResendProvider, "sendgrid": SendGridProvider}
    if provider_name in api_providers:
        return api_providers[provider_name](api_key=api_keys[provider_name], **sender)
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """Renders named templates and sends them, capping mail per recipient per hour when Redis is available."""

    RATE_LIMIT_WINDOW = 3600

    def __init__(
        self,
        provider: BaseEmailProvider | None = None,
        redis: Redis | None = None,
        rate_limit_max: int | None = None,
    ) -> None:
        self.provider = provider or _create_provider()
        self._redis = redis
        self.rate_limit_max = rate_limit_max or get_settings().email_rate_limit_per_hour

    async def _within_rate_limit(self, email: str) -> bool:
        if self._redis is None:
            return True
        key = f"email_rate:{hashlib.sha256(email.lower().encode()).hexdigest()}"
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self.RATE_LIMIT_WINDOW)
        return count <= self.rate_limit_max

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """Returns False when the recipient is over the hourly cap or delivery failed."""
        if not await self._within_rate_limit(to):
            logger.warning("email_rate_limited", to=to, subject=subject)
            return False
        return await self.provider.send(to, subject, html_body, text_body)

    async def send_template(
        self,
        to: str,
        template_name: str,
        context: dict[str, Any],
    ) -> bool:
        """
        Render a template and send.

        Args:
            to: Recipient email.
            template_name: A key of the template registry (e.g. "verify_email").
            context: Keyword arguments for the template function.

        Raises:
            ValueError: If the template name is unknown or the context does not fit it.
        """
        template_func = _TEMPLATE_REGISTRY.get(template_name)
        if template_func is None:
            msg = f"Unknown template: {template_name}"
            raise ValueError(msg)

        try:
            subject, html_body, text_body = template_func(**context)
        except TypeError as e:
            msg = f"Bad context for template {template_name}: {e}"
            raise ValueError(msg) from e

        return await self.send_email(to, subject, html_body, text_body)


# Module-level singleton
_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    """Get or create the email service singleton, throttled through Redis when it is configured."""
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService(redis=get_optional_redis())
    return _email_service


def reset_email_service() -> None:
    """Reset the email service singleton (for testing)."""
    global _email_service  # noqa: PLW0603
    _email_service = None
