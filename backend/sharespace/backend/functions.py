"""Server-side functions invoked by name (outbound email)."""

from __future__ import annotations

import html
import logging
from typing import Any, Awaitable, Callable, Mapping

import httpx

from sharespace.backend.email_client import ResendClient
from sharespace.core.config import Settings
from sharespace.core.errors import NotFoundError, ServiceUnavailableError, ValidationFailed
from sharespace.models.enums import AuthEmailType


log = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]

_BODY_STYLE = "font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;"
_P_STYLE = "color: #4a4a4a; font-size: 16px;"


def render_auth_email(kind: AuthEmailType, name: str) -> tuple[str, str]:
    """Returns (subject, html) for a registration or login notice."""
    who = html.escape(name or "there")
    if kind == AuthEmailType.registration:
        subject = "Welcome to ShareSpace - Registration Successful!"
        body = (
            f'<h1 style="color: #1a1a1a;">Welcome to ShareSpace, {who}!</h1>'
            f'<p style="{_P_STYLE}">Your registration was successful. '
            "You can now browse products from fellow students, list your own items, "
            "chat with buyers and sellers, and leave feedback.</p>"
        )
    else:
        subject = "Login Successful - ShareSpace"
        body = (
            f'<h1 style="color: #1a1a1a;">Welcome back, {who}!</h1>'
            f'<p style="{_P_STYLE}">You have successfully logged into your ShareSpace account. '
            "If this wasn't you, please reset your password.</p>"
        )
    footer = f'<p style="{_P_STYLE}">Best regards,<br>The ShareSpace Team</p>'
    return subject, f'<div style="{_BODY_STYLE}">{body}{footer}</div>'


class FunctionsService:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._email: ResendClient | None = None
        self._handlers: dict[str, Handler] = {
            "send-auth-email": self._send_auth_email,
        }

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def _email_client(self) -> ResendClient:
        if self._email is None:
            if not self._settings.RESEND_API_KEY:
                raise ServiceUnavailableError("RESEND_API_KEY is not set")
            self._email = ResendClient(
                self._settings.RESEND_API_KEY,
                base_url=self._settings.RESEND_BASE_URL,
                max_tries=self._settings.RESEND_MAX_RETRIES,
                transport=self._transport,
            )
        return self._email

    async def aclose(self) -> None:
        if self._email is not None:
            await self._email.aclose()
            self._email = None

    async def invoke(self, name: str, payload: Mapping[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise NotFoundError(f"Unknown function: {name}")
        return await handler(payload)

    async def _send_auth_email(self, payload: Mapping[str, Any]) -> dict:
        email = str(payload.get("email") or "").strip()
        if not email:
            raise ValidationFailed("email is required")
        try:
            kind = AuthEmailType(payload.get("type"))
        except ValueError as e:
            raise ValidationFailed("type must be 'registration' or 'login'") from e

        subject, body = render_auth_email(kind, str(payload.get("name") or ""))
        log.info("[functions] sending %s email to %s", kind.value, email)
        data = await self._email_client().send_email(
            sender=self._settings.EMAIL_FROM,
            to=[email],
            subject=subject,
            html=body,
        )
        return {"success": True, "id": data.get("id")}
