import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import requests
from exponent_server_sdk import (
    DeviceNotRegisteredError,
    PushClient,
    PushMessage,
    PushServerError,
)
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from config import get_settings
from db import AsyncClient, get_supabase
from models import Role

logger = logging.getLogger(__name__)


# --- Side-effect senders ---

@dataclass(frozen=True)
class SendResult:
    """Outcome of a best-effort email or push send.

    Senders never raise; the caller decides how to log a failure.
    """

    ok: bool
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def success(cls) -> "SendResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "SendResult":
        return cls(ok=False, error=error)

    @classmethod
    def skip(cls, reason: str) -> "SendResult":
        return cls(ok=False, error=reason, skipped=True)


def send_email(to_email: str, subject: str, content: str) -> SendResult:
    settings = get_settings()
    if not to_email:
        return SendResult.skip("no recipient address")
    if not settings.smtp_configured:
        logger.info("SMTP not configured, not sending '%s' to %s", subject, to_email)
        return SendResult.skip("smtp not configured")

    msg = EmailMessage()
    msg.set_content(content)
    msg["Subject"] = subject
    msg["From"] = settings.smtp_sender
    msg["To"] = to_email

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_pass)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        return SendResult.failure(f"{type(exc).__name__}: {exc}")

    logger.info("Email sent to %s: %s", to_email, subject)
    return SendResult.success()


def send_push_notification(token: Optional[str], title: str, message: str, data: Optional[dict] = None) -> SendResult:
    if not token:
        return SendResult.skip("no push token")

    session_args = {}
    access_token = get_settings().expo_access_token
    if access_token:
        session_args["access_token"] = access_token

    try:
        response = PushClient(**session_args).publish(
            PushMessage(to=token, title=title, body=message, data=data)
        )
    except PushServerError as exc:
        # Likely a formatting/validation error on Expo's side
        return SendResult.failure(f"push server error: {exc.errors}")
    except (requests.exceptions.RequestException, ValueError) as exc:
        return SendResult.failure(f"push connection error: {exc}")

    try:
        response.validate_response()
    except DeviceNotRegisteredError:
        return SendResult.failure(f"device not registered: {token}")
    except Exception as exc:
        return SendResult.failure(f"push ticket error: {exc}")

    logger.info("Push notification sent to %s: %s", token, title)
    return SendResult.success()


def log_send_result(result: SendResult, what: str) -> None:
    if result.ok:
        return
    if result.skipped:
        logger.info("%s skipped: %s", what, result.error)
    else:
        logger.warning("%s failed: %s", what, result.error)


# --- Request authentication ---

class CurrentUser(BaseModel):
    """Authenticated caller, resolved once per request."""

    id: str
    role: str
    status: str
    name: Optional[str] = None
    email: Optional[str] = None
    push_token: Optional[str] = None


async def get_current_user(
    authorization: Optional[str] = Header(None),
    sbase: AsyncClient = Depends(get_supabase),
) -> CurrentUser:
    """
    Verifies the bearer token with Supabase Auth and loads the caller's profile.
    The profile row supplies role and status.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization Header")

    token = authorization.replace("Bearer ", "")

    try:
        user_res = await sbase.auth.get_user(token)
    except Exception as e:
        logger.info("Token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Authentication Failed")

    if not user_res or not user_res.user:
        raise HTTPException(status_code=401, detail="Invalid Token")

    profile_res = await sbase.table("userprofile").select("id, name, email, role, status, push_token").eq("id", user_res.user.id).execute()
    if not profile_res.data:
        raise HTTPException(status_code=403, detail="User profile not found. Please register.")

    profile = profile_res.data[0]
    return CurrentUser(
        id=str(profile["id"]),
        role=profile.get("role") or Role.CUSTOMER,
        status=profile.get("status") or "",
        name=profile.get("name"),
        email=profile.get("email"),
        push_token=profile.get("push_token"),
    )


def require_role(*roles: str):
    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail=f"{' or '.join(roles)} role required")
        return user

    return dependency


require_customer = require_role(Role.CUSTOMER)
require_technician = require_role(Role.TECHNICIAN)
require_admin = require_role(Role.ADMIN)
