"""
Notification transports, one per delivery channel.

Every transport exposes ``send(target_actor_id, title, body, channel, meta=None)``
and raises on failure; ``TimeoutError`` signals a bounded wait that expired.
Transports open their own DB session from the injected session factory, the
same way the push sender looks up device tokens.
"""
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional
import json
import logging
import os
import smtplib
import ssl

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ConnectTimeoutError, ReadTimeoutError
from firebase_admin import messaging, credentials, initialize_app, _apps  # type: ignore
from firebase_admin import exceptions as firebase_exceptions
from sqlalchemy.orm import Session

from carecoord.core.config import settings as core_settings
from .config import settings
from .repository import create_notification, get_contact_address

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class ChannelUnavailableError(RuntimeError):
    """The channel cannot deliver to this actor (no address, not configured)."""


class NotificationTransport:
    channel: str = ""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def send(
        self,
        target_actor_id: str,
        title: str,
        body: str,
        channel: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError

    def _resolve_address(self, target_actor_id: str) -> str:
        db = self.session_factory()
        try:
            address = get_contact_address(db, target_actor_id, self.channel)
        finally:
            db.close()
        if not address:
            raise ChannelUnavailableError(f"no {self.channel} contact for actor {target_actor_id}")
        return address


class InAppTransport(NotificationTransport):
    """Persists a Notification row that the app inbox lists."""
    channel = "in_app"

    def send(self, target_actor_id, title, body, channel, meta=None) -> None:
        db = self.session_factory()
        try:
            create_notification(db, user_id=target_actor_id, title=title, message=body, meta=meta)
        finally:
            db.close()


def _ensure_firebase_initialized() -> bool:
    if _apps:
        return True

    proj = settings.FCM_PROJECT_ID
    creds_json = settings.FCM_CREDENTIALS_JSON or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not creds_json or creds_json.strip() == "":
        logger.warning("[FCM] No credentials provided - push notifications are disabled")
        return False

    options: Dict[str, Any] = {"httpTimeout": settings.TRANSPORT_TIMEOUT_SECONDS}
    if proj:
        options["projectId"] = proj

    if creds_json.strip().startswith("{"):
        cred = credentials.Certificate(json.loads(creds_json))
    else:
        cred = credentials.Certificate(creds_json)
    initialize_app(cred, options=options)
    logger.info(f"[FCM] Firebase app initialized | project_id={proj}")
    return True


class PushTransport(NotificationTransport):
    """Firebase Cloud Messaging push to the actor's latest registered token."""
    channel = "push"

    def send(self, target_actor_id, title, body, channel, meta=None) -> None:
        if not _ensure_firebase_initialized():
            raise ChannelUnavailableError("FCM is not configured")
        token = self._resolve_address(target_actor_id)

        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (meta or {}).items() if v is not None},
            apns=messaging.APNSConfig(headers={"apns-push-type": "alert", "apns-priority": "10"}),
        )
        try:
            result = messaging.send(message)
        except firebase_exceptions.DeadlineExceededError as e:
            raise TimeoutError(f"FCM send timed out: {e}") from e
        logger.info(f"[FCM] Notification sent: {result}")


class EmailTransport(NotificationTransport):
    """Plain-text e-mail over SMTP (SSL on 465, STARTTLS otherwise)."""
    channel = "email"

    def send(self, target_actor_id, title, body, channel, meta=None) -> None:
        if not core_settings.SMTP_SERVER or not core_settings.FROM_EMAIL:
            raise ChannelUnavailableError("SMTP is not configured")
        to_email = self._resolve_address(target_actor_id)

        msg = MIMEText(body, "plain")
        msg["Subject"] = title
        msg["From"] = core_settings.FROM_EMAIL
        msg["To"] = to_email

        port = int(core_settings.SMTP_PORT or 587)
        timeout = settings.TRANSPORT_TIMEOUT_SECONDS
        context = ssl.create_default_context()
        if port == 465:
            server = smtplib.SMTP_SSL(core_settings.SMTP_SERVER, port, context=context, timeout=timeout)
        else:
            server = smtplib.SMTP(core_settings.SMTP_SERVER, port, timeout=timeout)
        with server:
            if port != 465:
                server.starttls(context=context)
            if core_settings.SMTP_USERNAME and core_settings.SMTP_PASSWORD:
                server.login(core_settings.SMTP_USERNAME, core_settings.SMTP_PASSWORD)
            server.send_message(msg)


class SmsTransport(NotificationTransport):
    """SMS through AWS SNS direct publish."""
    channel = "sms"

    def __init__(self, session_factory: SessionFactory, sns_client=None):
        super().__init__(session_factory)
        self._sns_client = sns_client

    @property
    def sns_client(self):
        if self._sns_client is None:
            timeout = settings.TRANSPORT_TIMEOUT_SECONDS
            self._sns_client = boto3.client(
                "sns",
                region_name=core_settings.AWS_REGION,
                config=BotoConfig(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}),
            )
        return self._sns_client

    def send(self, target_actor_id, title, body, channel, meta=None) -> None:
        phone = self._resolve_address(target_actor_id)
        attributes = {
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        }
        if settings.SNS_SENDER_ID:
            attributes["AWS.SNS.SMS.SenderID"] = {"DataType": "String", "StringValue": settings.SNS_SENDER_ID}
        try:
            self.sns_client.publish(PhoneNumber=phone, Message=f"{title}\n{body}", MessageAttributes=attributes)
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise TimeoutError(f"SNS publish timed out: {e}") from e


def build_transports(session_factory: SessionFactory) -> Dict[str, NotificationTransport]:
    """Default channel -> transport table."""
    return {
        t.channel: t
        for t in (
            InAppTransport(session_factory),
            PushTransport(session_factory),
            EmailTransport(session_factory),
            SmsTransport(session_factory),
        )
    }
