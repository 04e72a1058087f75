"""
Channel Dispatcher

Sends one rendered message over one channel. Email goes through the Resend
HTTP API; without credentials outside production an in-memory test
transport keeps the pipeline exercisable. SMS and push are contract stubs.

Every sender returns a DispatchResult; transport failures never raise out of
send().
"""

import logging
import re
import uuid
from typing import Dict, List, Optional

import httpx

from core.config import MailConfig

from .models import Channel, DispatchResult
from .protocols import ChannelConfigurationError, ChannelSenderProtocol

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]+>")


def html_to_text(html: str) -> str:
    """Plain-text alternative for HTML bodies"""
    return " ".join(_TAG_PATTERN.sub(" ", html).split())


class ResendEmailSender:
    """Email over the Resend API"""

    name = "resend"

    def __init__(self, config: MailConfig, client: Optional[httpx.AsyncClient] = None):
        self.from_address = config.from_address
        # HTTP client - support DI
        if client is not None:
            self.client = client
        else:
            self.client = httpx.AsyncClient(
                base_url=config.resend_api_url,
                headers={
                    "Authorization": f"Bearer {config.resend_api_key}",
                    "Content-Type": "application/json",
                },
                timeout=float(config.http_timeout),
            )

    async def send(self, recipient: str, subject: Optional[str], content: str) -> DispatchResult:
        email_data = {
            "from": self.from_address,
            "to": [recipient],
            "subject": subject or "Notification",
            "html": content,
            "text": html_to_text(content),
        }

        try:
            response = await self.client.post("/emails", json=email_data)
        except httpx.HTTPError as e:
            logger.error(f"Email transport error for {recipient}: {e}")
            return DispatchResult(success=False, error=f"Email transport error: {e}")

        if response.status_code == 200:
            message_id = response.json().get("id")
            logger.info(f"Email sent to {recipient} ({message_id})")
            return DispatchResult(success=True, message_id=message_id)

        error_message = f"Email API error: {response.status_code} - {response.text}"
        logger.error(error_message)
        return DispatchResult(success=False, error=error_message)

    async def verify(self) -> bool:
        """Credentials check against the domains endpoint"""
        try:
            response = await self.client.get("/domains")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Email transport check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryEmailSender:
    """Disposable test transport: records messages instead of sending them"""

    name = "test-transport"

    def __init__(self):
        self.outbox: List[Dict[str, Optional[str]]] = []

    async def send(self, recipient: str, subject: Optional[str], content: str) -> DispatchResult:
        message_id = f"test_{uuid.uuid4().hex}"
        self.outbox.append(
            {"id": message_id, "to": recipient, "subject": subject, "html": content}
        )
        logger.info(f"Test transport captured email to {recipient}: {subject!r} ({message_id})")
        return DispatchResult(success=True, message_id=message_id)

    async def verify(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class UnconfiguredChannelSender:
    """Contract stub for channels without a transport (sms, push)"""

    name = "unconfigured"

    def __init__(self, channel: Channel):
        self.channel = channel

    async def send(self, recipient: str, subject: Optional[str], content: str) -> DispatchResult:
        logger.warning(f"{self.channel.value} transport not configured; message to {recipient} not sent")
        return DispatchResult(success=False, error=f"{self.channel.value} transport not configured")

    async def verify(self) -> bool:
        return False

    async def close(self) -> None:
        pass


def build_email_sender(config: MailConfig, is_production: bool) -> ChannelSenderProtocol:
    """Resend when credentials exist, the test transport otherwise (never in production)"""
    if config.has_credentials:
        return ResendEmailSender(config)
    if is_production:
        raise ChannelConfigurationError("RESEND_API_KEY is required in production")
    logger.warning("Resend API key not configured. Using in-memory test transport for email.")
    return InMemoryEmailSender()


class ChannelDispatcher:
    """Routes a message to the sender registered for its channel"""

    # Channels delivered synchronously during a campaign send
    IMMEDIATE_CHANNELS = frozenset({Channel.EMAIL})

    def __init__(self, senders: Dict[Channel, ChannelSenderProtocol]):
        self.senders = dict(senders)
        for channel in Channel:
            self.senders.setdefault(channel, UnconfiguredChannelSender(channel))

    @classmethod
    def with_email(cls, email_sender: ChannelSenderProtocol) -> "ChannelDispatcher":
        return cls({Channel.EMAIL: email_sender})

    @property
    def email_sender(self) -> ChannelSenderProtocol:
        return self.senders[Channel.EMAIL]

    def dispatches_immediately(self, channel: Channel) -> bool:
        return channel in self.IMMEDIATE_CHANNELS

    async def send(
        self,
        channel: Channel,
        recipient: str,
        subject: Optional[str],
        content: str,
    ) -> DispatchResult:
        if not recipient:
            return DispatchResult(success=False, error="Recipient address missing")
        sender = self.senders[channel]
        try:
            return await sender.send(recipient, subject, content)
        except Exception as e:
            logger.error(f"{channel.value} sender {sender.name} raised for {recipient}: {e}")
            return DispatchResult(success=False, error=str(e))

    async def verify_email(self) -> bool:
        return await self.email_sender.verify()

    async def close(self) -> None:
        for sender in self.senders.values():
            await sender.close()
