"""Outbound messaging transport."""
import logging
from abc import ABC, abstractmethod

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import RetryAfter, TelegramError, TimedOut
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from cryptodigest.core.errors import DeliveryFailedError, DeleteFailedError
from cryptodigest.models.metric import SentMessage

logger = logging.getLogger(__name__)


class MessagingTransport(ABC):
    """Abstract base class for message delivery."""

    @abstractmethod
    async def send(self, recipient_id: int, text: str) -> SentMessage:
        """
        Send a text message.

        Raises:
            DeliveryFailedError: If the message was not delivered
        """
        pass

    @abstractmethod
    async def delete(self, recipient_id: int, message_id: int) -> None:
        """
        Delete a previously sent message.

        Raises:
            DeleteFailedError: If the message could not be deleted
        """
        pass


class TelegramTransport(MessagingTransport):
    """Telegram Bot API implementation of the messaging transport."""

    def __init__(self, bot: Bot, parse_mode: str = ParseMode.MARKDOWN):
        self.bot = bot
        self.parse_mode = parse_mode

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((RetryAfter, TimedOut)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _send_message(self, recipient_id: int, text: str):
        return await self.bot.send_message(
            chat_id=recipient_id,
            text=text,
            parse_mode=self.parse_mode
        )

    async def send(self, recipient_id: int, text: str) -> SentMessage:
        """Send a Markdown message and return its identity."""
        try:
            message = await self._send_message(recipient_id, text)
        except TelegramError as e:
            raise DeliveryFailedError(f"Telegram send failed: {e}", subscriber_id=recipient_id) from e

        return SentMessage(
            message_id=message.message_id,
            timestamp=int(message.date.timestamp())
        )

    async def delete(self, recipient_id: int, message_id: int) -> None:
        """Delete a message from the recipient's chat."""
        try:
            deleted = await self.bot.delete_message(chat_id=recipient_id, message_id=message_id)
        except TelegramError as e:
            raise DeleteFailedError(
                f"Telegram delete of message {message_id} failed: {e}", subscriber_id=recipient_id
            ) from e

        if not deleted:
            raise DeleteFailedError(
                f"Telegram refused to delete message {message_id}", subscriber_id=recipient_id
            )
