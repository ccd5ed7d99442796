"""Digest message replacement protocol."""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from cryptodigest.core.errors import DeleteFailedError
from cryptodigest.models.metric import SentMessage
from cryptodigest.services.messaging import MessagingTransport
from cryptodigest.utils.time import is_different_day

logger = logging.getLogger(__name__)


class ReplacePolicy(str, Enum):
    """
    When the previous digest is deleted before sending a new one.

    ALWAYS keeps exactly one digest live. STALE_ONLY leaves a digest from
    the current day in the chat; the record then points at the new digest
    only, so the one left behind is never deleted by a later refresh.
    """
    ALWAYS = "always"
    STALE_ONLY = "stale_only"


class MessageLifecycleManager:
    """Delete-old / send-new protocol for a subscriber's digest."""

    def __init__(self, transport: MessagingTransport, timezone_str: Optional[str] = None):
        self.transport = transport
        self.timezone_str = timezone_str

    def is_stale(self, last_timestamp: Optional[float], now: Optional[datetime] = None) -> bool:
        """True when the message was sent on an earlier calendar day than now."""
        return is_different_day(last_timestamp, now=now, timezone_str=self.timezone_str)

    async def discard(self, subscriber_id: int, message_id: int) -> bool:
        """
        Delete a message, logging and swallowing failures.

        Returns:
            True if the message was deleted
        """
        try:
            await self.transport.delete(subscriber_id, message_id)
            logger.debug(f"Deleted message {message_id} for {subscriber_id}")
            return True
        except DeleteFailedError as e:
            logger.warning(f"Failed to delete message {message_id} for {subscriber_id}: {e}")
            return False

    async def prune_stale(
        self,
        subscriber_id: int,
        message_id: int,
        timestamp: Optional[float],
        now: Optional[datetime] = None
    ) -> bool:
        """Delete a message only if it is from an earlier day."""
        if not self.is_stale(timestamp, now=now):
            return False
        return await self.discard(subscriber_id, message_id)

    async def replace(
        self,
        subscriber_id: int,
        previous_message_id: Optional[int],
        text: str,
        previous_timestamp: Optional[float] = None,
        policy: ReplacePolicy = ReplacePolicy.ALWAYS
    ) -> SentMessage:
        """
        Replace a subscriber's previous digest with new text.

        The previous message is deleted first (under STALE_ONLY only when it
        is from an earlier day); deletion failures never block the send.

        Returns:
            Identity of the new message

        Raises:
            DeliveryFailedError: If the new message could not be sent
        """
        if previous_message_id is not None:
            if policy == ReplacePolicy.STALE_ONLY:
                await self.prune_stale(subscriber_id, previous_message_id, previous_timestamp)
            else:
                await self.discard(subscriber_id, previous_message_id)

        sent = await self.transport.send(subscriber_id, text)
        logger.debug(f"Sent digest {sent.message_id} to {subscriber_id}")
        return sent
