"""Exception hierarchy shared by the broadcast engine and its collaborators."""
from typing import Optional


class DigestError(Exception):
    """Base error carrying the subscriber and symbol it relates to."""

    def __init__(
        self,
        message: str,
        *,
        subscriber_id: Optional[int] = None,
        symbol: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.subscriber_id = subscriber_id
        self.symbol = symbol

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        context = []
        if self.subscriber_id is not None:
            context.append(f"subscriber={self.subscriber_id}")
        if self.symbol is not None:
            context.append(f"symbol={self.symbol}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class MetricComputationError(DigestError):
    """A historical close needed for a percentage is missing or zero."""
    pass


class MarketDataError(DigestError):
    """Market-data source failed."""
    pass


class QuoteUnavailableError(MarketDataError):
    """Current price or 24h statistic could not be fetched."""
    pass


class HistoryUnavailableError(MarketDataError):
    """Historical close could not be fetched."""
    pass


class TransportError(DigestError):
    """Messaging transport failed."""
    pass


class DeliveryFailedError(TransportError):
    """Sending a message failed."""
    pass


class DeleteFailedError(TransportError):
    """Deleting a message failed."""
    pass


class StoreError(DigestError):
    """Subscription store failed."""
    pass


class CycleTimeoutError(DigestError):
    """A subscriber's refresh cycle did not finish in time."""
    pass
