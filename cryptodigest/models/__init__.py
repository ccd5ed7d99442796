"""Models package initialization."""
from cryptodigest.models.subscription import SubscriptionRecord
from cryptodigest.models.metric import SymbolMetric, SentMessage, TickReport

__all__ = ["SubscriptionRecord", "SymbolMetric", "SentMessage", "TickReport"]
