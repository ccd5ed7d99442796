"""Services package initialization."""
from cryptodigest.services.subscription_store import SubscriptionStore, get_subscription_store
from cryptodigest.services.message_lifecycle import MessageLifecycleManager, ReplacePolicy
from cryptodigest.services.messaging import MessagingTransport, TelegramTransport
from cryptodigest.services.metrics import compute_metrics, collect_metrics

__all__ = [
    "SubscriptionStore",
    "get_subscription_store",
    "MessageLifecycleManager",
    "ReplacePolicy",
    "MessagingTransport",
    "TelegramTransport",
    "compute_metrics",
    "collect_metrics"
]
