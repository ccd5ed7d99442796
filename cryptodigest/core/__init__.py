"""Core package initialization."""
from cryptodigest.core.config import settings
from cryptodigest.core.redis import get_redis, close_redis

__all__ = ["settings", "get_redis", "close_redis"]
