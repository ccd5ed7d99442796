"""Workers package initialization."""
from cryptodigest.workers.digest_worker import DigestWorker

__all__ = ["DigestWorker"]
