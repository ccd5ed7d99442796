"""Data models produced on every refresh cycle."""
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class SymbolMetric:
    """Price and multi-window percentage changes for one symbol."""
    symbol: str
    price: float
    change_percent_24h: float
    change_percent_30d: float
    change_percent_year: float
    change_percent_all_time: float


@dataclass
class SentMessage:
    """Identity of a delivered message."""
    message_id: int
    timestamp: int  # seconds since epoch, as reported by the transport


@dataclass
class TickReport:
    """Outcome of one pass over all subscribers."""
    refreshed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.refreshed) + len(self.skipped) + len(self.failed)
