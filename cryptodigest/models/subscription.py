"""Subscriber record model and its Redis hash encoding."""
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional


# Hash field names
FIELD_SUBSCRIBER_ID = "subscriber_id"
FIELD_DISPLAY_NAME = "display_name"
FIELD_WATCH_LIST = "watch_list"
FIELD_LAST_MESSAGE_ID = "last_message_id"
FIELD_LAST_MESSAGE_TIMESTAMP = "last_message_timestamp"

RECORD_FIELDS = (
    FIELD_DISPLAY_NAME,
    FIELD_WATCH_LIST,
    FIELD_LAST_MESSAGE_ID,
    FIELD_LAST_MESSAGE_TIMESTAMP,
)


def normalize_watch_list(symbols) -> List[str]:
    """Uppercase symbols and drop duplicates, keeping first-seen order."""
    seen = []
    for symbol in symbols or []:
        symbol = str(symbol).strip().upper()
        if symbol and symbol not in seen:
            seen.append(symbol)
    return seen


def encode_field(name: str, value) -> str:
    """Encode a single record field for storage in a Redis hash."""
    if name == FIELD_WATCH_LIST:
        return json.dumps(normalize_watch_list(value))
    return str(value)


@dataclass
class SubscriptionRecord:
    """One subscriber's watch-list and last delivered digest."""
    subscriber_id: int
    display_name: Optional[str] = None
    watch_list: List[str] = field(default_factory=list)
    last_message_id: Optional[int] = None
    last_message_timestamp: Optional[int] = None

    @property
    def has_watch_list(self) -> bool:
        return bool(self.watch_list)

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "SubscriptionRecord":
        """Build a record from a decoded Redis hash."""
        raw_watch_list = data.get(FIELD_WATCH_LIST)
        message_id = data.get(FIELD_LAST_MESSAGE_ID)
        timestamp = data.get(FIELD_LAST_MESSAGE_TIMESTAMP)

        return cls(
            subscriber_id=int(data[FIELD_SUBSCRIBER_ID]),
            display_name=data.get(FIELD_DISPLAY_NAME) or None,
            watch_list=normalize_watch_list(json.loads(raw_watch_list)) if raw_watch_list else [],
            last_message_id=int(message_id) if message_id else None,
            last_message_timestamp=int(timestamp) if timestamp else None,
        )
