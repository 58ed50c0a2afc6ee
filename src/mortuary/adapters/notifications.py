"""Redis adapter for publishing staff notifications following Cosmic Python pattern."""

import abc
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import redis

import config

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    category: str
    message: str
    case_code: Optional[str] = None
    recipients: List[str] = field(default_factory=list)  # roles or user ids
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _serialize_notification(notification: Notification) -> str:
    """Serialize notification to JSON, handling datetime objects."""
    payload = asdict(notification)

    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()

    return json.dumps(payload)


class AbstractNotifier(abc.ABC):
    """Fire-and-forget notification channel; failures never reach the caller."""

    def notify(self, category: str, message: str, case_code: Optional[str] = None,
               recipients: Optional[List[str]] = None) -> None:
        notification = Notification(
            category=category,
            message=message,
            case_code=case_code,
            recipients=list(recipients or []),
        )
        try:
            self._send(notification)
        except Exception as e:
            self.logger.error(f"Failed to send {category} notification for case {case_code}: {e}")
            # Don't re-raise - external failures shouldn't break the flow

    @property
    def logger(self) -> logging.Logger:
        return getattr(self, "_logger", None) or logger

    @abc.abstractmethod
    def _send(self, notification: Notification) -> None:
        raise NotImplementedError


class RedisNotifier(AbstractNotifier):
    def __init__(self, client=None, channel: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        self.client = client or redis.Redis(**config.get_redis_host_and_port())
        self.channel = channel or config.get_notification_channel()
        self._logger = logger

    def _send(self, notification: Notification) -> None:
        self.logger.info("publishing: channel=%s, notification=%s", self.channel, notification)
        self.client.publish(self.channel, _serialize_notification(notification))
