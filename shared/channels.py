"""
Web Push notification channel.

Wraps the Web Push provider (pywebpush) behind an async ``send`` that
classifies every outcome:
- success
- "gone" (404/410) -> PermanentDeliveryFailure, the subscription must be removed
- anything else, including timeouts -> TransientDeliveryFailure

Design decisions:
- pywebpush is a blocking HTTP client, so each call runs in a worker
  thread under a bounded ``asyncio.wait_for`` timeout
- Sends are tracked for test assertions, like the other channels
- The sender callable is injectable so tests never touch the network
"""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import requests
from pywebpush import WebPushException, webpush

from shared.config import Settings, get_settings
from shared.errors import PermanentDeliveryFailure, TransientDeliveryFailure
from shared.models import PushSubscription, utcnow

logger = logging.getLogger("push_channel")

# Provider status codes meaning the subscription no longer exists
GONE_STATUS_CODES = frozenset({404, 410})

PushSender = Callable[..., Any]


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    FAILED = "failed"


@dataclass
class PushResult:
    """
    Result of one push send attempt to one device.

    Captures outcome and metadata for debugging and testing.
    """
    outcome: DeliveryOutcome
    subscription_id: str
    user_id: str
    endpoint: str
    payload: dict
    status_code: Optional[int] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} PUSH to {self.user_id} ({self.endpoint}): {self.payload.get('title')}"


class PushChannel:
    """
    Web Push channel.

    Delivers JSON payloads to browser push endpoints with VAPID
    authentication and tracks every attempt.
    """

    def __init__(self, settings: Optional[Settings] = None, sender: Optional[PushSender] = None):
        """
        Initialize the push channel.

        Args:
            settings: VAPID keys and timeout (defaults to process settings)
            sender: Callable with pywebpush's ``webpush`` signature, for testing
        """
        self.settings = settings or get_settings()
        self.sender = sender or webpush
        self.sent_messages: deque[PushResult] = deque(maxlen=self.settings.history_limit)

    @property
    def enabled(self) -> bool:
        return self.settings.push_enabled

    def _send_blocking(self, subscription: PushSubscription, body: str) -> Any:
        return self.sender(
            subscription_info=subscription.subscription_info(),
            data=body,
            vapid_private_key=self.settings.vapid_private_key,
            vapid_claims=dict(self.settings.vapid_claims),
            timeout=self.settings.push_timeout_seconds,
        )

    async def send(self, subscription: PushSubscription, payload: dict) -> PushResult:
        """
        Send one payload to one subscription.

        Returns:
            PushResult for a delivered message

        Raises:
            PermanentDeliveryFailure: the endpoint answered 404/410
            TransientDeliveryFailure: any other failure, timeouts included
        """
        body = json.dumps(payload)
        timeout = self.settings.push_timeout_seconds

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_blocking, subscription, body),
                timeout=timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                self._record(subscription, payload, DeliveryOutcome.GONE, status_code, str(e))
                raise PermanentDeliveryFailure(
                    f"Subscription {subscription.id} is gone ({status_code})",
                    status_code=status_code,
                ) from e
            self._record(subscription, payload, DeliveryOutcome.FAILED, status_code, str(e))
            raise TransientDeliveryFailure(
                f"Push provider rejected {subscription.id}: {e}",
                status_code=status_code,
            ) from e
        except asyncio.TimeoutError as e:
            self._record(subscription, payload, DeliveryOutcome.FAILED, None, "timeout")
            raise TransientDeliveryFailure(
                f"Push to {subscription.id} timed out after {timeout}s"
            ) from e
        except requests.exceptions.RequestException as e:
            self._record(subscription, payload, DeliveryOutcome.FAILED, None, str(e))
            raise TransientDeliveryFailure(f"Push provider unreachable: {e}") from e

        result = self._record(subscription, payload, DeliveryOutcome.DELIVERED)
        logger.info(f"[PUSH] To: {subscription.user_id} | Title: {payload.get('title')}")
        return result

    def _record(
        self,
        subscription: PushSubscription,
        payload: dict,
        outcome: DeliveryOutcome,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> PushResult:
        result = PushResult(
            outcome=outcome,
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            endpoint=subscription.endpoint,
            payload=payload,
            status_code=status_code,
            error=error,
        )
        self.sent_messages.append(result)
        return result

    def get_sent_count(self) -> int:
        """Get the number of attempts made (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[PushResult]:
        return [m for m in self.sent_messages if m.success]

    def clear_history(self):
        """Clear sent message history (useful between tests)."""
        self.sent_messages.clear()

    def find_message_to(self, user_id: str) -> Optional[PushResult]:
        """Find an attempt made to a specific user."""
        for msg in self.sent_messages:
            if msg.user_id == user_id:
                return msg
        return None
