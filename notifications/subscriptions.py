"""
Push subscription registry.

A browser registers its Web Push endpoint once per device; registering the
same endpoint again rebinds it instead of creating a duplicate.
"""

import logging
from typing import Optional

from shared.data_store import DataStore, get_data_store
from shared.errors import InvalidRequest, NotFound
from shared.models import Actor, PushSubscription

logger = logging.getLogger("push_delivery")


class PushSubscriptionRegistry:
    """Subscribe and unsubscribe devices for the calling user."""

    def __init__(self, data_store: Optional[DataStore] = None):
        self.data_store = data_store or get_data_store()

    def subscribe(self, actor: Actor, endpoint: str, auth_key: str, p256dh_key: str) -> PushSubscription:
        """
        Register (or rebind) a device endpoint for the actor.

        Raises:
            InvalidRequest: If the endpoint or either key is missing
        """
        endpoint = (endpoint or "").strip()
        if not endpoint or not auth_key or not p256dh_key:
            raise InvalidRequest("Push subscription needs an endpoint and both keys")

        subscription = self.data_store.upsert_push_subscription(PushSubscription(
            tenant_id=actor.tenant_id,
            user_id=actor.user_id,
            endpoint=endpoint,
            auth_key=auth_key,
            p256dh_key=p256dh_key,
        ))
        logger.info(f"Push subscription {subscription.id} registered for {actor.user_id}")
        return subscription

    def unsubscribe(self, actor: Actor, endpoint: str) -> None:
        """
        Raises:
            NotFound: If the actor has no subscription for this endpoint
        """
        if not self.data_store.delete_push_subscription_by_endpoint(actor.tenant_id, actor.user_id, endpoint):
            raise NotFound("Push subscription not found")
        logger.info(f"Push subscription removed for {actor.user_id}")

    def list_for(self, actor: Actor) -> list[PushSubscription]:
        return self.data_store.get_push_subscriptions(actor.tenant_id, actor.user_id)
