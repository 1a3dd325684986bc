"""Subscription webhook handling: maps Stripe subscription state to plan tiers."""
import logging
import os
from typing import Any, Optional

import stripe
from sqlalchemy.orm import Session

from models.users import User
from services.plans import Tier

logger = logging.getLogger(__name__)

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_PRO_PRICE_ID = os.getenv("STRIPE_PRO_PRICE_ID")
STRIPE_DEV_PRICE_ID = os.getenv("STRIPE_DEV_PRICE_ID")


class InvalidSignature(Exception):
    """The webhook payload could not be verified."""


def _get(obj: Any, *path: str) -> Optional[Any]:
    """Walk nested Stripe objects / dicts, returning None when a key is missing."""
    for key in path:
        try:
            obj = obj[key]
        except (KeyError, IndexError, TypeError):
            return None
    return obj


def plan_from_price_id(price_id: Optional[str]) -> Optional[Tier]:
    """Map a Stripe price to a paid tier."""
    if price_id and price_id == STRIPE_PRO_PRICE_ID:
        return Tier.PRO
    if price_id and price_id == STRIPE_DEV_PRICE_ID:
        return Tier.DEV
    return None


def _first_price_id(subscription: Any) -> Optional[str]:
    return _get(subscription, "items", "data", 0, "price", "id")


def construct_event(payload: bytes, signature: str) -> Any:
    """Verify the webhook signature and parse the event."""
    try:
        return stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise InvalidSignature(str(e)) from e


def find_user_by_customer(db: Session, customer_id: Optional[str]) -> Optional[User]:
    if not customer_id:
        return None
    return db.query(User).filter(User.stripe_customer_id == customer_id).first()


def set_user_plan(
    db: Session,
    user: User,
    tier: Tier,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> User:
    """Change a user's plan. Downgrading to free drops the subscription id."""
    user.plan = tier.value
    if customer_id:
        user.stripe_customer_id = customer_id
    user.stripe_subscription_id = subscription_id if tier is not Tier.FREE else None

    db.commit()
    db.refresh(user)

    logger.info(f"User {user.username} is now on plan {tier.value}")
    return user


def handle_event(db: Session, event: Any) -> None:
    """
    Apply one verified subscription event.

    Args:
        db: Database session
        event: Verified Stripe event
    """
    event_type = _get(event, "type")
    data = _get(event, "data", "object")

    if event_type == "checkout.session.completed":
        customer_id = _get(data, "customer")
        subscription_id = _get(data, "subscription")
        if not subscription_id:
            return

        subscription = stripe.Subscription.retrieve(subscription_id)
        username = _get(subscription, "metadata", "username")
        tier = plan_from_price_id(_first_price_id(subscription))
        user = db.query(User).filter(User.username == username).first() if username else None

        if user and tier:
            set_user_plan(db, user, tier, customer_id, subscription_id)

    elif event_type == "customer.subscription.updated":
        user = find_user_by_customer(db, _get(data, "customer"))
        if not user:
            return

        status = _get(data, "status")
        if status == "active":
            tier = plan_from_price_id(_first_price_id(data))
            if tier:
                set_user_plan(db, user, tier, _get(data, "customer"), _get(data, "id"))
        elif status in ("canceled", "unpaid"):
            set_user_plan(db, user, Tier.FREE)

    elif event_type == "customer.subscription.deleted":
        user = find_user_by_customer(db, _get(data, "customer"))
        if user:
            set_user_plan(db, user, Tier.FREE)

    else:
        logger.debug(f"Ignoring webhook event {event_type}")
