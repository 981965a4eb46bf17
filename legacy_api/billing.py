"""Entitlement and order state transitions.

Every function here only stages changes on the session it is given; the
caller commits once so that order status, the user's denormalized
subscription fields and the subscriptions row land together.
"""
import logging
from datetime import datetime, timezone

from legacy_api.models import PaymentLog, PaymentOrder, Subscription, User

logger = logging.getLogger(__name__)

ORDER_CREATED = "created"
ORDER_PAID = "paid"
ORDER_FAILED = "failed"

STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"

PLAN_FREE = "free"


def transition_order(order: PaymentOrder, status: str, payment_id: str = None) -> bool:
    """Apply a status from a verified event. Returns False when nothing changed.

    ``paid`` is terminal. A ``failed`` order can still become ``paid`` since
    Razorpay lets the customer retry payment on the same order. Re-applying the
    state an order already holds only fills in a missing payment id.
    """
    if order.status == status:
        if payment_id and not order.payment_id:
            order.payment_id = payment_id
        return False
    if order.status == ORDER_PAID:
        logger.warning(
            "Refusing to move order %s from %s to %s", order.order_id, order.status, status
        )
        return False

    order.status = status
    if payment_id:
        order.payment_id = payment_id
    if status == ORDER_PAID:
        order.verified_at = datetime.now(timezone.utc)
    return True


def _get_or_create_user(db, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        user = User(id=user_id)
        db.add(user)
    return user


def activate_plan(db, user_id: str, plan_id: str, order: PaymentOrder = None,
                  payment_id: str = None, subscription_id: str = None) -> Subscription:
    """Grant ``plan_id`` to the user: user fields and subscriptions row together."""
    user = _get_or_create_user(db, user_id)
    user.subscription = plan_id
    user.subscription_status = STATUS_ACTIVE

    subscription = db.query(Subscription).filter_by(user_id=user_id).first()
    if subscription is None:
        subscription = Subscription(user_id=user_id, plan_id=plan_id)
        db.add(subscription)

    subscription.plan_id = plan_id
    subscription.status = STATUS_ACTIVE
    if order is not None:
        subscription.razorpay_order_id = order.order_id
        subscription.amount = order.amount
    if payment_id:
        subscription.razorpay_payment_id = payment_id
    if subscription_id:
        subscription.razorpay_subscription_id = subscription_id
    return subscription


def select_free_plan(db, user_id: str) -> User:
    user = _get_or_create_user(db, user_id)
    user.subscription = PLAN_FREE
    user.subscription_status = STATUS_ACTIVE
    return user


def cancel_plan(db, user_id: str, subscription_id: str = None) -> User:
    """Drop the user back to free. Local entitlement flip only."""
    user = _get_or_create_user(db, user_id)
    user.subscription = PLAN_FREE
    user.subscription_status = STATUS_CANCELED

    query = db.query(Subscription)
    if subscription_id:
        rows = query.filter(
            (Subscription.user_id == user_id)
            | (Subscription.razorpay_subscription_id == subscription_id)
        ).all()
    else:
        rows = query.filter_by(user_id=user_id).all()
    for row in rows:
        row.status = STATUS_CANCELED
    return user


def mark_renewed(db, user_id: str) -> None:
    user = _get_or_create_user(db, user_id)
    user.subscription_status = STATUS_ACTIVE

    subscription = db.query(Subscription).filter_by(user_id=user_id).first()
    if subscription is not None:
        subscription.status = STATUS_ACTIVE


def audit(db, event_type: str, payload: dict, user_id: str = None, processed: bool = True,
          error_message: str = None, event_id: str = None) -> PaymentLog:
    entry = PaymentLog(
        user_id=user_id,
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        processed=processed,
        error_message=error_message,
    )
    db.add(entry)
    return entry
