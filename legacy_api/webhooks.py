import hashlib
import logging

from sqlalchemy.exc import IntegrityError

from legacy_api import billing
from legacy_api.models import PaymentLog, PaymentOrder

logger = logging.getLogger(__name__)


class WebhookPayloadError(ValueError):
    pass


def event_id_for(body: bytes, header_value: str = None) -> str:
    """Razorpay sends ``x-razorpay-event-id``; fall back to a digest of the body."""
    if header_value:
        return header_value.strip()
    return "sha256:" + hashlib.sha256(body).hexdigest()


def _entity(event: dict, name: str) -> dict:
    try:
        entity = event["payload"][name]["entity"]
    except (KeyError, TypeError):
        raise WebhookPayloadError(f"Webhook payload has no {name} entity")
    if not isinstance(entity, dict):
        raise WebhookPayloadError(f"Webhook payload has no {name} entity")
    return entity


def _optional_entity(event: dict, name: str) -> dict:
    try:
        return _entity(event, name)
    except WebhookPayloadError:
        return {}


def record_event(db, event_id: str, event: dict):
    """Insert the unprocessed audit row. Returns ``(log, is_new)``.

    A redelivery of an event id that is already logged returns the existing
    row instead of inserting a second one.
    """
    existing = db.query(PaymentLog).filter_by(event_id=event_id).first()
    if existing is not None:
        return existing, False

    log = billing.audit(
        db,
        event_type=event.get("event") or "unknown",
        payload=event,
        processed=False,
        event_id=event_id,
    )
    try:
        db.commit()
    except IntegrityError:
        # concurrent delivery of the same event won the insert
        db.rollback()
        return db.query(PaymentLog).filter_by(event_id=event_id).one(), False
    return log, True


def _handle_payment_captured(db, event):
    payment = _entity(event, "payment")
    order = db.get(PaymentOrder, payment.get("order_id"))
    if order is None:
        logger.warning("payment.captured for unknown order %s", payment.get("order_id"))
        return None

    billing.transition_order(order, billing.ORDER_PAID, payment.get("id"))
    billing.activate_plan(db, order.user_id, order.plan_id, order=order, payment_id=payment.get("id"))
    logger.info("Payment captured for user %s, plan %s", order.user_id, order.plan_id)
    return order.user_id


def _handle_payment_failed(db, event):
    payment = _entity(event, "payment")
    order = db.get(PaymentOrder, payment.get("order_id"))
    if order is None:
        logger.warning("payment.failed for unknown order %s", payment.get("order_id"))
        return None

    billing.transition_order(order, billing.ORDER_FAILED, payment.get("id"))
    logger.info("Payment failed for order %s", order.order_id)
    return order.user_id


def _handle_order_paid(db, event):
    order_entity = _entity(event, "order")
    payment = _optional_entity(event, "payment")
    order = db.get(PaymentOrder, order_entity.get("id"))
    if order is None:
        logger.warning("order.paid for unknown order %s", order_entity.get("id"))
        return None

    billing.transition_order(order, billing.ORDER_PAID, payment.get("id"))
    logger.info("Order paid: %s", order.order_id)
    return order.user_id


def _subscription_user(event):
    subscription = _entity(event, "subscription")
    notes = subscription.get("notes") or {}
    return subscription, notes.get("user_id") if isinstance(notes, dict) else None


def _handle_subscription_cancelled(db, event):
    subscription, user_id = _subscription_user(event)
    if not user_id:
        logger.warning("subscription.cancelled %s carries no user_id note", subscription.get("id"))
        return None

    billing.cancel_plan(db, user_id, subscription_id=subscription.get("id"))
    logger.info("Subscription cancelled for user %s", user_id)
    return user_id


def _handle_subscription_charged(db, event):
    subscription, user_id = _subscription_user(event)
    if not user_id:
        logger.warning("subscription.charged %s carries no user_id note", subscription.get("id"))
        return None

    billing.mark_renewed(db, user_id)
    logger.info("Subscription charged for user %s", user_id)
    return user_id


HANDLERS = {
    "payment.captured": _handle_payment_captured,
    "payment.failed": _handle_payment_failed,
    "order.paid": _handle_order_paid,
    "subscription.cancelled": _handle_subscription_cancelled,
    "subscription.charged": _handle_subscription_charged,
}


def dispatch(db, log: PaymentLog, event: dict) -> None:
    """Apply the event and flag its own log row processed, in one commit."""
    event_type = event.get("event")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type: %s", event_type)
    else:
        user_id = handler(db, event)
        if user_id and not log.user_id:
            log.user_id = user_id

    log.processed = True
    log.error_message = None
    db.commit()


def process_event(db, body: bytes, event: dict, event_id_header: str = None) -> dict:
    if not isinstance(event, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")

    event_id = event_id_for(body, event_id_header)
    log, is_new = record_event(db, event_id, event)
    if not is_new and log.processed:
        logger.info("Duplicate webhook %s (%s) ignored", event_id, log.event_type)
        return {"received": True, "event": event.get("event"), "duplicate": True}

    try:
        dispatch(db, log, event)
    except Exception as exc:
        db.rollback()
        log = db.query(PaymentLog).filter_by(event_id=event_id).one()
        log.error_message = str(exc)[:1000]
        db.commit()
        raise

    return {"received": True, "event": event.get("event")}
