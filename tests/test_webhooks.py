import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from legacy_api.main import app as fastapi_app
from legacy_api.database import Base
from legacy_api.models import PaymentLog, PaymentOrder, Subscription, User
from legacy_api.webhooks import event_id_for

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_webhooks.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    db.add(User(id="user-1", email="ada@example.com", name="Ada", subscription="free"))
    db.add(PaymentOrder(order_id="order_1", user_id="user-1", plan_id="premium", amount=1299))
    db.commit()
    db.close()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr("legacy_api.main.SessionLocal", TestingSessionLocal)
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    with TestClient(fastapi_app) as c:
        yield c


def sign(body):
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


def post_event(client, event, event_id=None, signature=None):
    body = json.dumps(event).encode("utf-8")
    headers = {"x-razorpay-signature": signature or sign(body)}
    if event_id:
        headers["x-razorpay-event-id"] = event_id
    return client.post("/webhook", content=body, headers=headers)


def payment_event(name, order_id="order_1", payment_id="pay_1"):
    return {"event": name, "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id}}}}


def subscription_event(name, user_id="user-1"):
    return {
        "event": name,
        "payload": {"subscription": {"entity": {"id": "sub_1", "notes": {"user_id": user_id}}}},
    }


def fetch(model, key):
    db = TestingSessionLocal()
    row = db.get(model, key)
    db.close()
    return row


def test_invalid_signature_is_rejected_and_not_logged(client):
    response = post_event(client, payment_event("payment.captured"), signature="f" * 64)

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    db = TestingSessionLocal()
    assert db.query(PaymentLog).count() == 0
    assert db.get(PaymentOrder, "order_1").status == "created"
    db.close()


def test_signature_over_different_body_is_rejected(client):
    original = json.dumps(payment_event("payment.captured")).encode("utf-8")
    tampered = json.dumps(payment_event("payment.captured", payment_id="pay_2")).encode("utf-8")

    response = client.post("/webhook", content=tampered, headers={"x-razorpay-signature": sign(original)})

    assert response.status_code == 401


def test_missing_signature_header(client):
    response = client.post("/webhook", content=b"{}")

    assert response.status_code == 400


def test_missing_webhook_secret(client, monkeypatch):
    monkeypatch.delenv("RAZORPAY_WEBHOOK_SECRET")

    response = post_event(client, payment_event("payment.captured"))

    assert response.status_code == 500
    assert response.json()["code"] == "CONFIGURATION_ERROR"


def test_functions_path_alias(client):
    body = json.dumps(payment_event("payment.captured")).encode("utf-8")

    response = client.post("/functions/razorpay-webhook", content=body, headers={"x-razorpay-signature": sign(body)})

    assert response.status_code == 200
    assert fetch(PaymentOrder, "order_1").status == "paid"


def test_payment_captured_activates_plan(client):
    response = post_event(client, payment_event("payment.captured"), "evt_cap")

    assert response.json() == {"received": True, "event": "payment.captured"}
    assert fetch(User, "user-1").subscription == "premium"
    order = fetch(PaymentOrder, "order_1")
    assert order.status == "paid"
    assert order.payment_id == "pay_1"
    db = TestingSessionLocal()
    log = db.query(PaymentLog).filter_by(event_id="evt_cap").one()
    assert log.processed is True
    assert log.user_id == "user-1"
    db.close()


def test_payment_captured_unknown_order_only_logs(client):
    response = post_event(client, payment_event("payment.captured", order_id="order_missing"))

    assert response.status_code == 200
    assert fetch(User, "user-1").subscription == "free"


def test_payment_failed_leaves_subscription_alone(client):
    response = post_event(client, payment_event("payment.failed", payment_id="pay_bad"))

    assert response.status_code == 200
    order = fetch(PaymentOrder, "order_1")
    assert order.status == "failed"
    assert order.payment_id == "pay_bad"
    user = fetch(User, "user-1")
    assert (user.subscription, user.subscription_status) == ("free", "active")


def test_paid_order_is_not_failed_afterwards(client):
    post_event(client, payment_event("payment.captured"), "evt_1")
    post_event(client, payment_event("payment.failed", payment_id="pay_late"), "evt_2")

    order = fetch(PaymentOrder, "order_1")
    assert order.status == "paid"
    assert order.payment_id == "pay_1"


def test_failed_then_captured_activates_plan(client):
    post_event(client, payment_event("payment.failed", payment_id="pay_attempt1"), "evt_a")
    response = post_event(client, payment_event("payment.captured", payment_id="pay_attempt2"), "evt_b")

    assert response.status_code == 200
    order = fetch(PaymentOrder, "order_1")
    assert order.status == "paid"
    assert order.payment_id == "pay_attempt2"
    user = fetch(User, "user-1")
    assert (user.subscription, user.subscription_status) == ("premium", "active")


def test_order_paid_propagates_payment_id(client):
    event = {
        "event": "order.paid",
        "payload": {
            "order": {"entity": {"id": "order_1", "status": "paid"}},
            "payment": {"entity": {"id": "pay_9", "order_id": "order_1"}},
        },
    }

    response = post_event(client, event)

    assert response.status_code == 200
    order = fetch(PaymentOrder, "order_1")
    assert order.status == "paid"
    assert order.payment_id == "pay_9"


def test_order_paid_without_payment_entity(client):
    event = {"event": "order.paid", "payload": {"order": {"entity": {"id": "order_1"}}}}

    post_event(client, event)

    order = fetch(PaymentOrder, "order_1")
    assert order.status == "paid"
    assert order.payment_id is None


def test_subscription_cancelled(client):
    db = TestingSessionLocal()
    db.add(Subscription(user_id="user-1", plan_id="premium", razorpay_subscription_id="sub_1"))
    db.commit()
    db.close()

    response = post_event(client, subscription_event("subscription.cancelled"))

    assert response.status_code == 200
    user = fetch(User, "user-1")
    assert (user.subscription, user.subscription_status) == ("free", "canceled")
    db = TestingSessionLocal()
    assert db.query(Subscription).filter_by(user_id="user-1").one().status == "canceled"
    db.close()


def test_subscription_charged_reactivates(client):
    db = TestingSessionLocal()
    user = db.get(User, "user-1")
    user.subscription = "premium"
    user.subscription_status = "canceled"
    db.commit()
    db.close()

    post_event(client, subscription_event("subscription.charged"))

    user = fetch(User, "user-1")
    assert (user.subscription, user.subscription_status) == ("premium", "active")


def test_unknown_event_is_logged_without_state_change(client):
    response = post_event(client, {"event": "refund.created", "payload": {}}, "evt_refund")

    assert response.json() == {"received": True, "event": "refund.created"}
    assert fetch(PaymentOrder, "order_1").status == "created"
    db = TestingSessionLocal()
    assert db.query(PaymentLog).filter_by(event_id="evt_refund").one().processed is True
    db.close()


def test_malformed_event_returns_400_and_keeps_log_unprocessed(client):
    response = post_event(client, {"event": "payment.captured", "payload": {}}, "evt_broken")

    assert response.status_code == 400
    assert response.json()["received"] is False
    db = TestingSessionLocal()
    log = db.query(PaymentLog).filter_by(event_id="evt_broken").one()
    assert log.processed is False
    assert "payment entity" in log.error_message
    db.close()


def test_failed_event_is_retried_on_redelivery(client, mocker):
    mocker.patch(
        "legacy_api.billing.activate_plan",
        side_effect=RuntimeError("database went away"),
    )
    first = post_event(client, payment_event("payment.captured"), "evt_retry")
    assert first.status_code == 400
    assert fetch(PaymentOrder, "order_1").status == "created"

    mocker.stopall()
    second = post_event(client, payment_event("payment.captured"), "evt_retry")

    assert second.status_code == 200
    assert "duplicate" not in second.json()
    assert fetch(PaymentOrder, "order_1").status == "paid"
    db = TestingSessionLocal()
    assert db.query(PaymentLog).filter_by(event_id="evt_retry").one().processed is True
    db.close()


def test_event_id_falls_back_to_body_digest():
    body = b'{"event": "order.paid"}'

    assert event_id_for(body, "evt_x") == "evt_x"
    assert event_id_for(body) == "sha256:" + hashlib.sha256(body).hexdigest()
    assert event_id_for(body) != event_id_for(body + b" ")


def test_redelivery_without_event_id_header_is_deduplicated(client):
    first = post_event(client, payment_event("payment.captured"))
    second = post_event(client, payment_event("payment.captured"))

    assert first.status_code == 200
    assert second.json()["duplicate"] is True
