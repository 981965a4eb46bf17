import hashlib
import hmac
import logging
import os
import time
from pathlib import Path
from dotenv import load_dotenv
import requests

from legacy_api.errors import ConfigurationError, UpstreamError

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)

CURRENCY = "INR"


def _api_base() -> str:
    return os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1").rstrip("/")


def get_credentials():
    key_id = os.getenv("RAZORPAY_KEY_ID", "").strip()
    key_secret = os.getenv("RAZORPAY_KEY_SECRET", "").strip()
    if not key_id or not key_secret:
        raise ConfigurationError("Razorpay configuration missing")
    return key_id, key_secret


def get_webhook_secret() -> str:
    secret = os.getenv("RAZORPAY_WEBHOOK_SECRET", "").strip()
    if not secret:
        raise ConfigurationError("Webhook secret not configured")
    return secret


def _request(method: str, path: str, json_payload=None) -> dict:
    key_id, key_secret = get_credentials()
    url = f"{_api_base()}/{path.lstrip('/')}"
    try:
        response = requests.request(
            method=method.upper(),
            url=url,
            auth=(key_id, key_secret),
            json=json_payload,
            timeout=15,
        )
    except requests.RequestException as exc:
        raise UpstreamError("razorpay", f"Failed to contact Razorpay: {exc}")

    if response.status_code >= 400:
        logger.error("Razorpay %s %s failed: %s %s", method, path, response.status_code, response.text)
        raise UpstreamError("razorpay", "Unable to process Razorpay request right now.")

    try:
        payload = response.json()
    except ValueError:
        raise UpstreamError("razorpay", "Invalid response received from Razorpay.")
    if not isinstance(payload, dict):
        raise UpstreamError("razorpay", "Unexpected response format from Razorpay.")
    return payload


def create_order(amount_paise: int, receipt: str, notes: dict) -> dict:
    order = _request(
        "POST",
        "/orders",
        {
            "amount": amount_paise,
            "currency": CURRENCY,
            "receipt": receipt[:40],
            "notes": notes,
        },
    )
    if not order.get("id"):
        raise UpstreamError("razorpay", "Failed to create Razorpay order")
    return order


def make_receipt(user_id: str) -> str:
    return f"legacy_{user_id}_{int(time.time() * 1000)}"


def sign(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(order_id: str, payment_id: str, key_secret: str) -> str:
    """Signature Checkout hands back after a successful payment."""
    return sign(key_secret, f"{order_id}|{payment_id}")


def verify_payment_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    expected = payment_signature(order_id, payment_id, key_secret)
    return hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8"))


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    expected = sign(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8"))
