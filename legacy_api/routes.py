import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from legacy_api import billing, razorpay_service
from legacy_api.auth import verify_token
from legacy_api.database import SessionLocal
from legacy_api.errors import PaymentError, UpstreamError
from legacy_api.models import PaymentOrder, User
from legacy_api.plans import PLANS, VALID_PLAN_IDS, format_price, get_plan

logger = logging.getLogger(__name__)

router = APIRouter()

CHECKOUT_NAME = "Legacy.ai"
CHECKOUT_THEME = {"color": "#8B5CF6"}


class OrderRequest(BaseModel):
    userId: Optional[str] = None
    planId: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    userEmail: Optional[str] = None
    userName: Optional[str] = None


class VerifyRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    userId: Optional[str] = None
    planId: Optional[str] = None


class CheckoutRequest(BaseModel):
    plan_id: str


def create_order_for_plan(db, user_id: str, plan_id: str, user_email: str = None, user_name: str = None) -> dict:
    if plan_id not in VALID_PLAN_IDS:
        raise PaymentError("Invalid plan selected", "INVALID_PLAN")
    plan = get_plan(plan_id)
    key_id, _ = razorpay_service.get_credentials()

    try:
        order = razorpay_service.create_order(
            plan.amount_paise,
            razorpay_service.make_receipt(user_id),
            {
                "user_id": user_id,
                "plan_id": plan_id,
                "plan_name": plan.name,
                "user_email": user_email or "",
                "user_name": user_name or "",
                "service": "legacy_ai",
            },
        )
    except UpstreamError as exc:
        logger.error("Order creation failed for user %s: %s", user_id, exc.message)
        raise PaymentError("Failed to create payment order", "ORDER_CREATION_FAILED", status_code=502)

    db.add(PaymentOrder(
        order_id=order["id"],
        user_id=user_id,
        plan_id=plan_id,
        amount=plan.price,
        currency=razorpay_service.CURRENCY,
        status=billing.ORDER_CREATED,
    ))
    billing.audit(db, "order.created", order, user_id=user_id)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store order %s for user %s; upstream order is orphaned", order["id"], user_id)
        raise PaymentError("Failed to store order information", "ORDER_CREATION_FAILED", status_code=500)

    return {
        "order_id": order["id"],
        "amount": order.get("amount", plan.amount_paise),
        "currency": order.get("currency", razorpay_service.CURRENCY),
        "key": key_id,
    }


@router.post("/functions/create-razorpay-order")
def create_order_api(request: OrderRequest):
    if not request.userId or not request.planId or not request.plan:
        raise PaymentError("Missing required parameters", "MISSING_PARAMETERS")

    db = SessionLocal()
    try:
        return create_order_for_plan(db, request.userId, request.planId, request.userEmail, request.userName)
    finally:
        db.close()


def verify_payment(db, request: VerifyRequest) -> dict:
    if not all([request.razorpay_order_id, request.razorpay_payment_id,
                request.razorpay_signature, request.userId, request.planId]):
        raise PaymentError("Missing required payment verification parameters", "MISSING_PARAMETERS")

    _, key_secret = razorpay_service.get_credentials()
    if not razorpay_service.verify_payment_signature(
        request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature, key_secret
    ):
        billing.audit(
            db,
            "payment.verification_failed",
            {
                "order_id": request.razorpay_order_id,
                "payment_id": request.razorpay_payment_id,
                "provided_signature": request.razorpay_signature,
                "expected_signature": razorpay_service.payment_signature(
                    request.razorpay_order_id, request.razorpay_payment_id, key_secret
                ),
            },
            user_id=request.userId,
            processed=False,
            error_message="Invalid payment signature",
        )
        db.commit()
        logger.warning("Invalid payment signature for order %s", request.razorpay_order_id)
        raise PaymentError("Payment verification failed - invalid signature", "VERIFICATION_FAILED")

    order = db.query(PaymentOrder).filter_by(
        order_id=request.razorpay_order_id, user_id=request.userId
    ).first()
    if order is None:
        raise PaymentError("Order not found or unauthorized", "UNAUTHORIZED_ORDER", status_code=403)

    billing.transition_order(order, billing.ORDER_PAID, request.razorpay_payment_id)
    billing.activate_plan(db, request.userId, order.plan_id, order=order,
                          payment_id=request.razorpay_payment_id)
    billing.audit(
        db,
        "payment.verified",
        {
            "order_id": request.razorpay_order_id,
            "payment_id": request.razorpay_payment_id,
            "signature": request.razorpay_signature,
            "plan_id": order.plan_id,
            "amount": order.amount,
        },
        user_id=request.userId,
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to activate subscription for order %s", order.order_id)
        raise PaymentError("Failed to activate subscription", "VERIFICATION_FAILED", status_code=500)

    if order.plan_id != request.planId:
        logger.warning("Order %s was for plan %s, client claimed %s", order.order_id, order.plan_id, request.planId)
    return {"verified": True, "message": "Payment verified and subscription activated successfully"}


@router.post("/functions/verify-razorpay-payment")
def verify_payment_api(request: VerifyRequest):
    db = SessionLocal()
    try:
        return verify_payment(db, request)
    except PaymentError as exc:
        logger.error("Payment verification failed: %s", exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "verified": False, "code": exc.code},
        )
    finally:
        db.close()


@router.get("/payments/plans")
def list_plans():
    return [
        {
            "id": plan.id,
            "name": plan.name,
            "price": plan.price,
            "display_price": format_price(plan.price),
            "interval": plan.interval,
            "description": plan.description,
            "features": plan.features,
            "popular": plan.popular,
        }
        for plan in PLANS
    ]


@router.post("/payments/checkout")
def checkout(request: CheckoutRequest, user_id: str = Depends(verify_token)):
    plan = get_plan(request.plan_id)
    if plan is None:
        raise PaymentError("Invalid subscription plan selected", "INVALID_PLAN")

    db = SessionLocal()
    try:
        if plan.price == 0:
            billing.select_free_plan(db, user_id)
            db.commit()
            return {"plan": plan.id, "checkout": None}

        user = db.get(User, user_id)
        if user is None:
            raise PaymentError("Unable to retrieve user information", "USER_NOT_FOUND", status_code=404)

        order = create_order_for_plan(db, user_id, plan.id, user.email, user.name)
        return {
            "plan": plan.id,
            "checkout": {
                "key": order["key"],
                "amount": order["amount"],
                "currency": order["currency"],
                "name": CHECKOUT_NAME,
                "description": f"{plan.name} Plan - Digital Immortality Service",
                "order_id": order["order_id"],
                "prefill": {"name": user.name, "email": user.email},
                "theme": CHECKOUT_THEME,
            },
        }
    finally:
        db.close()


@router.post("/payments/free")
def select_free(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        user = billing.select_free_plan(db, user_id)
        db.commit()
        return {"subscription": user.subscription, "subscription_status": user.subscription_status}
    finally:
        db.close()


@router.post("/payments/cancel")
def cancel(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        user = billing.cancel_plan(db, user_id)
        db.commit()
        logger.info("Subscription cancelled locally for user %s", user_id)
        return {"subscription": user.subscription, "subscription_status": user.subscription_status}
    finally:
        db.close()


@router.get("/payments/status")
def subscription_status(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if user is None:
            raise PaymentError("User account not found", "USER_NOT_FOUND", status_code=404)
        return {"subscription": user.subscription, "subscription_status": user.subscription_status}
    finally:
        db.close()


@router.get("/payments/history")
def payment_history(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        orders = (
            db.query(PaymentOrder)
            .filter_by(user_id=user_id)
            .order_by(PaymentOrder.created_at.desc())
            .all()
        )
        return [
            {
                "order_id": o.order_id,
                "plan_id": o.plan_id,
                "amount": o.amount,
                "currency": o.currency,
                "status": o.status,
                "payment_id": o.payment_id,
                "created_at": o.created_at.isoformat() if o.created_at else None,
            }
            for o in orders
        ]
    finally:
        db.close()
