from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, UniqueConstraint
from legacy_api.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)           # auth provider subject
    email = Column(String, unique=True, index=True)
    name = Column(String)
    personality_traits = Column(Text, nullable=True)
    subscription = Column(String, default="free")   # free | premium | lifetime
    subscription_status = Column(String, default="active")  # active | canceled
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Memorial(Base):
    __tablename__ = "memorials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    is_public = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Memory(Base):
    __tablename__ = "memories"
    __table_args__ = (UniqueConstraint("user_id", "category"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    category = Column(String, nullable=False)       # childhood | career | love | struggles | values | advice
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class GuestbookEntry(Base):
    __tablename__ = "guestbook"

    id = Column(Integer, primary_key=True, autoincrement=True)
    memorial_id = Column(Integer, index=True, nullable=False)
    author_name = Column(String, nullable=False)
    message = Column(Text, default="")
    type = Column(String, default="message")        # message | candle | flower
    created_at = Column(DateTime(timezone=True), default=utcnow)


class VoiceClone(Base):
    __tablename__ = "voice_clones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    voice_id = Column(String, nullable=False)       # speech provider voice id
    name = Column(String)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    order_id = Column(String, primary_key=True)     # Razorpay order id
    user_id = Column(String, index=True, nullable=False)
    plan_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)        # whole rupees
    currency = Column(String, default="INR")
    status = Column(String, default="created")      # created | paid | failed
    payment_id = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PaymentLog(Base):
    __tablename__ = "payment_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=True)
    event_id = Column(String, unique=True, nullable=True)
    event_type = Column(String, index=True, nullable=False)
    payload = Column(JSON)
    processed = Column(Boolean, default=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    plan_id = Column(String, nullable=False)
    razorpay_order_id = Column(String, nullable=True)
    razorpay_payment_id = Column(String, nullable=True)
    razorpay_subscription_id = Column(String, index=True, nullable=True)
    amount = Column(Integer, nullable=True)
    status = Column(String, default="active")       # active | canceled
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
