import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from disputekit.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class RevokedToken(Base):
    """Session tokens that were signed out before they expired"""
    __tablename__ = "revoked_tokens"

    jti = Column(String(64), primary_key=True)
    user_id = Column(String(36), index=True)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)


class StripeAccount(Base):
    __tablename__ = "stripe_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_account_id = Column(String(255), unique=True, nullable=False)  # acct_...
    stripe_email = Column(String(255))
    access_token_encrypted = Column(Text, nullable=False)   # hex(iv):hex(ciphertext)
    refresh_token_encrypted = Column(Text, nullable=False)  # hex(iv):hex(ciphertext)
    token_expires_at = Column(DateTime(timezone=True))
    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_account_id = Column(String(255), nullable=False, index=True)
    stripe_dispute_id = Column(String(255), unique=True, nullable=False)  # dp_...
    charge_id = Column(String(255))
    reason = Column(String(64))
    amount = Column(Integer)         # minor currency units
    currency = Column(String(8))
    status = Column(String(64))      # needs_response | under_review | won | lost | ...
    evidence_deadline = Column(DateTime(timezone=True))
    payment_method_details = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)
    synced_at = Column(DateTime(timezone=True))

    evidence = relationship("Evidence", back_populates="dispute", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_disputes_user_created", "user_id", "created_at"),
    )


class Evidence(Base):
    __tablename__ = "evidence"

    id = Column(String(36), primary_key=True, default=new_id)
    dispute_id = Column(String(36), ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    submitted_to_stripe = Column(Boolean, nullable=False, default=False)
    stripe_evidence_id = Column(String(255))
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    dispute = relationship("Dispute", back_populates="evidence")
