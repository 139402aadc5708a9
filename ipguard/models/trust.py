from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import relationship

from .db import Base


class TrustRecord(Base):
    """Approval and ban state of one (account, address) pair."""

    __tablename__ = "user_ip_addresses"
    __table_args__ = (
        UniqueConstraint("user_id", "ip_address", name="uq_user_ip_addresses_user_ip"),
        Index("ix_user_ip_addresses_ip_banned", "ip_address", "is_banned"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(45), nullable=False)
    is_approved = Column(Boolean, nullable=False, default=False)
    is_banned = Column(Boolean, nullable=False, default=False)
    country = Column(String(100))
    region = Column(String(100))
    city = Column(String(100))
    latitude = Column(Float)
    longitude = Column(Float)
    isp = Column(String(255))
    user_agent = Column(String(500))
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")


class VerificationCode(Base):
    __tablename__ = "login_verification_codes"
    __table_args__ = (Index("ix_login_verification_codes_lookup", "user_id", "ip_address", "code", "used"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(45), nullable=False)
    code = Column(String(6), nullable=False)
    expires = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
