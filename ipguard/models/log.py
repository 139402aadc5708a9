from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, event, func

from .db import Base


class ImmutableLogMixin:
    @classmethod
    def __declare_last__(cls) -> None:
        event.listen(cls, "before_update", cls._deny_mutation)
        event.listen(cls, "before_delete", cls._deny_mutation)

    @staticmethod
    def _deny_mutation(mapper, connection, target) -> None:
        raise ValueError("Log entries are immutable")


class LoginDecisionLog(ImmutableLogMixin, Base):
    __tablename__ = "login_decision_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=True)
    ip_address = Column(String(45), nullable=True)
    decision = Column(String(32), nullable=False)
    reason = Column(String, nullable=False)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TrustOverrideLog(ImmutableLogMixin, Base):
    __tablename__ = "trust_override_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    ip_address_id = Column(Integer, nullable=False)
    ip_address = Column(String(45), nullable=False)
    actor = Column(String(255), nullable=False)
    previous_is_banned = Column(Boolean, nullable=False)
    previous_is_approved = Column(Boolean, nullable=False)
    is_banned = Column(Boolean, nullable=False)
    is_approved = Column(Boolean, nullable=False)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
