"""
User and audit log tables.

``users`` is the durable identity record reconciled on every login;
``audit_logs`` receives one row per login attempt.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ems_auth.domain.models.auth import utc_now
from ems_auth.infrastructure.database.base import Base


class User(Base):
    """
    Durable identity record.

    - username is unique across all providers
    - auth_provider names the provider that owns the identity
    - password_hash is set for Local users only (``salt:digest`` form)
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'operator', 'viewer')", name="ck_users_role"),
    )

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    domain: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="viewer", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Multi-provider authentication
    auth_provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    require_password_change: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Security
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failed_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    account_locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, username={self.username}, provider={self.auth_provider})>"

    @property
    def is_local(self) -> bool:
        """Local users are the only ones carrying a password hash."""
        return self.password_hash is not None

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """Check if the account is locked out after repeated failures."""
        if self.account_locked_until is None:
            return False
        locked_until = self.account_locked_until
        if locked_until.tzinfo is None:
            # SQLite hands back naive datetimes
            locked_until = locked_until.replace(tzinfo=timezone.utc)
        return locked_until > (now or utc_now())


class AuditLog(Base):
    """
    Audit trail for login attempts.

    Written by the audit sink, never read by the auth subsystem.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        CheckConstraint(
            "risk_level IN ('Low', 'Medium', 'High', 'Critical')", name="ck_audit_logs_risk_level"
        ),
    )

    log_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    result: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    risk_level: Mapped[str] = mapped_column(String(20), default="Low", nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog(log_id={self.log_id}, action={self.action}, result={self.result})>"
