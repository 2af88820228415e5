"""
Audit sink for authentication events.

The auth subsystem only ever writes to the sink. A sink failure is logged
and swallowed so that auditing can never change the outcome of a login.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ems_auth.domain.models.auth import AuditEvent
from ems_auth.infrastructure.database.models import AuditLog

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Write-only destination for audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        """Record an audit event. Must not raise."""
        pass


class DatabaseAuditSink(AuditSink):
    """Writes audit events to the ``audit_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        entry = AuditLog(
            timestamp=event.timestamp,
            user_id=event.user_id,
            username=event.username,
            action=event.action,
            target=event.target,
            result=event.result,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            details=event.details or None,
            risk_level=event.risk_level.value,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write audit event {event.action} for {event.username}: {e}")

