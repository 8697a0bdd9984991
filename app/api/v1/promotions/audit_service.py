"""
Audit logging for promotion state changes. Best effort: a failing audit write is
logged and never reaches the caller.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.enums import AuditStatus
from app.core.models import AuditLog

logger = logging.getLogger(__name__)


class AuditRecorder:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def log(
        self,
        user_id: Optional[UUID],
        action: str,
        module: str,
        status: AuditStatus,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one audit log entry in its own session."""
        try:
            async with self._session_factory() as session:
                session.add(
                    AuditLog(
                        user_id=user_id,
                        action=action,
                        module=module,
                        status=status.value,
                        details=_jsonable(details),
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Failed to write audit log for %s %s", action, module)


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value
