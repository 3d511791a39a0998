"""
Audit trail for the order pipeline.

One append-only row per submission change, payment, refund, file grant or
purge run. Writing an entry never fails the operation being audited.
"""
import logging
from typing import Optional, Dict, Any

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from database import database
from models import AuditLog, AuditAction, UserRole

logger = logging.getLogger(__name__)


def step_change(
    from_step: str,
    to_step: str,
    from_version: Optional[int],
    to_version: Optional[int],
) -> Dict[str, Dict[str, Any]]:
    """before_state / after_state pair for a wizard step advance."""
    return {
        "before_state": {"current_step": from_step, "version": from_version},
        "after_state": {"current_step": to_step, "version": to_version},
    }


async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[UserRole] = None,
    actor_id: Optional[str] = None,
    client_email: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Record an audit entry and return its audit_id, or "" when it could not be written.

    actor_role is None for anonymous wizard clients and for scheduled jobs.
    """
    db = database.get_db()
    if db is None:
        logger.warning(f"Audit entry {action.value} dropped: database not connected")
        return ""

    try:
        entry = AuditLog(
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            client_email=(client_email or "").strip().lower() or None,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=metadata or None,
        )
        await db.audit_logs.insert_one(entry.model_dump())
    except (PyMongoError, ValidationError) as e:
        logger.error(f"Failed to write audit entry {action.value} for {resource_type}/{resource_id}: {e}")
        return ""

    logger.debug(f"Audit {action.value} {resource_type}/{resource_id}")
    return entry.audit_id
