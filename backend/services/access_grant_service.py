"""
Access Grant Service - scope notarized files to their client and the notary team.

Each file's permission list is replaced with exactly:
    read:user:{client}, read:team:{team}, write:team:{team},
    update:team:{team}, delete:team:{team}

An unknown client fails the whole batch before any file is touched. A failure on
one file is recorded in its result and the batch carries on.
"""
import logging
import os
from typing import Dict, Any, List, Optional

from models import AuditAction, UserRole
from services.errors import ConfigurationError, NotFound, ValidationFailed
from services.identity_directory import find_account_id_by_email
from services.storage_adapter import storage_adapter
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


def notary_team_id() -> str:
    team_id = (os.getenv("NOTARY_TEAM_ID") or "").strip()
    if not team_id:
        raise ConfigurationError("Notary team is not configured")
    return team_id


def build_permissions(user_id: str, team_id: str) -> List[str]:
    return [
        f"read:user:{user_id}",
        f"read:team:{team_id}",
        f"write:team:{team_id}",
        f"update:team:{team_id}",
        f"delete:team:{team_id}",
    ]


async def grant_file_access(
    client_email: Optional[str],
    files: List[Dict[str, Any]],
    actor_id: Optional[str] = None,
    actor_role: Optional[UserRole] = None,
) -> Dict[str, Any]:
    """
    Grant a client read access to a batch of files.

    Args:
        client_email: client whose account receives read access
        files: [{file_id, name}]

    Returns:
        {"ok": True, "results": [{"fileId", "ok"}]}; inspect each result

    Raises:
        ValidationFailed: missing email or files
        ConfigurationError: NOTARY_TEAM_ID unset
        NotFound: no account for the email (no permissions changed)
    """
    email = (client_email or "").strip().lower()
    if not email or not files:
        raise ValidationFailed("clientEmail and files[] required")

    team_id = notary_team_id()

    user_id = await find_account_id_by_email(email)
    if not user_id:
        logger.warning(f"Grant access: no account for {email}")
        raise NotFound("Client user not found", error_code="CLIENT_NOT_FOUND")

    permissions = build_permissions(user_id, team_id)
    results = []
    for f in files:
        file_id = f.get("file_id")
        try:
            await storage_adapter.set_permissions(file_id, permissions)
            results.append({"fileId": file_id, "ok": True})
        except Exception as e:
            # Any collaborator failure on one file must not stop the batch
            logger.error(f"Permission update failed for {file_id}: {e}")
            results.append({"fileId": file_id, "ok": False})

    granted = sum(1 for r in results if r["ok"])
    logger.info(f"Grant access for {email}: {granted}/{len(results)} file(s) updated")
    await create_audit_log(
        action=AuditAction.FILE_ACCESS_GRANTED,
        actor_role=actor_role,
        actor_id=actor_id,
        client_email=email,
        resource_type="file_batch",
        metadata={"results": results, "user_id": user_id},
    )
    return {"ok": True, "results": results}
