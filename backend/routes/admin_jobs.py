"""Staff job routes - run background jobs on demand.

Endpoints:
- POST /api/admin/jobs/retention-purge/run - Run the retention purge now (body: {dryRun?, retentionDays?})
"""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
import logging

from middleware import require_staff
from models import AuditAction, PurgeRunRequest
from services.errors import OrchestrationError
from utils.audit import create_audit_log
from utils.http_errors import http_error, new_request_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/jobs", tags=["admin-jobs"])


@router.post("/retention-purge/run")
async def run_retention_purge_now(body: Optional[PurgeRunRequest] = None, user: dict = Depends(require_staff)):
    """Manual purge run. Defaults come from the environment; dryRun/retentionDays override them."""
    from job_runner import JOB_RUNNERS

    body = body or PurgeRunRequest()
    request_id = new_request_id()
    try:
        result = await JOB_RUNNERS["retention_purge"](
            dry_run=body.dry_run,
            retention_days=body.retention_days,
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "manual retention purge")
    except Exception as e:
        logger.error(f"Manual job run error (retention_purge) request_id={request_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "JOB_FAILED", "message": "Failed to run job: retention_purge", "request_id": request_id},
        )

    await create_audit_log(
        action=AuditAction.RETENTION_PURGE_RUN,
        actor_role=user.get("role"),
        actor_id=user.get("portal_user_id") or user.get("sub"),
        metadata={"action": "manual_job_run", "job_id": "retention_purge"},
    )
    return {"success": True, "job": "retention_purge", "message": result["message"], **result["summary"]}
