"""File Routes - notarized deliveries, access grants, listing and download.

Endpoints:
- POST /api/notary/uploads - Staff: upload notarized files for a client, then grant access
- POST /api/files/grant-access - Staff: scope a batch of files to a client
- GET /api/files?client_email=&scope= - Indexed files for a client
- GET /api/files/{file_id}/download - Stream a file (staff or the granted client)
"""
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from typing import List, Optional
import io
import logging
import uuid
from urllib.parse import quote

from middleware import require_auth, require_staff
from models import AuditAction, FileScope, GrantAccessRequest, UserRole
from auth import check_rbac
from services.access_grant_service import grant_file_access, notary_team_id
from services.errors import NotFound, OrchestrationError, ValidationFailed
from services.file_registry import discard_files, list_client_files, store_files
from services.identity_directory import find_account_id_by_email
from services.storage_adapter import ObjectNotFoundError, storage_adapter
from utils.audit import create_audit_log
from utils.http_errors import http_error, new_request_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/files", tags=["files"])
notary_router = APIRouter(prefix="/api/notary", tags=["notary"])


def _is_staff(user: dict) -> bool:
    return check_rbac(user.get("role"), UserRole.ROLE_NOTARY)


def content_disposition(name: str) -> str:
    """Attachment header with an ASCII filename and the exact UTF-8 name in filename*."""
    fallback = "".join(c if 32 <= ord(c) < 127 else "_" for c in name)
    fallback = fallback.replace("\\", "\\\\").replace('"', '\\"')
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


@notary_router.post("/uploads", status_code=status.HTTP_201_CREATED)
async def upload_notarized_files(
    client_email: str = Form(..., alias="clientEmail"),
    batch_id: Optional[str] = Form(None, alias="batchId"),
    files: List[UploadFile] = File(...),
    user: dict = Depends(require_staff),
):
    """
    Store notarized documents under notarized-docs/{email}/{batch}/ and grant
    the client read access. The client account and notary team are resolved before
    anything is stored; if the grant itself fails the stored batch is discarded.
    """
    request_id = new_request_id()
    email = client_email.strip().lower()
    batch = (batch_id or "").strip() or str(uuid.uuid4())

    try:
        notary_team_id()
        if not await find_account_id_by_email(email):
            raise NotFound("Client user not found", error_code="CLIENT_NOT_FOUND")

        payloads = [
            {"filename": f.filename, "content_type": f.content_type, "data": await f.read()}
            for f in files
        ]
        actor_id = user.get("portal_user_id") or user.get("sub")
        descriptors = await store_files(FileScope.NOTARIZED, email, batch, payloads, uploaded_by=actor_id)
        try:
            grant = await grant_file_access(
                email,
                [{"file_id": d["fileId"], "name": d["name"]} for d in descriptors],
                actor_id=actor_id,
                actor_role=user.get("role"),
            )
        except OrchestrationError:
            await discard_files([d["fileId"] for d in descriptors])
            raise
        await create_audit_log(
            action=AuditAction.NOTARIZED_FILES_UPLOADED,
            actor_role=user.get("role"),
            actor_id=actor_id,
            client_email=email,
            resource_type="file_batch",
            resource_id=batch,
            metadata={"file_ids": [d["fileId"] for d in descriptors]},
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "notary upload")

    return {"batchId": batch, "files": descriptors, "grant": grant}


@router.post("/grant-access")
async def grant_access(body: GrantAccessRequest, user: dict = Depends(require_staff)):
    request_id = new_request_id()
    try:
        return await grant_file_access(
            body.client_email,
            [{"file_id": f.file_id, "name": f.name} for f in body.files],
            actor_id=user.get("portal_user_id") or user.get("sub"),
            actor_role=user.get("role"),
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "grant access")


@router.get("")
async def list_files(
    client_email: Optional[str] = Query(None),
    scope: Optional[FileScope] = Query(None),
    user: dict = Depends(require_auth),
):
    """Staff may list any client; clients only see their own files."""
    if _is_staff(user):
        if not client_email:
            raise http_error(ValidationFailed("client_email is required"), new_request_id())
        email = client_email
    else:
        email = user.get("email") or ""
        if not email:
            raise http_error(ValidationFailed("Session carries no email"), new_request_id())

    entries = await list_client_files(email, scope=scope)
    return {
        "files": [
            {
                "fileId": e["file_id"],
                "name": e["name"],
                "size": e.get("size", 0),
                "type": e.get("content_type"),
                "scope": e["scope"],
                "path": e["path"],
                "batchId": e["batch_id"],
                "createdAt": e["created_at"].isoformat() if hasattr(e.get("created_at"), "isoformat") else e.get("created_at"),
            }
            for e in entries
        ]
    }


@router.get("/{file_id}/download")
async def download_file(file_id: str, user: dict = Depends(require_auth)):
    """A purged file is a 404 FILE_NOT_FOUND, never a 500."""
    request_id = new_request_id()
    try:
        content, meta = await storage_adapter.download_file(file_id)
    except ObjectNotFoundError:
        raise http_error(NotFound("File not found", error_code="FILE_NOT_FOUND"), request_id, "download")

    if not _is_staff(user):
        account_id = user.get("portal_user_id")
        if not account_id or f"read:user:{account_id}" not in meta.permissions:
            logger.warning(f"Download denied for {account_id} on {file_id}")
            # Same answer as a missing file; do not reveal existence
            raise http_error(NotFound("File not found", error_code="FILE_NOT_FOUND"), request_id, "download")

    return StreamingResponse(
        io.BytesIO(content),
        media_type=meta.content_type,
        headers={"Content-Disposition": content_disposition(meta.name)},
    )
