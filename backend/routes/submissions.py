"""Order Wizard Routes - submissions and their step-by-step progression.

Endpoints:
- POST /api/submissions - Intake form; creates the submission at form_submitted
- GET /api/submissions/{submission_id} - Read a submission
- GET /api/submissions/{submission_id}/guard?screen= - May this screen render?
- POST /api/submissions/{submission_id}/steps/document-type - → service_selected
- POST /api/submissions/{submission_id}/steps/service-selection - → addons_selected
- POST /api/submissions/{submission_id}/steps/add-ons - → checkout (prices the order)
- POST /api/submissions/{submission_id}/files - Client document upload
- GET /api/submissions?client_email= - Staff: a client's submissions

The submission id travels in the path; there is no server-side "current submission".
"""
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from typing import List, Dict, Any
import logging

from middleware import require_staff
from models import (
    AuditAction,
    AddOnsStepRequest,
    DocumentTypeStepRequest,
    FileScope,
    ServiceSelectionStepRequest,
    SubmissionCreateRequest,
)
from services import submission_service
from services.errors import NotFound, OrchestrationError, ValidationFailed
from services.file_registry import discard_files, store_files
from services.wizard_workflow import Screen, guard_screen
from utils.audit import create_audit_log
from utils.http_errors import http_error, new_request_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/submissions", tags=["submissions"])

MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def _step_response(result: Dict[str, Any]) -> Dict[str, Any]:
    submission = result.get("submission")
    return {
        "screen": result["screen"],
        "currentStep": result["current_step"],
        "nextScreen": result["next_screen"],
        "redirectTo": result["target"],
        "persisted": result["persisted"],
        "submission": submission_service.serialize_submission(submission) if submission else None,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_submission(body: SubmissionCreateRequest):
    """Intake form submission. Returns the submission id the client carries forward."""
    request_id = new_request_id()
    try:
        submission = await submission_service.create_submission(
            full_name=body.full_name,
            email=body.email,
            service_slug=body.service_slug,
            document_title=body.document_title,
            document_description=body.document_description,
            additional_notes=body.additional_notes,
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "create submission")
    return submission_service.serialize_submission(submission)


@router.get("")
async def list_submissions(
    client_email: str = Query(..., min_length=3),
    limit: int = Query(100, ge=1, le=500),
    _user: dict = Depends(require_staff),
):
    submissions = await submission_service.list_submissions_by_email(client_email, limit=limit)
    return {
        "items": [submission_service.serialize_submission(s) for s in submissions],
        "total": len(submissions),
    }


@router.get("/{submission_id}")
async def get_submission(submission_id: str):
    submission = await submission_service.get_submission(submission_id)
    if not submission:
        raise http_error(NotFound("Submission not found", error_code="SUBMISSION_NOT_FOUND"), new_request_id())
    return submission_service.serialize_submission(submission)


@router.get("/{submission_id}/guard")
async def guard(submission_id: str, screen: Screen = Query(...)):
    """Render/redirect decision for a wizard screen."""
    submission = await submission_service.get_submission(submission_id)
    return guard_screen(screen, submission).to_dict()


async def _complete(screen: Screen, submission_id: str, payload: Dict[str, Any], expected_version):
    request_id = new_request_id()
    try:
        result = await submission_service.complete_step(
            screen,
            submission_id,
            payload,
            expected_version=expected_version,
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, f"step {screen.value}")
    return _step_response(result)


@router.post("/{submission_id}/steps/document-type")
async def complete_document_type(submission_id: str, body: DocumentTypeStepRequest):
    return await _complete(
        Screen.DOCUMENT_TYPE,
        submission_id,
        {"document_type": body.document_type.value},
        body.expected_version,
    )


@router.post("/{submission_id}/steps/service-selection")
async def complete_service_selection(submission_id: str, body: ServiceSelectionStepRequest):
    return await _complete(
        Screen.SERVICE_SELECTION,
        submission_id,
        {"option_keys": body.option_keys},
        body.expected_version,
    )


@router.post("/{submission_id}/steps/add-ons")
async def complete_add_ons(submission_id: str, body: AddOnsStepRequest):
    return await _complete(
        Screen.ADD_ONS,
        submission_id,
        {
            "add_on_ids": body.add_on_ids,
            "extra_copies": body.extra_copies,
            "courier_address": body.courier_address,
        },
        body.expected_version,
    )


@router.post("/{submission_id}/files", status_code=status.HTTP_201_CREATED)
async def upload_submission_files(submission_id: str, files: List[UploadFile] = File(...)):
    """Client document upload, stored under the client-uploads scope."""
    request_id = new_request_id()
    submission = await submission_service.get_submission(submission_id)
    if not submission:
        raise http_error(NotFound("Submission not found", error_code="SUBMISSION_NOT_FOUND"), request_id)

    payloads = []
    for upload in files:
        data = await upload.read()
        if len(data) > MAX_UPLOAD_BYTES:
            raise http_error(
                ValidationFailed(f"{upload.filename} exceeds the 20 MB limit", error_code="FILE_TOO_LARGE"),
                request_id,
            )
        payloads.append({"filename": upload.filename, "content_type": upload.content_type, "data": data})

    try:
        descriptors = await store_files(
            FileScope.CLIENT_UPLOADS,
            submission["client_email"],
            submission_id,
            payloads,
            uploaded_by=submission["client_email"],
        )
        try:
            updated = await submission_service.append_uploaded_files(submission_id, descriptors)
        except OrchestrationError:
            # Objects not listed on the submission would be unreachable
            await discard_files([d["fileId"] for d in descriptors])
            raise
    except OrchestrationError as e:
        raise http_error(e, request_id, "client upload")

    await create_audit_log(
        action=AuditAction.SUBMISSION_FILES_UPLOADED,
        client_email=submission["client_email"],
        resource_type="submission",
        resource_id=submission_id,
        metadata={"file_ids": [d["fileId"] for d in descriptors]},
    )
    return {
        "files": descriptors,
        "submission": submission_service.serialize_submission(updated),
    }
