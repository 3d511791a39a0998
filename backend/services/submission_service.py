"""
Submission Service - durable record of one client's order wizard run.

Key Principles:
1. A submission is created once, at intake, with current_step=form_submitted
2. Every later wizard screen mutates it in place and advances current_step by one
3. Every mutation refreshes updated_at and increments version; updates carry the
   step and version they were computed from so stale writers get a conflict
4. Submissions are never deleted here

Screen completion:
document_type → service_selected → addons_selected → checkout → (payment) completed
"""
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import database
from models import AuditAction, SubmissionStatus, Submission
from services.catalog import get_service
from services.errors import NotFound, PersistenceError, StepConflict, ValidationFailed
from services.pricing import price_selection
from services.wizard_workflow import (
    Screen,
    WizardStep,
    SCREEN_COMPLETES_TO,
    SCREEN_REQUIRED_STEP,
    STEP_SCREEN,
    guard_screen,
    is_valid_transition,
    parse_step,
    previous_step,
    screen_path,
)
from utils.audit import create_audit_log, step_change

logger = logging.getLogger(__name__)


def block_on_persist_failure() -> bool:
    """When false (default) a failed step write still lets the client move on."""
    return (os.getenv("WIZARD_BLOCK_ON_PERSIST_FAILURE") or "false").strip().lower() in ("1", "true", "yes")


# ============================================================================
# ENCODED LIST FIELDS
# ============================================================================

def encode_list(items: Optional[List[Any]]) -> str:
    return json.dumps(list(items or []))


def decode_list(raw: Any) -> List[Any]:
    """
    Decode a JSON-encoded list field.

    Tolerates the shapes older records hold: an already-decoded list, a single
    encoded object, or a list whose entries are themselves JSON strings.
    Anything unreadable decodes to [].
    """
    if raw is None or raw == "":
        return []
    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable encoded list field")
            return []
    if isinstance(value, dict):
        return [value]
    if not isinstance(value, list):
        return []
    decoded = []
    for entry in value:
        if isinstance(entry, str):
            try:
                entry = json.loads(entry)
            except ValueError:
                pass
        decoded.append(entry)
    return decoded


def serialize_submission(submission: Dict[str, Any]) -> Dict[str, Any]:
    """API view of a stored submission, encoded list fields decoded."""
    def _ts(value):
        return value.isoformat() if isinstance(value, datetime) else value

    return {
        "submissionId": submission.get("submission_id"),
        "clientEmail": submission.get("client_email"),
        "fullName": submission.get("full_name"),
        "serviceSlug": submission.get("service_slug"),
        "documentType": submission.get("document_type"),
        "documentTitle": submission.get("document_title"),
        "documentDescription": submission.get("document_description"),
        "additionalNotes": submission.get("additional_notes"),
        "uploadedFiles": decode_list(submission.get("uploaded_files")),
        "selectedOptions": decode_list(submission.get("selected_options")),
        "selectedAddOns": decode_list(submission.get("selected_add_ons")),
        "extraCopies": submission.get("extra_copies", 0),
        "courierAddress": submission.get("courier_address"),
        "currentStep": submission.get("current_step"),
        "status": submission.get("status"),
        "totalAmountCents": submission.get("total_amount_cents"),
        "totalAmount": submission.get("total_amount"),
        "currency": submission.get("currency"),
        "sessionId": submission.get("session_id"),
        "orderId": submission.get("order_id"),
        "version": submission.get("version"),
        "createdAt": _ts(submission.get("created_at")),
        "updatedAt": _ts(submission.get("updated_at")),
    }


# ============================================================================
# CRUD
# ============================================================================

async def create_submission(
    full_name: str,
    email: str,
    service_slug: str,
    document_title: Optional[str] = None,
    document_description: Optional[str] = None,
    additional_notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a submission at intake.

    Raises:
        ValidationFailed: unknown service slug
        PersistenceError: insert failed
    """
    service = get_service(service_slug)
    if not service:
        raise ValidationFailed(f"Unknown service: {service_slug}", error_code="UNKNOWN_SERVICE")

    submission = Submission(
        client_email=email,
        full_name=full_name.strip(),
        service_slug=service["slug"],
        service_id=service["slug"],
        document_title=document_title,
        document_description=document_description,
        additional_notes=additional_notes,
        currency=service["currency"],
    )
    doc = submission.model_dump()

    db = database.get_db()
    try:
        await db.submissions.insert_one(doc)
    except PyMongoError as e:
        logger.error(f"Failed to create submission for {doc['client_email']}: {e}")
        raise PersistenceError("Could not save submission")

    logger.info(f"Created submission {doc['submission_id']} for service {doc['service_slug']}")
    await create_audit_log(
        action=AuditAction.SUBMISSION_CREATED,
        client_email=doc["client_email"],
        resource_type="submission",
        resource_id=doc["submission_id"],
        metadata={"service_slug": doc["service_slug"]},
    )

    doc.pop("_id", None)
    return doc


async def get_submission(submission_id: str) -> Optional[Dict[str, Any]]:
    """Get a submission by ID."""
    db = database.get_db()
    return await db.submissions.find_one({"submission_id": submission_id}, {"_id": 0})


async def list_submissions_by_email(client_email: str, limit: int = 100) -> List[Dict[str, Any]]:
    """Staff view: a client's submissions, newest first."""
    db = database.get_db()
    cursor = db.submissions.find(
        {"client_email": client_email.strip().lower()},
        {"_id": 0},
    ).sort("created_at", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def update_submission(
    submission_id: str,
    updates: Dict[str, Any],
    expected_step: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """
    Apply a partial update, refreshing updated_at and bumping version.

    The write only lands when the stored step/version still match what the
    caller read. Returns the updated document, or None when nothing matched.
    """
    db = database.get_db()
    query: Dict[str, Any] = {"submission_id": submission_id}
    if expected_step is not None:
        query["current_step"] = expected_step
    if expected_version is not None:
        query["version"] = expected_version

    return await db.submissions.find_one_and_update(
        query,
        {
            "$set": {**updates, "updated_at": datetime.now(timezone.utc)},
            "$inc": {"version": 1},
        },
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


async def append_uploaded_files(submission_id: str, files: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Append file descriptors to uploaded_files, keeping it a valid encoded list."""
    submission = await get_submission(submission_id)
    if not submission:
        raise NotFound("Submission not found", error_code="SUBMISSION_NOT_FOUND")

    current = decode_list(submission.get("uploaded_files"))
    updated = await update_submission(
        submission_id,
        {"uploaded_files": encode_list(current + list(files))},
        expected_version=submission.get("version"),
    )
    if not updated:
        raise StepConflict("Submission changed while uploading, retry", error_code="STALE_VERSION")
    return updated


async def mark_submission_completed(submission_id: str, session_id: str, order_id: Optional[str]) -> bool:
    """Advance checkout → completed after a verified payment. Best effort."""
    try:
        updated = await update_submission(
            submission_id,
            {
                "current_step": WizardStep.COMPLETED.value,
                "status": SubmissionStatus.COMPLETED.value,
                "session_id": session_id,
                "order_id": order_id,
            },
            expected_step=previous_step(WizardStep.COMPLETED).value,
        )
    except PyMongoError as e:
        logger.error(f"Failed to complete submission {submission_id} for session {session_id}: {e}")
        return False
    if not updated:
        logger.info(f"Submission {submission_id} not at checkout step, completion skipped")
        return False
    return True


# ============================================================================
# WIZARD STEP COMPLETION
# ============================================================================

def _step_result(
    screen: Screen,
    to_step: WizardStep,
    submission: Optional[Dict[str, Any]],
    persisted: bool,
) -> Dict[str, Any]:
    next_screen = STEP_SCREEN[to_step]
    slug = (submission or {}).get("service_slug")
    return {
        "screen": screen.value,
        "current_step": to_step.value,
        "next_screen": next_screen.value,
        "target": screen_path(next_screen, slug),
        "persisted": persisted,
        "submission": submission,
    }


def _build_step_fields(screen: Screen, submission: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate screen input against the catalog and return the fields to store."""
    if screen == Screen.DOCUMENT_TYPE:
        return {"document_type": payload["document_type"]}

    service = get_service(submission.get("service_slug"))
    if not service:
        raise ValidationFailed("Submission references an unknown service", error_code="UNKNOWN_SERVICE")

    if screen == Screen.SERVICE_SELECTION:
        quote = price_selection(service, payload["option_keys"])
        return {"selected_options": encode_list(quote.option_keys)}

    if screen == Screen.ADD_ONS:
        quote = price_selection(
            service,
            decode_list(submission.get("selected_options")),
            payload.get("add_on_ids") or [],
            payload.get("extra_copies") or 0,
        )
        return {
            "selected_add_ons": encode_list(quote.add_on_keys),
            "extra_copies": quote.extra_copies,
            "courier_address": payload.get("courier_address") if quote.extra_copies or "courier" in quote.add_on_keys else None,
            "total_amount_cents": quote.total,
            "total_amount": quote.total / 100,
            "currency": quote.currency,
        }

    raise ValidationFailed(f"Screen {screen.value} is not completed through the wizard", error_code="INVALID_SCREEN")


async def complete_step(
    screen: Screen,
    submission_id: str,
    payload: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Store a screen's choices and advance current_step by exactly one.

    Validation errors and step conflicts always propagate. A storage failure is
    logged and, unless WIZARD_BLOCK_ON_PERSIST_FAILURE is set, the client still
    gets the next screen with persisted=False.

    Raises:
        NotFound: unknown submission
        StepConflict: persisted step does not match the screen, or stale version
        ValidationFailed: invalid choices
        PersistenceError: storage failed and blocking is enabled
    """
    to_step = SCREEN_COMPLETES_TO.get(screen)
    if to_step is None:
        raise ValidationFailed(f"Screen {screen.value} is not completed through the wizard", error_code="INVALID_SCREEN")
    required = SCREEN_REQUIRED_STEP[screen]
    if not is_valid_transition(required, to_step):
        raise ValidationFailed(f"{required.value} cannot advance to {to_step.value}", error_code="INVALID_SCREEN")

    try:
        submission = await get_submission(submission_id)
    except PyMongoError as e:
        return _persist_failed(screen, to_step, submission_id, None, e)

    if not submission:
        raise NotFound("Submission not found", error_code="SUBMISSION_NOT_FOUND")
    if submission.get("status") == SubmissionStatus.CANCELLED.value:
        raise StepConflict("Submission was cancelled", error_code="SUBMISSION_CANCELLED")

    current = parse_step(submission.get("current_step"))
    if current != required:
        decision = guard_screen(screen, submission)
        raise StepConflict(
            f"Submission is at step {submission.get('current_step')}, not {required.value}",
            redirect_to=decision.target,
            current_step=submission.get("current_step"),
        )

    version = submission.get("version", 1)
    if expected_version is not None and expected_version != version:
        raise StepConflict(
            "Submission was changed by another session",
            error_code="STALE_VERSION",
            current_version=version,
        )

    fields = _build_step_fields(screen, submission, payload)
    updates = {
        **fields,
        "current_step": to_step.value,
        "status": SubmissionStatus.IN_PROGRESS.value,
    }

    try:
        updated = await update_submission(
            submission_id,
            updates,
            expected_step=required.value,
            expected_version=version,
        )
    except PyMongoError as e:
        return _persist_failed(screen, to_step, submission_id, {**submission, **updates}, e)

    if not updated:
        raise StepConflict(
            "Submission was changed by another session",
            error_code="STALE_VERSION",
        )

    logger.info(f"Submission {submission_id}: {required.value} -> {to_step.value}")
    await create_audit_log(
        action=AuditAction.SUBMISSION_STEP_ADVANCED,
        client_email=updated.get("client_email"),
        resource_type="submission",
        resource_id=submission_id,
        **step_change(required.value, to_step.value, version, updated.get("version")),
        metadata={"screen": screen.value},
    )
    return _step_result(screen, to_step, updated, persisted=True)


def _persist_failed(
    screen: Screen,
    to_step: WizardStep,
    submission_id: str,
    submission: Optional[Dict[str, Any]],
    error: Exception,
) -> Dict[str, Any]:
    logger.error(f"Wizard step {screen.value} not persisted for submission {submission_id}: {error}")
    if block_on_persist_failure():
        raise PersistenceError("Could not save your progress, please retry")
    return _step_result(screen, to_step, submission, persisted=False)
