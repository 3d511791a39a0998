"""
File Registry - object paths and the explicit file index.

Object paths keep the layout older tooling relies on:
    {scope-prefix}{client email, lower-cased}/{submission or batch id}/{filename}

Ownership lookups go through the file_index collection, not path prefixes;
the path is stored on the entry for display and for the retention scan.
"""
import logging
import os
from typing import Dict, Any, Optional, List

from pymongo.errors import PyMongoError

from database import database
from models import FileIndexEntry, FileScope
from services.errors import UpstreamError, ValidationFailed
from services.storage_adapter import StorageError, storage_adapter

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_UPLOADS_PREFIX = "client-uploads/"
DEFAULT_NOTARIZED_PREFIX = "notarized-docs/"


def _normalize_prefix(value: str) -> str:
    value = value.strip()
    return value if value.endswith("/") else f"{value}/"


def scope_prefix(scope: FileScope) -> str:
    if scope == FileScope.NOTARIZED:
        return _normalize_prefix(os.getenv("PREFIX_NOTARIZED") or DEFAULT_NOTARIZED_PREFIX)
    return _normalize_prefix(os.getenv("PREFIX_CLIENT_UPLOADS") or DEFAULT_CLIENT_UPLOADS_PREFIX)


def build_object_path(scope: FileScope, client_email: str, batch_id: str, filename: str) -> str:
    """Byte-exact object path. Only the email is case-folded."""
    email = (client_email or "").strip().lower()
    if not email or not batch_id:
        raise ValidationFailed("client email and batch id are required for file paths")
    # Keep the filename a single path segment
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name:
        raise ValidationFailed("filename is required")
    return f"{scope_prefix(scope)}{email}/{batch_id}/{name}"


def folder_path(scope: FileScope, client_email: str, batch_id: str) -> str:
    return f"{scope_prefix(scope)}{client_email.strip().lower()}/{batch_id}"


async def store_files(
    scope: FileScope,
    client_email: str,
    batch_id: str,
    files: List[Dict[str, Any]],
    uploaded_by: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Upload a batch under one folder and index every object.

    The batch is all or nothing: paths are validated before the first upload,
    and a storage failure discards the objects already stored for the batch.

    Args:
        files: [{filename, content_type, data}]

    Returns:
        File descriptors [{fileId, name, size, type, folderPath}] in input order
    """
    db = database.get_db()
    email = client_email.strip().lower()
    folder = folder_path(scope, email, batch_id)
    paths = [build_object_path(scope, email, batch_id, f["filename"]) for f in files]
    descriptors = []

    for f, path in zip(files, paths):
        try:
            meta = await storage_adapter.upload_file(
                file_data=f["data"],
                filename=path,
                content_type=f.get("content_type") or "application/octet-stream",
                uploaded_by=uploaded_by,
                metadata={"client_email": email, "batch_id": batch_id, "scope": scope.value},
            )
        except StorageError as e:
            logger.error(f"Upload failed for {path}: {e}")
            await discard_files([d["fileId"] for d in descriptors])
            raise UpstreamError("File upload failed", error_code="STORAGE_FAILED")

        entry = FileIndexEntry(
            file_id=meta.file_id,
            client_email=email,
            batch_id=batch_id,
            scope=scope,
            path=path,
            name=meta.name,
            size=meta.size_bytes,
            content_type=meta.content_type,
            uploaded_by=uploaded_by,
        )
        try:
            await db.file_index.insert_one(entry.model_dump())
        except PyMongoError as e:
            # Object exists without an index row; listing will miss it until re-indexed
            logger.error(f"Failed to index file {meta.file_id} at {path}: {e}")

        descriptors.append({
            "fileId": meta.file_id,
            "name": meta.name,
            "size": meta.size_bytes,
            "type": meta.content_type,
            "folderPath": folder,
        })

    logger.info(f"Stored {len(descriptors)} file(s) under {folder}")
    return descriptors


async def list_client_files(client_email: str, scope: Optional[FileScope] = None, limit: int = 200) -> List[Dict[str, Any]]:
    """Indexed files for a client, newest first."""
    db = database.get_db()
    query: Dict[str, Any] = {"client_email": client_email.strip().lower()}
    if scope:
        query["scope"] = scope.value
    cursor = db.file_index.find(query, {"_id": 0}).sort("created_at", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def remove_index_entry(file_id: str) -> None:
    """Drop the index row of a deleted object. Failures are logged only."""
    try:
        await database.get_db().file_index.delete_one({"file_id": file_id})
    except PyMongoError as e:
        logger.warning(f"Failed to remove index entry for {file_id}: {e}")


async def discard_files(file_ids: List[str]) -> None:
    """Delete objects of an abandoned batch along with their index rows."""
    for file_id in file_ids:
        if not await storage_adapter.delete_file(file_id):
            logger.error(f"Could not discard file {file_id}; it stays stored without access")
        await remove_index_entry(file_id)
    if file_ids:
        logger.warning(f"Discarded {len(file_ids)} file(s) from an incomplete batch")
