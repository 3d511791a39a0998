"""
Storage Adapter - GridFS-based blob storage for client uploads and notarized documents.

Objects are addressed by GridFS id; the object path lives in the GridFS filename
and the access-control list in metadata.permissions. Listing pages through the
bucket in _id order so a scan can resume from the last id it saw.
"""
import hashlib
import io
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, BinaryIO, List, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from database import database

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "notary_files"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ObjectNotFoundError(StorageError):
    """Object not found in storage."""
    pass


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo returns naive UTC datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FileMetadata:
    """Stored object model."""
    def __init__(
        self,
        file_id: str,
        filename: str,
        content_type: str,
        size_bytes: int,
        created_at: Optional[datetime],
        sha256_hash: str = "",
        uploaded_by: Optional[str] = None,
        permissions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.file_id = file_id
        self.filename = filename
        self.content_type = content_type
        self.size_bytes = size_bytes
        self.created_at = created_at
        self.sha256_hash = sha256_hash
        self.uploaded_by = uploaded_by
        self.permissions = list(permissions or [])
        self.metadata = metadata or {}

    @property
    def name(self) -> str:
        """Display name: last path segment."""
        return self.filename.rsplit("/", 1)[-1]

    @classmethod
    def from_gridfs(cls, file_doc: Dict[str, Any]) -> "FileMetadata":
        gridfs_meta = file_doc.get("metadata") or {}
        return cls(
            file_id=str(file_doc["_id"]),
            filename=file_doc["filename"],
            content_type=gridfs_meta.get("content_type", "application/octet-stream"),
            size_bytes=file_doc.get("length", 0),
            created_at=_as_utc(file_doc.get("uploadDate")),
            sha256_hash=gridfs_meta.get("sha256_hash", ""),
            uploaded_by=gridfs_meta.get("uploaded_by"),
            permissions=gridfs_meta.get("permissions"),
            metadata=gridfs_meta.get("custom_metadata", {}),
        )


class StorageAdapter(ABC):
    """Abstract base class for storage implementations."""

    @abstractmethod
    async def upload_file(
        self,
        file_data: BinaryIO,
        filename: str,
        content_type: str,
        uploaded_by: Optional[str] = None,
        permissions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FileMetadata:
        """Upload an object at path `filename` and return its metadata."""
        pass

    @abstractmethod
    async def download_file(self, file_id: str) -> Tuple[bytes, FileMetadata]:
        """Download object content and metadata."""
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> bool:
        """Delete an object. Returns True if successful."""
        pass

    @abstractmethod
    async def set_permissions(self, file_id: str, permissions: List[str]) -> None:
        """Replace the object's permission list."""
        pass

    @abstractmethod
    async def list_page(self, cursor_after: Optional[str] = None, limit: int = 100) -> List[FileMetadata]:
        """One page of objects ordered by id, strictly after cursor_after."""
        pass


class GridFSStorageAdapter(StorageAdapter):
    """
    GridFS-based storage implementation.
    Stores files in MongoDB GridFS with full metadata tracking.
    """

    def __init__(self, bucket_name: str = DEFAULT_BUCKET):
        self.bucket_name = bucket_name
        self._bucket = None

    def _get_bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create GridFS bucket."""
        if self._bucket is None:
            db = database.get_db()
            self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=self.bucket_name)
        return self._bucket

    def _files(self):
        return database.get_db()[f"{self.bucket_name}.files"]

    def _calculate_hash(self, data: bytes) -> str:
        """Calculate SHA256 hash of file data."""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def _object_id(file_id: str) -> ObjectId:
        try:
            return ObjectId(file_id)
        except (InvalidId, TypeError):
            raise ObjectNotFoundError(f"Invalid file ID: {file_id}")

    async def upload_file(
        self,
        file_data: BinaryIO,
        filename: str,
        content_type: str,
        uploaded_by: Optional[str] = None,
        permissions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FileMetadata:
        """Upload a file to GridFS."""
        bucket = self._get_bucket()

        if hasattr(file_data, 'read'):
            content = file_data.read()
            if isinstance(content, str):
                content = content.encode('utf-8')
        else:
            content = file_data if isinstance(file_data, bytes) else file_data.encode('utf-8')

        sha256_hash = self._calculate_hash(content)

        gridfs_metadata = {
            "content_type": content_type,
            "sha256_hash": sha256_hash,
            "uploaded_by": uploaded_by,
            "permissions": list(permissions or []),
            "custom_metadata": metadata or {},
        }

        try:
            file_id = await bucket.upload_from_stream(
                filename,
                io.BytesIO(content),
                metadata=gridfs_metadata,
            )
        except Exception as e:
            logger.error(f"GridFS upload failed for {filename}: {e}")
            raise StorageError(f"Upload failed: {filename}")

        file_meta = FileMetadata(
            file_id=str(file_id),
            filename=filename,
            content_type=content_type,
            size_bytes=len(content),
            created_at=datetime.now(timezone.utc),
            sha256_hash=sha256_hash,
            uploaded_by=uploaded_by,
            permissions=permissions,
            metadata=metadata,
        )

        logger.info(f"File uploaded to GridFS: {filename} ({file_meta.file_id})")
        return file_meta

    async def download_file(self, file_id: str) -> Tuple[bytes, FileMetadata]:
        """Download file from GridFS."""
        bucket = self._get_bucket()
        object_id = self._object_id(file_id)

        file_doc = await self._files().find_one({"_id": object_id})
        if not file_doc:
            raise ObjectNotFoundError(f"File not found: {file_id}")

        stream = io.BytesIO()
        try:
            await bucket.download_to_stream(object_id, stream)
        except NoFile:
            # Purged between the metadata read and the download
            raise ObjectNotFoundError(f"File not found: {file_id}")

        return stream.getvalue(), FileMetadata.from_gridfs(file_doc)

    async def delete_file(self, file_id: str) -> bool:
        """Delete file from GridFS."""
        bucket = self._get_bucket()

        try:
            await bucket.delete(self._object_id(file_id))
            logger.info(f"File deleted from GridFS: {file_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete file {file_id}: {e}")
            return False

    async def set_permissions(self, file_id: str, permissions: List[str]) -> None:
        """Replace metadata.permissions wholesale. Last write wins."""
        result = await self._files().update_one(
            {"_id": self._object_id(file_id)},
            {"$set": {"metadata.permissions": list(permissions)}},
        )
        if result.matched_count == 0:
            raise ObjectNotFoundError(f"File not found: {file_id}")

    async def list_page(self, cursor_after: Optional[str] = None, limit: int = 100) -> List[FileMetadata]:
        """List one page of objects in _id order."""
        query: Dict[str, Any] = {}
        if cursor_after:
            query["_id"] = {"$gt": self._object_id(cursor_after)}

        cursor = self._files().find(query).sort("_id", 1).limit(limit)
        files = []
        async for file_doc in cursor:
            files.append(FileMetadata.from_gridfs(file_doc))
        return files


# Singleton instance
storage_adapter = GridFSStorageAdapter(os.getenv("STORAGE_BUCKET_ID") or DEFAULT_BUCKET)
