"""
Retention Purge - delete client uploads and notarized documents past the retention window.

Scans the whole bucket in pages of PAGE_SIZE ordered by object id. An object is
purged when its path starts with one of the scope prefixes AND it is strictly
older than the window. One failed delete is logged and skipped; the scan always
finishes its pass. Running twice is safe: deleted objects no longer list.
"""
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional, Union

from models import AuditAction, FileScope
from services.errors import UpstreamError
from services.file_registry import (
    DEFAULT_CLIENT_UPLOADS_PREFIX,
    DEFAULT_NOTARIZED_PREFIX,
    remove_index_entry,
    scope_prefix,
)
from services.storage_adapter import FileMetadata, StorageAdapter, storage_adapter
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
DEFAULT_RETENTION_DAYS = 7


def parse_retention_days(raw: Any) -> Union[int, float]:
    """Any finite number is honoured, 0 included. Anything else falls back to 7."""
    if raw is None or isinstance(raw, bool):
        return DEFAULT_RETENTION_DAYS
    try:
        value = float(str(raw).strip())
    except ValueError:
        return DEFAULT_RETENTION_DAYS
    if not math.isfinite(value):
        return DEFAULT_RETENTION_DAYS
    return int(value) if value.is_integer() else value


def parse_dry_run(raw: Any) -> bool:
    return str(raw or "false").strip().lower() == "true"


@dataclass
class RetentionConfig:
    retention_days: Union[int, float] = DEFAULT_RETENTION_DAYS
    prefixes: List[str] = field(default_factory=lambda: [DEFAULT_CLIENT_UPLOADS_PREFIX, DEFAULT_NOTARIZED_PREFIX])
    dry_run: bool = False

    @classmethod
    def from_env(cls, dry_run: Optional[bool] = None, retention_days: Optional[Union[int, float]] = None) -> "RetentionConfig":
        """Read RETENTION_DAYS, PREFIX_CLIENT_UPLOADS, PREFIX_NOTARIZED, DRY_RUN; explicit args win."""
        prefixes = [scope_prefix(FileScope.CLIENT_UPLOADS), scope_prefix(FileScope.NOTARIZED)]
        return cls(
            retention_days=parse_retention_days(os.getenv("RETENTION_DAYS")) if retention_days is None else retention_days,
            prefixes=prefixes,
            dry_run=parse_dry_run(os.getenv("DRY_RUN")) if dry_run is None else dry_run,
        )


def in_scope(name: str, prefixes: List[str]) -> bool:
    return isinstance(name, str) and any(name.startswith(p) for p in prefixes if p)


def is_expired(created_at: Optional[datetime], retention_days: Union[int, float], now: datetime) -> bool:
    """Strictly older than the window. Objects without a timestamp are kept."""
    if created_at is None:
        return False
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (now - created_at) > timedelta(days=retention_days)


def _describe(f: FileMetadata) -> str:
    created = f.created_at.isoformat() if f.created_at else None
    return f"{f.filename} ({f.file_id}), createdAt={created}"


async def run_retention_purge(
    config: Optional[RetentionConfig] = None,
    storage: Optional[StorageAdapter] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Run one full purge pass.

    Returns:
        {ok, examined, deleted, retentionDays, dryRun}; dry runs add wouldDelete

    Raises:
        UpstreamError: a page could not be listed
    """
    config = config or RetentionConfig.from_env()
    storage = storage or storage_adapter
    now = now or datetime.now(timezone.utc)

    examined = 0
    deleted = 0
    would_delete = 0
    failed = 0
    cursor: Optional[str] = None

    while True:
        try:
            page = await storage.list_page(cursor_after=cursor, limit=PAGE_SIZE)
        except Exception as e:
            logger.error(f"Retention purge: listing failed after cursor {cursor}: {e}")
            raise UpstreamError("Storage listing failed", error_code="STORAGE_FAILED")

        if not page:
            break

        for f in page:
            examined += 1
            if not (in_scope(f.filename, config.prefixes) and is_expired(f.created_at, config.retention_days, now)):
                continue

            if config.dry_run:
                would_delete += 1
                logger.info(f"[DRY_RUN] Would delete: {_describe(f)}")
                continue

            try:
                ok = await storage.delete_file(f.file_id)
            except Exception as e:
                logger.error(f"Delete failed for {f.filename} ({f.file_id}): {e}")
                ok = False
            if ok:
                deleted += 1
                logger.info(f"Deleted: {_describe(f)}")
                await remove_index_entry(f.file_id)
            else:
                failed += 1

        if len(page) < PAGE_SIZE:
            break
        next_cursor = page[-1].file_id
        if not next_cursor or next_cursor == cursor:
            logger.warning("Retention purge: cursor did not advance, stopping scan")
            break
        cursor = next_cursor

    summary: Dict[str, Any] = {
        "ok": True,
        "examined": examined,
        "deleted": deleted,
        "retentionDays": config.retention_days,
        "dryRun": config.dry_run,
    }
    if config.dry_run:
        summary["wouldDelete"] = would_delete
    if failed:
        summary["failed"] = failed

    logger.info(f"Retention purge summary: {summary}")
    await create_audit_log(
        action=AuditAction.RETENTION_PURGE_RUN,
        resource_type="storage_bucket",
        metadata=summary,
    )
    return summary
