"""Audit entries: stored shape and failure isolation."""
from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from pymongo.errors import PyMongoError

from models import AuditAction, UserRole
from utils.audit import create_audit_log, step_change


def test_step_change_pairs_step_and_version():
    assert step_change("checkout", "completed", 4, 5) == {
        "before_state": {"current_step": "checkout", "version": 4},
        "after_state": {"current_step": "completed", "version": 5},
    }


@pytest.mark.asyncio
async def test_entry_is_written_with_native_timestamp():
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock()
    with patch("utils.audit.database.get_db", return_value=db):
        audit_id = await create_audit_log(
            action=AuditAction.FILE_ACCESS_GRANTED,
            actor_role=UserRole.ROLE_NOTARY,
            actor_id="pu-staff",
            client_email=" Jane@Example.com ",
            resource_type="file_batch",
            metadata={"results": []},
        )

    doc = db.audit_logs.insert_one.call_args.args[0]
    assert audit_id == doc["audit_id"]
    assert doc["action"] == "FILE_ACCESS_GRANTED"
    assert doc["actor_role"] == "ROLE_NOTARY"
    assert doc["client_email"] == "jane@example.com"
    assert doc["metadata"] == {"results": []}
    assert isinstance(doc["timestamp"], datetime)


@pytest.mark.asyncio
async def test_write_failure_returns_empty_id():
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock(side_effect=PyMongoError("down"))
    with patch("utils.audit.database.get_db", return_value=db):
        assert await create_audit_log(action=AuditAction.RETENTION_PURGE_RUN) == ""


@pytest.mark.asyncio
async def test_no_database_returns_empty_id():
    with patch("utils.audit.database.get_db", return_value=None):
        assert await create_audit_log(action=AuditAction.RETENTION_PURGE_RUN) == ""
