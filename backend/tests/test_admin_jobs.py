"""Manual retention purge run and the shared job runner."""
import pytest
from unittest.mock import AsyncMock, patch

import job_runner


def test_manual_run_requires_staff(client, client_headers):
    assert client.post("/api/admin/jobs/retention-purge/run").status_code == 401
    assert client.post("/api/admin/jobs/retention-purge/run", headers=client_headers).status_code == 403


def test_manual_dry_run(client, staff_headers):
    summary = {"ok": True, "examined": 4, "deleted": 0, "retentionDays": 3, "dryRun": True, "wouldDelete": 2}
    runner = AsyncMock(return_value={"message": "Retention purge examined 4 file(s), would delete 2", "count": 2, "summary": summary})
    with patch.dict(job_runner.JOB_RUNNERS, {"retention_purge": runner}), \
         patch("routes.admin_jobs.create_audit_log", new_callable=AsyncMock):
        response = client.post(
            "/api/admin/jobs/retention-purge/run",
            json={"dryRun": True, "retentionDays": 3},
            headers=staff_headers,
        )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["wouldDelete"] == 2
    runner.assert_awaited_once_with(dry_run=True, retention_days=3)


@pytest.mark.asyncio
async def test_job_runner_reports_count():
    summary = {"ok": True, "examined": 10, "deleted": 3, "retentionDays": 7, "dryRun": False}
    with patch("services.retention_purge.run_retention_purge", new_callable=AsyncMock, return_value=summary):
        result = await job_runner.run_retention_purge(dry_run=False)
    assert result["count"] == 3
    assert result["summary"] == summary
    assert "deleted 3" in result["message"]
