"""
File routes: notarized uploads, grants, listing and permission-checked downloads.
Storage, directory and grant service are mocked.
"""
import os
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, patch

from routes.files import content_disposition
from services.errors import NotFound
from services.storage_adapter import FileMetadata, ObjectNotFoundError


def _meta(permissions, name="deed.pdf"):
    return FileMetadata(
        file_id="f1",
        filename=f"notarized-docs/jane@example.com/b1/{name}",
        content_type="application/pdf",
        size_bytes=3,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        permissions=permissions,
    )


class TestDownload:
    def test_requires_auth(self, client):
        assert client.get("/api/files/f1/download").status_code == 401

    def test_granted_client_downloads(self, client, client_headers):
        with patch("routes.files.storage_adapter") as storage:
            storage.download_file = AsyncMock(return_value=(b"pdf", _meta(["read:user:pu-jane", "read:team:t"])))
            response = client.get("/api/files/f1/download", headers=client_headers)
        assert response.status_code == 200
        assert response.content == b"pdf"
        assert 'filename="deed.pdf"' in response.headers["content-disposition"]

    def test_other_client_sees_not_found(self, client, client_headers):
        with patch("routes.files.storage_adapter") as storage:
            storage.download_file = AsyncMock(return_value=(b"pdf", _meta(["read:user:someone-else"])))
            response = client.get("/api/files/f1/download", headers=client_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "FILE_NOT_FOUND"

    def test_purged_file_is_404_not_500(self, client, staff_headers):
        with patch("routes.files.storage_adapter") as storage:
            storage.download_file = AsyncMock(side_effect=ObjectNotFoundError("gone"))
            response = client.get("/api/files/f1/download", headers=staff_headers)
        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["error_code"] == "FILE_NOT_FOUND"
        assert detail["request_id"]

    def test_staff_bypasses_client_permission(self, client, staff_headers):
        with patch("routes.files.storage_adapter") as storage:
            storage.download_file = AsyncMock(return_value=(b"pdf", _meta([])))
            response = client.get("/api/files/f1/download", headers=staff_headers)
        assert response.status_code == 200

    def test_non_latin_filename_downloads(self, client, staff_headers):
        with patch("routes.files.storage_adapter") as storage:
            storage.download_file = AsyncMock(return_value=(b"pdf", _meta([], name="umowa_ł.pdf")))
            response = client.get("/api/files/f1/download", headers=staff_headers)
        assert response.status_code == 200
        header = response.headers["content-disposition"]
        assert 'filename="umowa__.pdf"' in header
        assert "filename*=UTF-8''umowa_%C5%82.pdf" in header


def test_content_disposition_escapes_quotes():
    header = content_disposition('say "hi".pdf')
    assert header.startswith('attachment; filename="say \\"hi\\".pdf"')
    assert header.endswith("filename*=UTF-8''say%20%22hi%22.pdf")


class TestNotaryUpload:
    @pytest.fixture(autouse=True)
    def team(self):
        with patch.dict(os.environ, {"NOTARY_TEAM_ID": "team-notaries"}):
            yield

    def test_unknown_client_stores_nothing(self, client, staff_headers):
        with patch("routes.files.find_account_id_by_email", new_callable=AsyncMock, return_value=None), \
             patch("routes.files.store_files", new_callable=AsyncMock) as store:
            response = client.post(
                "/api/notary/uploads",
                data={"clientEmail": "ghost@example.com", "batchId": "b1"},
                files=[("files", ("deed.pdf", b"pdf", "application/pdf"))],
                headers=staff_headers,
            )
        assert response.status_code == 404
        assert response.json()["detail"]["message"] == "Client user not found"
        store.assert_not_awaited()

    def test_upload_then_grant(self, client, staff_headers):
        descriptor = {
            "fileId": "f1", "name": "deed.pdf", "size": 3, "type": "application/pdf",
            "folderPath": "notarized-docs/jane@example.com/b1",
        }
        grant = {"ok": True, "results": [{"fileId": "f1", "ok": True}]}
        with patch("routes.files.find_account_id_by_email", new_callable=AsyncMock, return_value="pu-jane"), \
             patch("routes.files.store_files", new_callable=AsyncMock, return_value=[descriptor]) as store, \
             patch("routes.files.grant_file_access", new_callable=AsyncMock, return_value=grant) as grant_access, \
             patch("routes.files.create_audit_log", new_callable=AsyncMock):
            response = client.post(
                "/api/notary/uploads",
                data={"clientEmail": "Jane@Example.com", "batchId": "b1"},
                files=[("files", ("deed.pdf", b"pdf", "application/pdf"))],
                headers=staff_headers,
            )
        assert response.status_code == 201
        body = response.json()
        assert body["batchId"] == "b1"
        assert body["files"] == [descriptor]
        assert body["grant"] == grant
        assert store.call_args.args[1] == "jane@example.com"
        assert grant_access.call_args.args[1] == [{"file_id": "f1", "name": "deed.pdf"}]

    def test_failed_grant_discards_the_batch(self, client, staff_headers):
        descriptor = {"fileId": "f1", "name": "deed.pdf", "size": 3, "type": "application/pdf", "folderPath": "x"}
        with patch("routes.files.find_account_id_by_email", new_callable=AsyncMock, return_value="pu-jane"), \
             patch("routes.files.store_files", new_callable=AsyncMock, return_value=[descriptor]), \
             patch("routes.files.grant_file_access", new_callable=AsyncMock,
                   side_effect=NotFound("Client user not found", error_code="CLIENT_NOT_FOUND")), \
             patch("routes.files.discard_files", new_callable=AsyncMock) as discard, \
             patch("routes.files.create_audit_log", new_callable=AsyncMock) as audit:
            response = client.post(
                "/api/notary/uploads",
                data={"clientEmail": "jane@example.com", "batchId": "b1"},
                files=[("files", ("deed.pdf", b"pdf", "application/pdf"))],
                headers=staff_headers,
            )
        assert response.status_code == 404
        discard.assert_awaited_once_with(["f1"])
        audit.assert_not_awaited()

    def test_missing_team_stores_nothing(self, client, staff_headers):
        with patch.dict(os.environ, {"NOTARY_TEAM_ID": ""}), \
             patch("routes.files.find_account_id_by_email", new_callable=AsyncMock, return_value="pu-jane"), \
             patch("routes.files.store_files", new_callable=AsyncMock) as store:
            response = client.post(
                "/api/notary/uploads",
                data={"clientEmail": "jane@example.com", "batchId": "b1"},
                files=[("files", ("deed.pdf", b"pdf", "application/pdf"))],
                headers=staff_headers,
            )
        assert response.status_code == 500
        assert response.json()["detail"]["error_code"] == "SERVER_MISCONFIGURED"
        store.assert_not_awaited()

    def test_requires_staff(self, client, client_headers):
        response = client.post(
            "/api/notary/uploads",
            data={"clientEmail": "jane@example.com"},
            files=[("files", ("deed.pdf", b"pdf", "application/pdf"))],
            headers=client_headers,
        )
        assert response.status_code == 403


class TestGrantAccess:
    def test_unknown_client_is_404(self, client, staff_headers):
        with patch("routes.files.grant_file_access", new_callable=AsyncMock,
                   side_effect=NotFound("Client user not found", error_code="CLIENT_NOT_FOUND")):
            response = client.post(
                "/api/files/grant-access",
                json={"clientEmail": "ghost@example.com", "files": [{"fileId": "f1", "name": "a.pdf"}]},
                headers=staff_headers,
            )
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "CLIENT_NOT_FOUND"

    def test_passes_files_through(self, client, staff_headers):
        with patch("routes.files.grant_file_access", new_callable=AsyncMock,
                   return_value={"ok": True, "results": []}) as grant_access:
            response = client.post(
                "/api/files/grant-access",
                json={"clientEmail": "jane@example.com", "files": [{"fileId": "f1", "name": "a.pdf"}]},
                headers=staff_headers,
            )
        assert response.status_code == 200
        assert grant_access.call_args.args == ("jane@example.com", [{"file_id": "f1", "name": "a.pdf"}])


class TestListFiles:
    def test_staff_must_name_a_client(self, client, staff_headers):
        response = client.get("/api/files", headers=staff_headers)
        assert response.status_code == 400

    def test_client_sees_own_files(self, client, client_headers):
        entry = {
            "file_id": "f1", "name": "deed.pdf", "size": 3, "content_type": "application/pdf",
            "scope": "notarized", "path": "notarized-docs/jane@example.com/b1/deed.pdf", "batch_id": "b1",
            "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }
        with patch("routes.files.list_client_files", new_callable=AsyncMock, return_value=[entry]) as listing:
            response = client.get("/api/files?client_email=someone@else.com", headers=client_headers)
        assert response.status_code == 200
        assert listing.call_args.args[0] == "jane@example.com"
        assert response.json()["files"][0]["fileId"] == "f1"
