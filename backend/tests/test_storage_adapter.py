"""
GridFS adapter against a mocked files collection and bucket.
Permission lists are replaced wholesale; listing resumes strictly after the cursor id.
"""
from datetime import datetime

import pytest
from bson import ObjectId
from gridfs.errors import NoFile
from unittest.mock import AsyncMock, MagicMock, patch

from services.access_grant_service import build_permissions
from services.storage_adapter import GridFSStorageAdapter, ObjectNotFoundError

FILE_ID = "65a000000000000000000001"


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self.sort_args = None
        self.limit_value = None

    def sort(self, *args):
        self.sort_args = args
        return self

    def limit(self, value):
        self.limit_value = value
        return self

    def __aiter__(self):
        async def _iter():
            for doc in self.docs:
                yield doc
        return _iter()


def _file_doc(oid, path, permissions=None):
    return {
        "_id": ObjectId(oid),
        "filename": path,
        "length": 3,
        "uploadDate": datetime(2026, 1, 1),
        "metadata": {"content_type": "application/pdf", "permissions": permissions or []},
    }


@pytest.fixture
def files():
    return MagicMock()


@pytest.fixture
def adapter(files):
    db = MagicMock()
    db.__getitem__.return_value = files
    instance = GridFSStorageAdapter("notary_files")
    instance._bucket = MagicMock()
    with patch("services.storage_adapter.database.get_db", return_value=db):
        yield instance


class TestSetPermissions:
    @pytest.mark.asyncio
    async def test_replaces_the_whole_list(self, adapter, files):
        files.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        permissions = build_permissions("pu-jane", "team-notaries")

        await adapter.set_permissions(FILE_ID, permissions)

        query, update = files.update_one.call_args.args
        assert query == {"_id": ObjectId(FILE_ID)}
        assert update == {"$set": {"metadata.permissions": [
            "read:user:pu-jane",
            "read:team:team-notaries",
            "write:team:team-notaries",
            "update:team:team-notaries",
            "delete:team:team-notaries",
        ]}}

    @pytest.mark.asyncio
    async def test_missing_object(self, adapter, files):
        files.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        with pytest.raises(ObjectNotFoundError):
            await adapter.set_permissions(FILE_ID, ["read:user:pu-jane"])

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, adapter, files):
        files.update_one = AsyncMock()
        with pytest.raises(ObjectNotFoundError):
            await adapter.set_permissions("not-an-object-id", [])
        files.update_one.assert_not_awaited()


class TestListPage:
    @pytest.mark.asyncio
    async def test_first_page_has_no_cursor_filter(self, adapter, files):
        cursor = FakeCursor([_file_doc(FILE_ID, "client-uploads/jane@example.com/s/a.pdf")])
        files.find = MagicMock(return_value=cursor)

        page = await adapter.list_page(limit=50)

        files.find.assert_called_once_with({})
        assert cursor.sort_args == ("_id", 1)
        assert cursor.limit_value == 50
        assert [f.file_id for f in page] == [FILE_ID]
        assert page[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_resumes_strictly_after_cursor(self, adapter, files):
        cursor = FakeCursor([])
        files.find = MagicMock(return_value=cursor)

        await adapter.list_page(cursor_after=FILE_ID, limit=100)

        files.find.assert_called_once_with({"_id": {"$gt": ObjectId(FILE_ID)}})
        assert cursor.sort_args == ("_id", 1)


class TestDownload:
    @pytest.mark.asyncio
    async def test_returns_content_and_permissions(self, adapter, files):
        files.find_one = AsyncMock(return_value=_file_doc(FILE_ID, "notarized-docs/j@x.com/b/deed.pdf", ["read:user:pu-j"]))

        async def write(oid, stream):
            stream.write(b"pdf")
        adapter._bucket.download_to_stream = AsyncMock(side_effect=write)

        content, meta = await adapter.download_file(FILE_ID)
        assert content == b"pdf"
        assert meta.name == "deed.pdf"
        assert meta.permissions == ["read:user:pu-j"]

    @pytest.mark.asyncio
    async def test_purged_between_read_and_download(self, adapter, files):
        files.find_one = AsyncMock(return_value=_file_doc(FILE_ID, "notarized-docs/j@x.com/b/deed.pdf"))
        adapter._bucket.download_to_stream = AsyncMock(side_effect=NoFile("gone"))
        with pytest.raises(ObjectNotFoundError):
            await adapter.download_file(FILE_ID)

    @pytest.mark.asyncio
    async def test_unknown_id(self, adapter, files):
        files.find_one = AsyncMock(return_value=None)
        with pytest.raises(ObjectNotFoundError):
            await adapter.download_file(FILE_ID)
