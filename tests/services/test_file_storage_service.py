"""Tests for CloudFileStorageService."""

from __future__ import annotations

import io

import pytest
from prometheus_client import REGISTRY

from cloudfiles.app.services.base import FileValidationError
from cloudfiles.app.services.file_metadata import compute_checksum
from cloudfiles.app.services.file_storage_service import (
    CloudFileNotFoundError,
    CloudFileStorageService,
    InvalidFileContentError,
    InvalidFileIdError,
)
from cloudfiles.common.config import Settings
from cloudfiles.domain import METADATA_CHECKSUM, METADATA_USER_ID
from cloudfiles.infra.storage.client import StorageError, StorageServiceError
from tests.services.mock_storage import MockStorageClient, unreachable_backend


class ExplodingStream(io.RawIOBase):
    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        raise OSError("connection reset by peer")


@pytest.fixture()
def mock_storage():
    return MockStorageClient()


@pytest.fixture()
def settings():
    return Settings()


@pytest.fixture()
def service(mock_storage, settings):
    return CloudFileStorageService(storage_client=mock_storage, settings=settings)


def _save(service, filename, content=b"Hello World", **kwargs):
    kwargs.setdefault("user_id", "user123")
    kwargs.setdefault("content_type", "text/plain")
    return service.save(payload=io.BytesIO(content), filename=filename, **kwargs)


def _operation_count(operation: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "storage_operations_total", {"operation": operation, "outcome": outcome}
    )
    return value or 0.0


class TestSave:
    def test_returns_descriptor_of_saved_file(self, service):
        saved = _save(service, "s3://bucket1/path/file1.txt")

        assert saved.id == "s3://bucket1/path/file1.txt"
        assert saved.filename == "s3://bucket1/path/file1.txt"
        assert saved.user_id == "user123"
        assert saved.content_type == "text/plain"
        assert saved.size == len(b"Hello World")
        assert saved.checksum == compute_checksum(b"Hello World")
        assert saved.last_modified is not None

    def test_writes_once_then_refetches_with_object_key(self, service, mock_storage):
        _save(service, "s3://bucket1/path/file1.txt")

        operations = [name for name, _ in mock_storage.calls]
        assert operations == ["put_object", "head_object"]
        put = mock_storage.calls_to("put_object")[0]
        assert put["bucket"] == "bucket1"
        assert put["object_key"] == "path/file1.txt"
        assert put["content_type"] == "text/plain"
        head = mock_storage.calls_to("head_object")[0]
        assert head == {"bucket": "bucket1", "object_key": "path/file1.txt"}

    def test_merges_caller_metadata_as_text(self, service, mock_storage):
        _save(
            service,
            "s3://bucket1/data.bin",
            metadata={"project": "apollo", "revision": 3, "draft": False, "note": None},
        )

        sent = mock_storage.calls_to("put_object")[0]["metadata"]
        assert sent == {
            "project": "apollo",
            "revision": "3",
            "draft": "False",
            METADATA_USER_ID: "user123",
            METADATA_CHECKSUM: compute_checksum(b"Hello World"),
        }

    def test_reserved_keys_override_caller_values(self, service, mock_storage):
        _save(
            service,
            "s3://bucket1/data.bin",
            metadata={METADATA_USER_ID: "mallory", METADATA_CHECKSUM: "forged"},
        )

        sent = mock_storage.calls_to("put_object")[0]["metadata"]
        assert sent[METADATA_USER_ID] == "user123"
        assert sent[METADATA_CHECKSUM] == compute_checksum(b"Hello World")

    @pytest.mark.parametrize("user_id", [None, "", "   "])
    def test_blank_owner_is_not_stored(self, service, mock_storage, user_id):
        saved = _save(service, "s3://bucket1/anon.txt", user_id=user_id)

        sent = mock_storage.calls_to("put_object")[0]["metadata"]
        assert METADATA_USER_ID not in sent
        assert saved.user_id is None

    def test_blank_owner_keeps_caller_owner_value(self, service, mock_storage):
        _save(
            service,
            "s3://bucket1/anon.txt",
            user_id=None,
            metadata={METADATA_USER_ID: "importer"},
        )

        sent = mock_storage.calls_to("put_object")[0]["metadata"]
        assert sent[METADATA_USER_ID] == "importer"

    def test_empty_payload_is_stored(self, service):
        saved = _save(service, "s3://bucket1/empty.txt", content=b"")

        assert saved.size == 0
        assert saved.checksum == compute_checksum(b"")

    def test_rejects_missing_payload(self, service, mock_storage):
        with pytest.raises(FileValidationError, match="payload"):
            service.save(
                user_id="u1",
                payload=None,
                filename="s3://bucket1/a.txt",
                content_type="text/plain",
            )
        assert mock_storage.calls == []

    @pytest.mark.parametrize("filename", ["", "   ", None])
    def test_rejects_blank_filename(self, service, mock_storage, filename):
        with pytest.raises(FileValidationError, match="filename"):
            _save(service, filename)
        assert mock_storage.calls == []

    @pytest.mark.parametrize("content_type", ["", " ", None])
    def test_rejects_blank_content_type(self, service, mock_storage, content_type):
        with pytest.raises(FileValidationError, match="content_type"):
            _save(service, "s3://bucket1/a.txt", content_type=content_type)
        assert mock_storage.calls == []

    @pytest.mark.parametrize(
        "filename",
        [
            "bucket1/path/file.txt",
            "https://bucket1.s3.amazonaws.com/file.txt",
            "s3://bucket1",
            "s3://bucket1/",
            "s3:///file.txt",
        ],
    )
    def test_rejects_malformed_identifier(self, service, mock_storage, filename):
        with pytest.raises(InvalidFileIdError):
            _save(service, filename)
        assert mock_storage.calls_to("put_object") == []

    def test_wraps_stream_failure(self, service, mock_storage):
        with pytest.raises(InvalidFileContentError, match="connection reset") as info:
            service.save(
                user_id="u1",
                payload=ExplodingStream(),
                filename="s3://bucket1/a.txt",
                content_type="text/plain",
            )
        assert isinstance(info.value.__cause__, OSError)
        assert mock_storage.calls == []

    def test_wraps_closed_stream(self, service, mock_storage):
        payload = io.BytesIO(b"data")
        payload.close()

        with pytest.raises(InvalidFileContentError, match="closed file") as info:
            service.save(
                user_id="u1",
                payload=payload,
                filename="s3://bucket1/a.txt",
                content_type="text/plain",
            )
        assert isinstance(info.value.__cause__, ValueError)
        assert mock_storage.calls == []

    def test_rejects_text_stream(self, service):
        with pytest.raises(InvalidFileContentError):
            service.save(
                user_id="u1",
                payload=io.StringIO("not bytes"),
                filename="s3://bucket1/a.txt",
                content_type="text/plain",
            )

    def test_rejects_payload_over_limit(self, mock_storage):
        service = CloudFileStorageService(
            storage_client=mock_storage,
            settings=Settings(STORAGE_MAX_UPLOAD_BYTES=8),
        )

        with pytest.raises(InvalidFileContentError, match="too large"):
            _save(service, "s3://bucket1/big.bin", content=b"123456789")
        assert mock_storage.calls == []

    def test_accepts_payload_at_limit(self, mock_storage):
        service = CloudFileStorageService(
            storage_client=mock_storage,
            settings=Settings(STORAGE_MAX_UPLOAD_BYTES=8),
        )

        saved = _save(service, "s3://bucket1/fits.bin", content=b"12345678")

        assert saved.size == 8

    def test_backend_write_failure_propagates_unchanged(self, service, mock_storage):
        failure = StorageServiceError("Access Denied", code="AccessDenied", status_code=403)
        mock_storage.failures["put_object"] = failure

        with pytest.raises(StorageServiceError) as info:
            _save(service, "s3://bucket1/a.txt")

        assert info.value is failure
        assert mock_storage.calls_to("head_object") == []


class TestChecksum:
    def test_same_content_under_different_ids_has_same_checksum(self, service):
        first = _save(service, "s3://bucket1/a.txt", content=b"payload")
        second = _save(service, "s3://bucket2/other/b.txt", content=b"payload")

        assert first.checksum == second.checksum

    def test_single_byte_difference_changes_checksum(self, service):
        first = _save(service, "s3://bucket1/a.txt", content=b"payload-1")
        second = _save(service, "s3://bucket1/b.txt", content=b"payload-2")

        assert first.checksum != second.checksum


class TestFind:
    def test_finds_existing_file(self, service, mock_storage):
        mock_storage.put_raw(
            "bucket",
            "path/file.txt",
            b"file content",
            metadata={METADATA_USER_ID: "user123", METADATA_CHECKSUM: "abc123"},
        )

        found = service.find_by_filename("s3://bucket/path/file.txt")

        assert found is not None
        assert found.id == "s3://bucket/path/file.txt"
        assert found.user_id == "user123"
        assert found.checksum == "abc123"
        assert found.size == 12
        assert found.content_type == "text/plain"

    def test_reserved_fields_absent_when_metadata_missing(self, service, mock_storage):
        mock_storage.put_raw("bucket", "legacy.txt", b"x")

        found = service.find_by_id("s3://bucket/legacy.txt")

        assert found is not None
        assert found.user_id is None
        assert found.checksum is None

    def test_missing_file_returns_none(self, service):
        before = _operation_count("find", "not_found")

        assert service.find_by_filename("s3://bucket/path/nonexistent.txt") is None
        assert service.find_by_id("s3://bucket/path/nonexistent.txt") is None
        assert _operation_count("find", "not_found") == before + 2

    def test_inaccessible_file_returns_none(self, service, mock_storage):
        mock_storage.failures["head_object"] = StorageServiceError(
            "Forbidden", code="403", status_code=403
        )

        assert service.find_by_id("s3://bucket/secret.txt") is None

    def test_other_backend_errors_propagate(self, service, mock_storage):
        mock_storage.failures["head_object"] = StorageServiceError(
            "Slow Down", code="SlowDown", status_code=503
        )

        with pytest.raises(StorageServiceError, match="Slow Down"):
            service.find_by_id("s3://bucket/file.txt")

    def test_transport_errors_propagate(self, service, mock_storage):
        mock_storage.failures["head_object"] = unreachable_backend()

        with pytest.raises(StorageError, match="Could not connect"):
            service.find_by_filename("s3://bucket/file.txt")

    def test_rejects_malformed_identifier(self, service):
        with pytest.raises(InvalidFileIdError):
            service.find_by_id("not-a-uri")


class TestGetInputStream:
    def test_round_trip_returns_saved_bytes(self, service):
        content = bytes(range(256)) * 4
        saved = _save(service, "s3://bucket1/blob.bin", content=content)

        stream = service.get_input_stream(saved.id)

        assert stream.read() == content

    def test_missing_file_raises_not_found(self, service):
        with pytest.raises(CloudFileNotFoundError):
            service.get_input_stream("s3://bucket/path/nonexistent.txt")

    def test_any_service_error_is_not_found(self, service, mock_storage):
        failure = StorageServiceError("Internal Error", code="InternalError", status_code=500)
        mock_storage.failures["get_object_bytes"] = failure

        with pytest.raises(CloudFileNotFoundError) as info:
            service.get_input_stream("s3://bucket/file.txt")
        assert info.value.__cause__ is failure

    def test_transport_errors_propagate(self, service, mock_storage):
        mock_storage.failures["get_object_bytes"] = unreachable_backend()

        with pytest.raises(StorageError) as info:
            service.get_input_stream("s3://bucket/file.txt")
        assert not isinstance(info.value, StorageServiceError)

    def test_makes_single_backend_call(self, service, mock_storage):
        mock_storage.put_raw("bucket", "file.txt", b"file content")

        service.get_input_stream("s3://bucket/file.txt")

        assert [name for name, _ in mock_storage.calls] == ["get_object_bytes"]


class TestListFiles:
    def test_lists_files_in_directory(self, service, mock_storage):
        mock_storage.put_raw("bucket", "path/file1.txt", b"one")
        mock_storage.put_raw("bucket", "path/file2.txt", b"two")
        mock_storage.put_raw("bucket", "other/file3.txt", b"three")
        mock_storage.put_raw("bucket2", "path/file4.txt", b"four")

        files = service.list_files("s3://bucket/path/")

        assert len(files) == 2
        assert {f.id for f in files} == {
            "s3://bucket/path/file1.txt",
            "s3://bucket/path/file2.txt",
        }
        assert all(f.id == f.filename for f in files)

    def test_lists_with_key_prefix(self, service, mock_storage):
        service.list_files("s3://bucket/path/")

        assert mock_storage.calls_to("iter_object_pages") == [
            {"bucket": "bucket", "prefix": "path/"}
        ]

    def test_lists_whole_bucket(self, service, mock_storage):
        mock_storage.put_raw("bucket", "a.txt", b"a")
        mock_storage.put_raw("bucket", "nested/b.txt", b"b")

        files = service.list_files("s3://bucket/")

        assert [f.id for f in files] == ["s3://bucket/a.txt", "s3://bucket/nested/b.txt"]

    def test_flattens_pages_in_backend_order(self, settings):
        storage = MockStorageClient(page_size=2)
        for index in range(5):
            storage.put_raw("bucket", f"logs/{index:02d}.log", b"entry")
        service = CloudFileStorageService(storage_client=storage, settings=settings)

        files = service.list_files("s3://bucket/logs/")

        assert [f.id for f in files] == [f"s3://bucket/logs/{i:02d}.log" for i in range(5)]
        assert len(storage.calls_to("head_object")) == 5

    def test_empty_listing(self, service, mock_storage):
        assert service.list_files("s3://bucket/nothing/") == []
        assert mock_storage.calls_to("head_object") == []

    def test_concurrent_fetch_keeps_order(self):
        storage = MockStorageClient(page_size=3)
        for index in range(10):
            storage.put_raw("bucket", f"docs/{index:02d}.txt", b"doc")
        service = CloudFileStorageService(
            storage_client=storage,
            settings=Settings(STORAGE_LIST_CONCURRENCY=4),
        )

        files = service.list_files("s3://bucket/docs/")

        assert [f.id for f in files] == [f"s3://bucket/docs/{i:02d}.txt" for i in range(10)]

    def test_vanished_object_raises_not_found(self, service, mock_storage):
        mock_storage.put_raw("bucket", "path/file1.txt", b"one")
        mock_storage.failures["head_object"] = StorageServiceError(
            "Not Found", code="404", status_code=404
        )

        with pytest.raises(CloudFileNotFoundError):
            service.list_files("s3://bucket/path/")

    def test_rejects_identifier_without_bucket(self, service):
        with pytest.raises(InvalidFileIdError):
            service.list_files("s3:///path/")


class TestDelete:
    def test_deletes_existing_file(self, service, mock_storage):
        mock_storage.put_raw("bucket", "path/file.txt", b"bye")

        service.delete_by_id("s3://bucket/path/file.txt")

        assert mock_storage.calls_to("delete_object") == [
            {"bucket": "bucket", "object_key": "path/file.txt"}
        ]
        assert service.find_by_id("s3://bucket/path/file.txt") is None

    def test_deleting_missing_file_succeeds(self, service, mock_storage):
        service.delete_by_id("s3://bucket/path/never-saved.txt")

        # no existence check before the delete
        assert [name for name, _ in mock_storage.calls] == ["delete_object"]

    def test_backend_failure_propagates(self, service, mock_storage):
        mock_storage.failures["delete_object"] = unreachable_backend()

        with pytest.raises(StorageError):
            service.delete_by_id("s3://bucket/path/file.txt")
