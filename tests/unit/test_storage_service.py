"""Unit tests for MinIO storage and the invoice slot backends.

MinIO is exercised through a mocked client.
"""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
from minio.error import S3Error

from tmv_invoice.services.storage_service import (
    InMemorySlotBackend,
    LocalFileSlotBackend,
    MinIOSlotBackend,
    MinIOStorageService,
    build_slot_backend,
    share_export,
)


def _s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message="Not found",
        resource="/bucket/object",
        request_id="12345",
        host_id="host",
        response=MagicMock(status=404, data=b""),
    )


@pytest.fixture
def mock_minio_client() -> MagicMock:
    mock = MagicMock()
    mock.bucket_exists.return_value = True
    return mock


@pytest.fixture
def storage(mock_minio_client: MagicMock) -> MinIOStorageService:
    return MinIOStorageService(client=mock_minio_client)


class TestMinIOStorageService:
    def test_upload_creates_missing_bucket_once(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        mock_minio_client.bucket_exists.return_value = False
        storage.upload_file("exports", "a.pdf", BytesIO(b"x"), 1, "application/pdf")
        storage.upload_file("exports", "b.pdf", BytesIO(b"y"), 1, "application/pdf")
        mock_minio_client.make_bucket.assert_called_once_with("exports")
        assert mock_minio_client.put_object.call_count == 2

    def test_upload_returns_bucket_path(self, storage: MinIOStorageService) -> None:
        assert storage.upload_file("exports", "a.pdf", BytesIO(b"x"), 1) == "exports/a.pdf"

    def test_download_reads_and_releases_connection(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        response = MagicMock()
        response.read.return_value = b"payload"
        mock_minio_client.get_object.return_value = response
        assert storage.download_file("bucket", "obj").getvalue() == b"payload"
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    @pytest.mark.parametrize("code", ["NoSuchKey", "NoSuchBucket"])
    def test_download_missing_object_raises_file_not_found(self, storage: MinIOStorageService, mock_minio_client: MagicMock, code: str) -> None:
        mock_minio_client.get_object.side_effect = _s3_error(code)
        with pytest.raises(FileNotFoundError):
            storage.download_file("bucket", "obj")

    def test_download_other_s3_errors_propagate(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        mock_minio_client.get_object.side_effect = _s3_error("AccessDenied")
        with pytest.raises(S3Error):
            storage.download_file("bucket", "obj")

    def test_object_exists(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        assert storage.object_exists("bucket", "obj") is True
        mock_minio_client.stat_object.side_effect = _s3_error("NoSuchKey")
        assert storage.object_exists("bucket", "obj") is False


class TestSlotBackends:
    def test_memory_backend(self) -> None:
        backend = InMemorySlotBackend()
        assert backend.read() is None
        backend.write(b"[]")
        assert backend.read() == b"[]"
        assert backend.writes == 1

    def test_file_backend_missing_file_reads_none(self, tmp_path) -> None:
        assert LocalFileSlotBackend(str(tmp_path / "none.json")).read() is None

    def test_file_backend_replaces_contents(self, tmp_path) -> None:
        path = tmp_path / "data" / "slot.json"
        backend = LocalFileSlotBackend(str(path))
        backend.write(b"[1]")
        backend.write(b"[2]")
        assert backend.read() == b"[2]"
        assert [p.name for p in path.parent.iterdir()] == ["slot.json"]

    def test_minio_backend_round_trip(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        backend = MinIOSlotBackend(storage, "threm_invoices.json", bucket_name="store")
        backend.write(b"[]")
        kwargs = mock_minio_client.put_object.call_args.kwargs
        assert (kwargs["bucket_name"], kwargs["object_name"]) == ("store", "threm_invoices.json")
        assert kwargs["content_type"] == "application/json"

        response = MagicMock()
        response.read.return_value = b"[]"
        mock_minio_client.get_object.return_value = response
        assert backend.read() == b"[]"

    def test_minio_backend_missing_slot_reads_none(self, storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
        mock_minio_client.get_object.side_effect = _s3_error("NoSuchKey")
        assert MinIOSlotBackend(storage, "slot.json").read() is None

    @pytest.mark.parametrize("kind,expected", [
        ("file", LocalFileSlotBackend),
        ("minio", MinIOSlotBackend),
        ("memory", InMemorySlotBackend),
    ])
    def test_build_slot_backend(self, kind: str, expected: type) -> None:
        assert isinstance(build_slot_backend(kind), expected)

    def test_build_unknown_backend_fails(self) -> None:
        with pytest.raises(ValueError):
            build_slot_backend("sqlite")


def test_share_export_uploads_and_signs(storage: MinIOStorageService, mock_minio_client: MagicMock) -> None:
    mock_minio_client.presigned_get_object.return_value = "https://minio.local/signed"
    shared = share_export(b"%PDF", "Invoice-TMV-1.pdf", "application/pdf", 12, storage=storage)
    assert shared["url"] == "https://minio.local/signed"
    assert shared["object"].endswith("/Invoice-TMV-1.pdf")
    assert shared["expires_in_hours"] == 12
