# tmv_invoice/services/storage_service.py

import logging
import os
import tempfile
from datetime import timedelta
from io import BytesIO
from typing import Optional

from minio import Minio
from minio.error import S3Error

from tmv_invoice.config import (
    MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_SECURE,
    MINIO_STORE_BUCKET, MINIO_EXPORT_BUCKET,
    INVOICE_STORE_BACKEND, INVOICE_STORE_PATH, INVOICE_STORE_SLOT,
)

logger = logging.getLogger(__name__)


class MinIOStorageService:
    """
    Thin wrapper over the MinIO client used for the invoice slot and for
    shared exports. The client is created on first use, so importing this
    module never touches the network.
    """
    def __init__(self, client: Optional[Minio] = None):
        self._client = client
        self._known_buckets = set()

    @property
    def client(self) -> Minio:
        if self._client is None:
            self._client = Minio(
                endpoint=MINIO_ENDPOINT,
                access_key=MINIO_ACCESS_KEY,
                secret_key=MINIO_SECRET_KEY,
                secure=MINIO_SECURE,
            )
            logger.info("MinIO client initialized for endpoint: %s, Secure: %s", MINIO_ENDPOINT, MINIO_SECURE)
        return self._client

    def ensure_bucket(self, bucket_name: str):
        """
        Ensures that `bucket_name` exists, creating it if it doesn't.
        """
        if bucket_name in self._known_buckets:
            return
        try:
            if not self.client.bucket_exists(bucket_name):
                self.client.make_bucket(bucket_name)
                logger.info("MinIO bucket '%s' created successfully.", bucket_name)
        except S3Error as e:
            logger.error("S3 Error ensuring bucket '%s': %s", bucket_name, e)
            raise
        self._known_buckets.add(bucket_name)

    def upload_file(self, bucket_name: str, object_name: str, data: BytesIO, length: int, content_type: str = "application/octet-stream") -> str:
        """Puts `length` bytes from `data` under `object_name`; returns "bucket/object"."""
        self.ensure_bucket(bucket_name)
        try:
            self.client.put_object(
                bucket_name=bucket_name,
                object_name=object_name,
                data=data,
                length=length,
                content_type=content_type
            )
            logger.info("Successfully uploaded %s to bucket %s", object_name, bucket_name)
            return f"{bucket_name}/{object_name}"
        except S3Error as e:
            logger.error("S3 Error uploading %s to %s: %s", object_name, bucket_name, e)
            raise

    def download_file(self, bucket_name: str, object_name: str) -> BytesIO:
        """
        Reads a whole object into memory.

        Raises:
            FileNotFoundError: If the object (or its bucket) does not exist.
        """
        try:
            response = self.client.get_object(bucket_name, object_name)
            try:
                file_data = BytesIO(response.read())
            finally:
                response.close()
                response.release_conn()
            return file_data
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                raise FileNotFoundError(f"Object '{object_name}' not found in bucket '{bucket_name}'.")
            logger.error("S3 Error downloading %s from %s: %s", object_name, bucket_name, e)
            raise

    def object_exists(self, bucket_name: str, object_name: str) -> bool:
        try:
            self.client.stat_object(bucket_name, object_name)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                return False
            logger.error("S3 Error checking existence of %s in %s: %s", object_name, bucket_name, e)
            raise

    def presigned_download_url(self, bucket_name: str, object_name: str, expiry_hours: int = 24) -> str:
        return self.client.presigned_get_object(bucket_name, object_name, expires=timedelta(hours=expiry_hours))


# --- Slot backends ---
# The invoice collection lives in one named slot that is read whole and
# rewritten whole. A backend only has to move bytes in and out of that slot.

class SlotBackend:
    """Durable home of the serialized invoice collection."""

    name = "slot"

    def read(self) -> Optional[bytes]:
        """Returns the slot contents, or None if nothing was ever written."""
        raise NotImplementedError

    def write(self, data: bytes):
        raise NotImplementedError


class InMemorySlotBackend(SlotBackend):
    name = "memory"

    def __init__(self, initial: Optional[bytes] = None):
        self.data = initial
        self.writes = 0

    def read(self) -> Optional[bytes]:
        return self.data

    def write(self, data: bytes):
        self.data = bytes(data)
        self.writes += 1


class LocalFileSlotBackend(SlotBackend):
    """
    Keeps the slot in a JSON file. Writes go to a temporary file in the same
    directory that then replaces the slot, so a crash mid-write leaves the
    previous collection intact.
    """
    name = "file"

    def __init__(self, path: str):
        self.path = path

    def read(self) -> Optional[bytes]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, "rb") as f:
            return f.read()

    def write(self, data: bytes):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=".invoices-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, self.path)
        except OSError:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise


class MinIOSlotBackend(SlotBackend):
    """Keeps the slot as a single JSON object in a MinIO bucket."""
    name = "minio"

    def __init__(self, storage: MinIOStorageService, object_name: str, bucket_name: str = MINIO_STORE_BUCKET):
        self.storage = storage
        self.bucket_name = bucket_name
        self.object_name = object_name

    def read(self) -> Optional[bytes]:
        try:
            return self.storage.download_file(self.bucket_name, self.object_name).getvalue()
        except FileNotFoundError:
            return None

    def write(self, data: bytes):
        self.storage.upload_file(
            bucket_name=self.bucket_name,
            object_name=self.object_name,
            data=BytesIO(data),
            length=len(data),
            content_type="application/json",
        )


# Created on first use by share_export and the minio slot backend.
_minio_storage_service: Optional[MinIOStorageService] = None


def get_minio_storage_service() -> MinIOStorageService:
    global _minio_storage_service
    if _minio_storage_service is None:
        _minio_storage_service = MinIOStorageService()
    return _minio_storage_service


def share_export(data: bytes, object_name: str, content_type: str, expiry_hours: int,
                 storage: Optional[MinIOStorageService] = None) -> dict:
    """
    Uploads an export to the exports bucket and returns a time-limited link
    that can be sent to the customer.
    """
    storage = storage or get_minio_storage_service()
    path = storage.upload_file(
        bucket_name=MINIO_EXPORT_BUCKET,
        object_name=object_name,
        data=BytesIO(data),
        length=len(data),
        content_type=content_type,
    )
    url = storage.presigned_download_url(MINIO_EXPORT_BUCKET, object_name, expiry_hours=expiry_hours)
    return {"object": path, "url": url, "expires_in_hours": expiry_hours}


def build_slot_backend(kind: str = INVOICE_STORE_BACKEND) -> SlotBackend:
    """Creates the slot backend named by INVOICE_STORE_BACKEND."""
    if kind == "file":
        return LocalFileSlotBackend(INVOICE_STORE_PATH)
    if kind == "minio":
        return MinIOSlotBackend(get_minio_storage_service(), f"{INVOICE_STORE_SLOT}.json")
    if kind == "memory":
        return InMemorySlotBackend()
    raise ValueError(f"Unknown invoice store backend '{kind}'. Expected file, minio or memory.")
