"""
Blob store behind the self-hosted backend's file buckets.

Files are addressed the way the hosted backend addresses them: a bucket id
and a file id. Each store maps that pair onto its own layout.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO


class StorageError(RuntimeError):
    pass


def _segment(value: str, what: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise StorageError(f"Invalid {what}: {value!r}")
    return value


class Storage:
    def put(self, bucket_id: str, file_id: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, bucket_id: str, file_id: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, bucket_id: str, file_id: str) -> bool:
        raise NotImplementedError

    def view_url(self, bucket_id: str, file_id: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    """One directory per bucket under `root`; served by the files route in `app.tracker.api`."""

    root: Path
    url_prefix: str = "/api/files"

    def _path(self, bucket_id: str, file_id: str) -> Path:
        return self.root / _segment(bucket_id, "bucket id") / _segment(file_id, "file id")

    def put(self, bucket_id: str, file_id: str, data: bytes, *, content_type: str | None = None) -> None:
        target = self._path(bucket_id, file_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def open(self, bucket_id: str, file_id: str) -> BinaryIO:
        try:
            return self._path(bucket_id, file_id).open("rb")
        except FileNotFoundError as e:
            raise StorageError(f"No file {file_id!r} in bucket {bucket_id!r}") from e

    def exists(self, bucket_id: str, file_id: str) -> bool:
        return self._path(bucket_id, file_id).is_file()

    def view_url(self, bucket_id: str, file_id: str) -> str:
        return f"{self.url_prefix.rstrip('/')}/{bucket_id}/{file_id}/view"


@dataclass(frozen=True)
class S3Storage(Storage):
    """Objects under `<key_prefix><bucket_id>/<file_id>`; views are presigned GET URLs."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    key_prefix: str = "attachments/"
    url_expiry_seconds: int = 3600

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def _key(self, bucket_id: str, file_id: str) -> str:
        return f"{self.key_prefix}{_segment(bucket_id, 'bucket id')}/{_segment(file_id, 'file id')}"

    def put(self, bucket_id: str, file_id: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {"ContentType": content_type} if content_type else {}
        self._client().put_object(Bucket=self.bucket, Key=self._key(bucket_id, file_id), Body=data, **extra)

    def open(self, bucket_id: str, file_id: str) -> BinaryIO:
        from botocore.exceptions import ClientError

        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=self._key(bucket_id, file_id))
        except ClientError as e:
            raise StorageError(f"No file {file_id!r} in bucket {bucket_id!r}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, bucket_id: str, file_id: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=self._key(bucket_id, file_id))
        except ClientError:
            return False
        return True

    def view_url(self, bucket_id: str, file_id: str) -> str:
        return self._client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self._key(bucket_id, file_id)},
            ExpiresIn=self.url_expiry_seconds,
        )


def storage_from_config(config: dict) -> Storage:
    kind = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if kind == "s3":
        missing = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not config.get(k)]
        if missing:
            raise StorageError(f"STORAGE_BACKEND=s3 needs {', '.join(missing)}.")
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    root = (config.get("STORAGE_ROOT") or "").strip()
    return LocalStorage(root=Path(root) if root else Path(os.getcwd()) / "storage")
