from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Protocol, runtime_checkable
from urllib.parse import quote

from ..errors import StorageError

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ObjectStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str: ...

    def get(self, key: str) -> bytes: ...


def _clean_key(key: str) -> str:
    cleaned = (key or "").strip().lstrip("/")
    if not cleaned or any(part in {"", ".", ".."} for part in cleaned.split("/")):
        raise StorageError(f"Invalid object key: {key!r}", key=key)
    return cleaned


class LocalStorage:
    """Stores objects as files below ``root``; used for local/dev profiles."""

    def __init__(self, root: Path | str, public_url: str = "/api/media") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_url = public_url.rstrip("/")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        object_key = _clean_key(key)
        target = self.root / object_key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {object_key}: {exc}", key=object_key) from exc
        return f"{self.public_url}/{quote(object_key)}"

    def get(self, key: str) -> bytes:
        object_key = _clean_key(key)
        try:
            return (self.root / object_key).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {object_key}: {exc}", key=object_key) from exc

    def describe(self) -> dict:
        return {"backend": "local", "configured": True, "root": str(self.root)}


class S3Storage:
    def __init__(
        self,
        *,
        bucket: str,
        region: str | None = None,
        public_url: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            LOGGER.warning("S3_BUCKET_NAME not set; S3 uploads and downloads will fail.")
        self.bucket = bucket
        self.region = region
        self.public_url = (public_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")
        if client is None:
            import boto3

            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url or None)
        self.client = client

    def put(self, key: str, data: bytes, content_type: str) -> str:
        object_key = _clean_key(key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as exc:
            LOGGER.error("s3_put_failed", extra={"key": object_key, "error": str(exc)})
            raise StorageError(f"S3 upload of {object_key} failed: {exc}", key=object_key) from exc
        return f"{self.public_url}/{quote(object_key, safe='')}"

    def get(self, key: str) -> bytes:
        object_key = _clean_key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
            return response["Body"].read()
        except Exception as exc:
            LOGGER.error("s3_get_failed", extra={"key": object_key, "error": str(exc)})
            raise StorageError(f"S3 download of {object_key} failed: {exc}", key=object_key) from exc

    def describe(self) -> dict:
        return {
            "backend": "s3",
            "configured": bool(self.bucket and self.region),
            "bucket": self.bucket,
            "region": self.region,
            "public_url": self.public_url,
        }


class SupabaseStorage:
    def __init__(self, *, url: str, key: str, bucket: str, client: Any = None) -> None:
        self.url = (url or "").strip().rstrip("/")
        self.bucket = bucket
        if client is None:
            from supabase import create_client

            client = create_client(self.url, (key or "").strip())
        self.client = client

    def put(self, key: str, data: bytes, content_type: str) -> str:
        object_key = _clean_key(key)
        try:
            self.client.storage.from_(self.bucket).upload(
                object_key,
                data,
                {
                    "content-type": content_type,
                    "x-upsert": "true",
                    "cache-control": "public,max-age=31536000,immutable",
                },
            )
        except Exception as exc:
            LOGGER.error(
                "supabase_put_failed",
                extra={"key": object_key, "bucket": self.bucket, "error": str(exc)},
            )
            raise StorageError(f"Supabase upload of {object_key} failed: {exc}", key=object_key) from exc
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{object_key}"

    def get(self, key: str) -> bytes:
        object_key = _clean_key(key)
        try:
            return self.client.storage.from_(self.bucket).download(object_key)
        except Exception as exc:
            LOGGER.error(
                "supabase_get_failed",
                extra={"key": object_key, "bucket": self.bucket, "error": str(exc)},
            )
            raise StorageError(f"Supabase download of {object_key} failed: {exc}", key=object_key) from exc

    def describe(self) -> dict:
        return {"backend": "supabase", "configured": bool(self.url), "bucket": self.bucket}


def create_storage(config: Mapping[str, Any]) -> ObjectStorage:
    backend = str(config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            bucket=str(config.get("S3_BUCKET_NAME") or ""),
            region=config.get("AWS_REGION") or None,
            public_url=config.get("S3_PUBLIC_URL") or None,
            endpoint_url=config.get("S3_ENDPOINT_URL") or None,
        )
    if backend == "supabase":
        return SupabaseStorage(
            url=str(config.get("SUPABASE_URL") or ""),
            key=str(config.get("SUPABASE_API_KEY") or ""),
            bucket=str(config.get("STORAGE_BUCKET") or "stillreel-media"),
        )
    if backend != "local":
        LOGGER.warning("unknown_storage_backend", extra={"backend": backend})
    return LocalStorage(
        config.get("LOCAL_STORAGE_PATH") or "instance/storage",
        public_url=str(config.get("LOCAL_STORAGE_URL") or "/api/media"),
    )


__all__ = ["ObjectStorage", "LocalStorage", "S3Storage", "SupabaseStorage", "create_storage"]
