import functools
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.utils.module_loading import import_string

from .errors import ObjectNotFound, ObjectStoreUnavailable

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _client(endpoint_url: str):
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=endpoint_url,
        config=BotoConfig(s3={"addressing_style": "path"}, signature_version="s3v4"),
    )


def get_s3_client():
    """SDK client for server-side upload/download."""
    return _client(settings.S3_ENDPOINT_URL)


def get_presign_client():
    """
    Client for URLs that the browser/curl will call. Uses S3_PUBLIC_ENDPOINT
    so the URL host matches what the caller reaches.
    """
    return _client(settings.S3_PUBLIC_ENDPOINT)


def _s3_call(fn):
    """Missing keys become ObjectNotFound; any other SDK failure ObjectStoreUnavailable."""

    @functools.wraps(fn)
    def wrapper(self, key, *args, **kwargs):
        try:
            return fn(self, key, *args, **kwargs)
        except ClientError as exc:
            if str(exc.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES:
                raise ObjectNotFound(key) from exc
            raise ObjectStoreUnavailable(f"{fn.__name__} {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreUnavailable(f"{fn.__name__} {key}: {exc}") from exc

    return wrapper


class S3ObjectStore:
    """
    Object storage for source assets, converted chunks and merged outputs.

    Everything lives in one bucket (S3_BUCKET); keys are the references
    stored on Job and Chunk rows.
    """

    def __init__(self, bucket: str | None = None):
        self.bucket = bucket or settings.S3_BUCKET
        self.client = get_s3_client()

    @_s3_call
    def get(self, key: str) -> bytes:
        return self.client.get_object(Bucket=self.bucket, Key=key)["Body"].read()

    @_s3_call
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream",
            metadata: dict | None = None) -> None:
        extra = {"ContentType": content_type}
        if metadata:
            extra["Metadata"] = {k: str(v) for k, v in metadata.items()}
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def exists(self, key: str) -> bool:
        try:
            self.get_metadata(key)
        except ObjectNotFound:
            return False
        return True

    @_s3_call
    def list(self, prefix: str = "") -> list[str]:
        keys = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    @_s3_call
    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    @_s3_call
    def get_metadata(self, key: str) -> dict:
        return self.client.head_object(Bucket=self.bucket, Key=key).get("Metadata", {})

    @_s3_call
    def update_metadata(self, key: str, metadata: dict) -> None:
        """S3 metadata is immutable; copy the object onto itself with the merged set."""
        current = self.client.head_object(Bucket=self.bucket, Key=key)
        merged = {**current.get("Metadata", {}), **{k: str(v) for k, v in metadata.items()}}
        self.client.copy_object(
            Bucket=self.bucket,
            Key=key,
            CopySource={"Bucket": self.bucket, "Key": key},
            Metadata=merged,
            ContentType=current.get("ContentType", "application/octet-stream"),
            MetadataDirective="REPLACE",
        )

    @_s3_call
    def download_to(self, key: str, path: Path) -> Path:
        """Stream an object to a local file (sources can be large)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.client.download_file(self.bucket, key, str(path))
        return path

    def presigned_get(self, key: str, expires: int | None = None) -> str:
        return create_presigned_get(key, expires=expires)


def get_object_store():
    """Instantiate the configured object store (JOBS_OBJECT_STORE)."""
    return import_string(settings.JOBS_OBJECT_STORE)()


def create_presigned_put(key: str, content_type: str | None = None, expires: int | None = None) -> dict:
    """
    Create a presigned PUT URL to upload a single object directly to S3/MinIO.

    ContentType is deliberately left out of the signed params so clients that
    omit or alter the header still match the signature.
    """
    s3 = get_presign_client()
    params = {
        "Bucket": settings.S3_BUCKET,
        "Key": key,
    }
    url = s3.generate_presigned_url(
        ClientMethod="put_object",
        Params=params,
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="PUT",
    )
    headers = {"Content-Type": content_type} if content_type else {}
    return {"url": url, "headers": headers}


def create_presigned_get(key: str, expires: int | None = None) -> str:
    """
    Create a presigned GET URL to download an object.
    """
    s3 = get_presign_client()
    return s3.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": settings.S3_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="GET",
    )
