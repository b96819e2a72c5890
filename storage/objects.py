"""
storage/objects.py -- Thin boto3 wrapper over an S3-compatible bucket.

Holds private message bodies under pm-body/<uuid> keys and avatars under
avatars/<user id>/<uuid>.<ext> when object storage is
configured (core/config.py: S3_ENDPOINT + S3_BUCKET). Works against AWS S3,
Cloudflare R2, MinIO, or anything else speaking the S3 API.

Usage:
    objects = ObjectStore.from_settings(get_settings())
    objects.put("pm-body/abc", b"hello", "text/plain")
    objects.get("pm-body/abc")      # b"hello"
    objects.get("pm-body/missing")  # None

Missing keys are None; every other botocore ClientError propagates to the
caller, which decides whether the failure is fatal.

Layer rule: no imports from api/, auth/, or messages/.
"""

from __future__ import annotations

import logging

import boto3
from botocore.exceptions import ClientError

from core.config import Settings

logger = logging.getLogger("forum.storage")

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStore:
    """Bucket-scoped put/get/delete. client is any boto3 S3 client (or a test double)."""

    def __init__(self, client, bucket: str, public_url: str = "") -> None:
        self._client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        endpoint = settings.s3_endpoint.rstrip("/")
        client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=settings.s3_access_key_id or None,
            aws_secret_access_key=settings.s3_secret_access_key or None,
            region_name=settings.s3_region,
        )
        public_url = settings.s3_public_url or f"{endpoint}/{settings.s3_bucket}"
        logger.info("Object storage configured (bucket=%s)", settings.s3_bucket)
        return cls(client, settings.s3_bucket, public_url)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)

    def get(self, key: str) -> bytes | None:
        """Return the object's bytes, or None if the key does not exist."""
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise
        return response["Body"].read()

    def delete(self, key: str) -> None:
        """Remove key. S3 treats deleting a missing key as success."""
        self._client.delete_object(Bucket=self.bucket, Key=key)

    def url_for(self, key: str) -> str:
        """Public URL of key (S3_PUBLIC_URL, else the endpoint path-style URL)."""
        return f"{self.public_url}/{key}"
