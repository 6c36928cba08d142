"""S3BlobStore: objects in an S3 (or S3-compatible) bucket via boto3."""

from __future__ import annotations

from typing import Any

import boto3
from botocore.exceptions import ClientError

from ..core.store import BlobStore
from ..types import BlobInfo, BlobNotFoundError


class S3BlobStore(BlobStore):
    """Store objects in *bucket*, optionally below a key *prefix*.

    Requires the ``s3`` extra (``pip install turn-capture[s3]``).
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "",
        public_base_url: str = "",
        public_read: bool = True,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.public_base_url = public_base_url.rstrip("/")
        self.public_read = public_read
        if client is None:
            session = boto3.session.Session()
            client = session.client("s3", region_name=region or None)
        self._client = client

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _strip_prefix(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1:]
        return full_key

    @staticmethod
    def _is_not_found(exc: ClientError) -> bool:
        code = str(exc.response.get("Error", {}).get("Code", ""))
        return code in ("404", "NoSuchKey", "NotFound")

    def list(self, prefix: str = "") -> list[BlobInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        results: list[BlobInfo] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self._full_key(prefix)):
            for obj in page.get("Contents", []):
                key = self._strip_prefix(obj["Key"])
                results.append(BlobInfo(key=key, url=self.url(key), size=obj.get("Size", 0)))
        results.sort(key=lambda info: info.key)
        return results

    def get(self, key: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=self._full_key(key))
        except ClientError as e:
            if self._is_not_found(e):
                raise BlobNotFoundError(key) from None
            raise
        return resp["Body"].read()

    def put(self, key: str, data: bytes, content_type: str = "application/json") -> BlobInfo:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._full_key(key),
            "Body": data,
            "ContentType": content_type,
        }
        if self.public_read:
            kwargs["ACL"] = "public-read"
        self._client.put_object(**kwargs)
        return BlobInfo(key=key, url=self.url(key), size=len(data), content_type=content_type)

    def delete(self, key: str) -> bool:
        if not self.exists(key):
            return False
        self._client.delete_object(Bucket=self.bucket, Key=self._full_key(key))
        return True

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._full_key(key))
        except ClientError as e:
            if self._is_not_found(e):
                return False
            raise
        return True

    def url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{self._full_key(key)}"
        return f"https://{self.bucket}.s3.amazonaws.com/{self._full_key(key)}"
