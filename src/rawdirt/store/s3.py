from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rawdirt.config.models import StoreSettings
from rawdirt.errors import NotFoundError, TransientStoreError
from rawdirt.store.interfaces import ListPage, ObjectStore, StoreObject

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(ObjectStore):
    """
    Object store backed by S3 (or any S3-compatible endpoint).

    boto3 is synchronous, so every call runs in the default executor to keep the
    event loop free while the request is in flight.
    """

    def __init__(self, settings: StoreSettings, client: Any = None) -> None:
        if not settings.bucket:
            raise ValueError("S3 object store requires store.bucket to be configured.")
        self._settings = settings
        self._bucket = settings.bucket
        self._client = client or boto3.client(
            "s3",
            region_name=settings.region or None,
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
        )

    async def list_objects(
        self,
        *,
        prefix: str = "",
        continuation_token: Optional[str] = None,
        max_keys: int = 1000,
    ) -> ListPage:
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix, "MaxKeys": max_keys}
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        try:
            response = await asyncio.to_thread(self._client.list_objects_v2, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.warning("S3 list request failed. bucket=%s prefix=%s error=%s", self._bucket, prefix, e)
            raise TransientStoreError(f"Error listing objects: {e}") from e

        items = [
            StoreObject(key=entry["Key"], size=int(entry.get("Size", 0)), last_modified=entry["LastModified"])
            for entry in response.get("Contents", [])
            if entry.get("Key")
        ]
        return ListPage(
            items=items,
            next_token=response.get("NextContinuationToken"),
            truncated=bool(response.get("IsTruncated", False)),
        )

    async def get_object(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self._bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(key) from e
            logger.warning("S3 get request failed. key=%s error=%s", key, e)
            raise TransientStoreError(f"Error fetching object {key}: {e}") from e
        except BotoCoreError as e:
            logger.warning("S3 get request failed. key=%s error=%s", key, e)
            raise TransientStoreError(f"Error fetching object {key}: {e}") from e

    async def put_object(self, key: str, body: bytes, *, content_type: str = "application/octet-stream") -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("S3 put request failed. key=%s error=%s", key, e)
            raise TransientStoreError(f"Error writing object {key}: {e}") from e

    async def presign_get_url(self, key: str, *, expires_in: int) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("S3 presign failed. key=%s error=%s", key, e)
            raise TransientStoreError(f"Error getting file URL for {key}: {e}") from e
