"""Blob storage for encrypted payloads.

Two backends share the ``ObjectStore`` contract: a local directory tree and
an S3 bucket. Both address blobs by an opaque locator such as
``uploads/123456/report.pdf`` and move whole byte strings (no ranged reads).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app import config

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    pass


class ObjectNotFoundError(ObjectStoreError):
    pass


class ObjectStore(ABC):
    @abstractmethod
    def put(self, locator: str, data: bytes, content_type: str) -> None:
        """Store ``data`` at ``locator``, overwriting any existing object."""

    @abstractmethod
    def get(self, locator: str) -> bytes:
        """Return the object bytes; ``ObjectNotFoundError`` when absent."""

    @abstractmethod
    def delete(self, locator: str) -> None:
        """Remove the object. Deleting a missing object is not an error."""


class LocalObjectStore(ObjectStore):
    def __init__(self, root: str):
        self.root = Path(root).resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ObjectStoreError(f"Cannot create storage directory {self.root}: {exc}") from exc

    def _resolve(self, locator: str) -> Path:
        if not locator or not locator.strip():
            raise ObjectStoreError("locator cannot be empty")
        candidate = (self.root / locator.lstrip("/")).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise ObjectStoreError(f"locator escapes storage root: {locator}") from exc
        return candidate

    def put(self, locator: str, data: bytes, content_type: str) -> None:
        target = self._resolve(locator)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise ObjectStoreError(f"Failed to write {locator}: {exc}") from exc

    def get(self, locator: str) -> bytes:
        target = self._resolve(locator)
        if not target.is_file():
            raise ObjectNotFoundError(locator)
        try:
            with open(target, "rb") as f:
                return f.read()
        except OSError as exc:
            raise ObjectStoreError(f"Failed to read {locator}: {exc}") from exc

    def delete(self, locator: str) -> None:
        target = self._resolve(locator)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise ObjectStoreError(f"Failed to delete {locator}: {exc}") from exc


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(retries={"max_attempts": 3}),
        )

    def put(self, locator: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=locator,
                Body=data,
                ContentType=content_type,
                CacheControl="no-cache",
                Metadata={"uploadedAt": datetime.now(timezone.utc).isoformat()},
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Failed to upload {locator} to S3: {exc}") from exc

    def get(self, locator: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=locator)
            return response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(locator) from exc
            raise ObjectStoreError(f"Failed to get {locator} from S3: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"Failed to get {locator} from S3: {exc}") from exc

    def delete(self, locator: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=locator)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Failed to delete {locator} from S3: {exc}") from exc


def build_object_store() -> ObjectStore:
    if config.STORAGE_BACKEND == "s3":
        if not config.AWS_S3_BUCKET or not config.AWS_REGION:
            raise RuntimeError("AWS_S3_BUCKET and AWS_REGION must be set for the s3 storage backend")
        logger.info("Using S3 object store bucket=%s region=%s", config.AWS_S3_BUCKET, config.AWS_REGION)
        return S3ObjectStore(
            bucket=config.AWS_S3_BUCKET,
            region=config.AWS_REGION,
            access_key_id=config.AWS_ACCESS_KEY_ID,
            secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        )
    if config.STORAGE_BACKEND != "local":
        raise RuntimeError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
    logger.info("Using local object store at %s", config.STORAGE_DIR)
    return LocalObjectStore(config.STORAGE_DIR)
