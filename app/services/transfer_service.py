import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import quote

from app import config
from app.models.file_transfer import FileTransfer
from app.services import encryptor
from app.services.access_policy import DownloadDecision, check_download_allowed
from app.services.errors import (
    DecryptionError,
    DownloadLimitExceeded,
    InvalidKeyFormat,
    KeyExhausted,
    KeyNotFound,
    MetadataWriteError,
    StorageReadError,
    StorageWriteError,
    TransferExpired,
    ValidationError,
)
from app.services.key_generator import generate_transfer_key
from app.services.object_store import ObjectNotFoundError, ObjectStore, ObjectStoreError
from app.services.record_store import KeyCollisionError, RecordStoreError, TransferRecordStore

logger = logging.getLogger(__name__)

# Rounds of key assignment when the record store reports a concurrent key collision
KEY_ASSIGNMENT_ATTEMPTS = 3
MAX_FILE_NAME_LENGTH = 255

_KEY_PATTERN = re.compile(r"[1-9][0-9]{5}")


@dataclass(frozen=True)
class DownloadedFile:
    content: bytes
    file_name: str
    mime_type: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def storage_locator(transfer_key: int, iv: str, file_name: str) -> str:
    # The per-encryption IV keeps two attempts on the same key from sharing a blob.
    # The name is quoted into a single path segment and never interpreted as a path.
    return f"uploads/{transfer_key}/{iv}/{quote(file_name, safe='')}"


class TransferService:
    """Upload and download of key-addressed, encrypted, expiring transfers."""

    def __init__(
        self,
        records: TransferRecordStore,
        storage: ObjectStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        ttl: timedelta | None = None,
        max_file_size: int | None = None,
        default_max_downloads: int | None = None,
        allowed_mime_types: list[str] | None = None,
    ):
        self.records = records
        self.storage = storage
        self.clock = clock
        self.ttl = ttl if ttl is not None else timedelta(hours=config.TRANSFER_TTL_HOURS)
        self.max_file_size = max_file_size if max_file_size is not None else config.MAX_FILE_SIZE
        self.default_max_downloads = (
            default_max_downloads if default_max_downloads is not None else config.DEFAULT_MAX_DOWNLOADS
        )
        self.allowed_mime_types = (
            allowed_mime_types if allowed_mime_types is not None else config.ALLOWED_MIME_TYPES
        )

    # -- upload ---------------------------------------------------------------

    def upload(
        self,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        file_size: int,
        *,
        max_downloads: int | None = None,
        ttl: timedelta | None = None,
    ) -> int:
        if max_downloads is None:
            max_downloads = self.default_max_downloads
        self._validate_upload(file_bytes, file_name, mime_type, file_size, max_downloads)
        ttl = ttl if ttl is not None else self.ttl

        for _ in range(KEY_ASSIGNMENT_ATTEMPTS):
            transfer_key = generate_transfer_key(self.records.exists)
            payload = encryptor.encrypt(file_bytes, str(transfer_key))
            locator = storage_locator(transfer_key, payload.iv, file_name)

            try:
                self.storage.put(locator, payload.ciphertext, mime_type)
            except ObjectStoreError as exc:
                logger.error("Storage write failed for %s: %s", locator, exc)
                raise StorageWriteError()

            record = FileTransfer(
                transfer_key=transfer_key,
                file_name=file_name,
                file_size=file_size,
                mime_type=mime_type,
                storage_locator=locator,
                encryption_iv=payload.iv,
                auth_tag=payload.auth_tag,
                download_count=0,
                max_downloads=max_downloads,
                expires_at=self.clock() + ttl,
            )
            try:
                self.records.create(record)
            except KeyCollisionError:
                logger.warning("Transfer key %s was taken concurrently, reassigning", transfer_key)
                self._rollback_upload(locator)
                continue
            except RecordStoreError as exc:
                logger.error("Record write failed for key %s: %s", transfer_key, exc)
                self._rollback_upload(locator)
                raise MetadataWriteError()

            logger.info("Stored transfer %s (%d bytes, %s)", transfer_key, file_size, mime_type)
            return transfer_key

        raise KeyExhausted(f"Transfer key collided {KEY_ASSIGNMENT_ATTEMPTS} times")

    def _validate_upload(self, file_bytes, file_name, mime_type, file_size, max_downloads) -> None:
        if file_size > self.max_file_size:
            raise ValidationError(f"File too large (max {self.max_file_size} bytes)")
        if file_size != len(file_bytes):
            raise ValidationError("Declared file size does not match the uploaded content")
        if not mime_type:
            raise ValidationError("File type missing")
        if self.allowed_mime_types and mime_type not in self.allowed_mime_types:
            raise ValidationError("File type not supported")
        if not file_name or len(file_name) > MAX_FILE_NAME_LENGTH:
            raise ValidationError(f"File name must be 1-{MAX_FILE_NAME_LENGTH} characters")
        if max_downloads < 1:
            raise ValidationError("max_downloads must be at least 1")

    def _rollback_upload(self, locator: str) -> None:
        """Remove a blob whose record was never written. Failures are logged only."""
        try:
            self.storage.delete(locator)
        except Exception:
            logger.exception("Compensating delete failed, orphaned blob left at %s", locator)

    # -- download -------------------------------------------------------------

    def download(self, transfer_key: str) -> DownloadedFile:
        if not isinstance(transfer_key, str) or not _KEY_PATTERN.fullmatch(transfer_key):
            raise InvalidKeyFormat()
        key = int(transfer_key)

        record = self.records.find_by_key(key)
        if record is None:
            raise KeyNotFound()

        decision = check_download_allowed(record, self.clock())
        if decision is DownloadDecision.EXPIRED:
            raise TransferExpired()
        if decision is DownloadDecision.EXHAUSTED:
            raise DownloadLimitExceeded()

        try:
            ciphertext = self.storage.get(record.storage_locator)
        except ObjectNotFoundError:
            logger.error(
                "Record %s exists but its blob %s is missing", record.id, record.storage_locator
            )
            raise StorageReadError("Stored file is missing")
        except ObjectStoreError as exc:
            logger.error("Storage read failed for %s: %s", record.storage_locator, exc)
            raise StorageReadError()

        try:
            plaintext = encryptor.decrypt(ciphertext, transfer_key, record.encryption_iv, record.auth_tag)
        except DecryptionError as exc:
            logger.error("Decryption of transfer %s failed (%s): %s", key, exc.kind, exc)
            raise

        downloaded = DownloadedFile(content=plaintext, file_name=record.file_name, mime_type=record.mime_type)
        self._count_download(record)
        return downloaded

    def _count_download(self, record: FileTransfer) -> None:
        record_id = record.id
        try:
            new_count = self.records.increment_if_below(record_id)
        except Exception:
            # The bytes are already decrypted; serve them even if accounting fails
            logger.exception("Failed to count download for record %s", record_id)
            return
        if new_count is None:
            # A concurrent download took the last slot between the check and now
            raise DownloadLimitExceeded()
