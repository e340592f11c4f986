"""Error kinds raised by the transfer core.

Each error carries a machine-readable ``kind`` and the HTTP status the router
answers with, so callers can tell storage faults from bookkeeping faults and
from integrity failures without string matching.
"""


class TransferError(Exception):
    kind = "transfer_error"
    status_code = 500
    default_message = "Transfer failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class ValidationError(TransferError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class InvalidKeyFormat(ValidationError):
    kind = "invalid_key_format"
    default_message = "Key must be a 6-digit number"


class KeyExhausted(TransferError):
    kind = "key_exhausted"
    status_code = 503
    default_message = "Could not allocate a unique transfer key"


class StorageWriteError(TransferError):
    kind = "storage_write_error"
    status_code = 502
    default_message = "Failed to store file"


class StorageReadError(TransferError):
    kind = "storage_read_error"
    status_code = 502
    default_message = "Failed to read file from storage"


class MetadataWriteError(TransferError):
    kind = "metadata_write_error"
    status_code = 500
    default_message = "Failed to record transfer"


class KeyNotFound(TransferError):
    kind = "key_not_found"
    status_code = 404
    default_message = "Key not found"


class TransferExpired(TransferError):
    kind = "transfer_expired"
    status_code = 410
    default_message = "Transfer expired"


class DownloadLimitExceeded(TransferError):
    kind = "download_limit_exceeded"
    status_code = 403
    default_message = "Download limit exceeded"


class DecryptionError(TransferError):
    kind = "decryption_error"
    status_code = 500
    default_message = "Failed to decrypt file"


class InvalidEncryptionMaterial(DecryptionError):
    kind = "invalid_encryption_material"
    default_message = "IV and auth tag must be 32 hex characters"


class AuthenticationFailure(DecryptionError):
    kind = "authentication_failure"
    default_message = "File failed integrity verification"
