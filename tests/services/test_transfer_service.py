import logging
from datetime import timedelta
from unittest.mock import Mock

import pytest

from app.services.errors import (
    AuthenticationFailure,
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
from app.services.object_store import ObjectStoreError
from app.services.record_store import KeyCollisionError, RecordStoreError
from app.services import transfer_service
from app.services.transfer_service import TransferService, storage_locator

PAYLOAD = b"0123456789"


def _upload(service, data=PAYLOAD, name="a.txt", mime="text/plain", **kwargs):
    return service.upload(data, name, mime, len(data), **kwargs)


def _blobs(object_store):
    return [p for p in object_store.root.rglob("*") if p.is_file()]


# -- end-to-end scenarios ------------------------------------------------------


def test_upload_then_download_roundtrip(service, records):
    key = _upload(service)

    assert 100000 <= key <= 999999
    downloaded = service.download(str(key))

    assert downloaded.content == PAYLOAD
    assert downloaded.file_name == "a.txt"
    assert downloaded.mime_type == "text/plain"
    assert records.find_by_key(key).download_count == 1


def test_second_download_over_limit_is_rejected(service):
    key = _upload(service, max_downloads=1)

    service.download(str(key))
    with pytest.raises(DownloadLimitExceeded):
        service.download(str(key))


def test_expired_transfer_is_rejected_without_reading_storage(records, object_store, clock):
    storage = Mock(wraps=object_store)
    service = TransferService(records, storage, clock=clock, allowed_mime_types=[])
    key = _upload(service, ttl=timedelta(seconds=-1))

    with pytest.raises(TransferExpired):
        service.download(str(key))
    storage.get.assert_not_called()


def test_corrupted_ciphertext_fails_authentication(service, records, object_store):
    key = _upload(service)
    locator = records.find_by_key(key).storage_locator
    stored = bytearray(object_store.get(locator))
    stored[3] ^= 0xFF
    object_store.put(locator, bytes(stored), "text/plain")

    with pytest.raises(AuthenticationFailure):
        service.download(str(key))
    assert records.find_by_key(key).download_count == 0


# -- upload --------------------------------------------------------------------


def test_upload_persists_record_fields(service, records, clock, object_store):
    key = _upload(service, max_downloads=3)
    rec = records.find_by_key(key)

    assert rec.file_size == len(PAYLOAD)
    assert rec.mime_type == "text/plain"
    assert rec.max_downloads == 3
    assert rec.download_count == 0
    assert rec.storage_locator == f"uploads/{key}/{rec.encryption_iv}/a.txt"
    assert len(rec.encryption_iv) == 32 and len(rec.auth_tag) == 32
    assert rec.expires_at.replace(tzinfo=None) == (clock() + timedelta(hours=24)).replace(tzinfo=None)
    # only ciphertext reaches storage
    assert object_store.get(rec.storage_locator) != PAYLOAD


def test_upload_uses_default_max_downloads(service, records):
    key = _upload(service)
    assert records.find_by_key(key).max_downloads == 1


def test_storage_locator_keeps_file_name_in_one_segment():
    iv = "ab" * 16
    assert storage_locator(123456, iv, "../../etc/passwd") == f"uploads/123456/{iv}/..%2F..%2Fetc%2Fpasswd"


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(data=b"x" * (1024 * 1024 + 1)),
        dict(mime=""),
        dict(name=""),
        dict(name="n" * 256),
        dict(max_downloads=0),
    ],
)
def test_upload_validation_errors_have_no_side_effects(service, records, object_store, kwargs):
    records.exists = Mock(wraps=records.exists)
    with pytest.raises(ValidationError):
        _upload(service, **kwargs)
    records.exists.assert_not_called()
    assert _blobs(object_store) == []


def test_upload_rejects_size_mismatch(service):
    with pytest.raises(ValidationError):
        service.upload(PAYLOAD, "a.txt", "text/plain", len(PAYLOAD) + 1)


def test_upload_enforces_mime_allowlist(records, object_store):
    service = TransferService(records, object_store, allowed_mime_types=["application/pdf"])
    with pytest.raises(ValidationError):
        _upload(service, mime="text/plain")
    assert _upload(service, mime="application/pdf")


def test_storage_write_failure_creates_no_record(records, db_session):
    storage = Mock()
    storage.put.side_effect = ObjectStoreError("bucket unavailable")
    service = TransferService(records, storage, allowed_mime_types=[])

    with pytest.raises(StorageWriteError):
        _upload(service)

    from app.models.file_transfer import FileTransfer

    assert db_session.query(FileTransfer).count() == 0


def test_metadata_failure_removes_written_blob(service, records, object_store, monkeypatch):
    def failing_create(record):
        raise RecordStoreError("database is down")

    monkeypatch.setattr(records, "create", failing_create)

    with pytest.raises(MetadataWriteError):
        _upload(service)
    assert _blobs(object_store) == []


def test_failed_compensation_is_logged_not_raised(records, monkeypatch, caplog):
    storage = Mock()
    storage.delete.side_effect = ObjectStoreError("delete refused")
    service = TransferService(records, storage, allowed_mime_types=[])
    monkeypatch.setattr(records, "create", Mock(side_effect=RecordStoreError("database is down")))

    with caplog.at_level(logging.ERROR):
        with pytest.raises(MetadataWriteError):
            _upload(service)

    storage.delete.assert_called_once()
    assert "orphaned blob" in caplog.text


def test_key_collision_on_create_reassigns_key(service, records, object_store, monkeypatch):
    real_create = records.create
    attempts = []

    def create_once_colliding(record):
        attempts.append(record.transfer_key)
        if len(attempts) == 1:
            raise KeyCollisionError("taken")
        return real_create(record)

    monkeypatch.setattr(records, "create", create_once_colliding)

    key = _upload(service)

    assert len(attempts) == 2
    assert key == attempts[1]
    assert [p.parent.parent.name for p in _blobs(object_store)] == [str(key)]


def test_losing_a_key_race_leaves_the_winning_blob_intact(service, records, object_store, monkeypatch):
    winner = _upload(service, data=b"winner!!!!")
    fallback = 222222 if winner != 222222 else 333333
    drawn = iter([winner, fallback])
    # the second upload draws the winner's key as if its existence check ran first
    monkeypatch.setattr(transfer_service, "generate_transfer_key", lambda exists: next(drawn))

    loser = _upload(service, data=b"loser!!!!!")

    assert loser == fallback
    assert service.download(str(winner)).content == b"winner!!!!"
    assert service.download(str(loser)).content == b"loser!!!!!"


def test_integrity_error_other_than_key_collision_is_a_metadata_error(
    service, records, object_store, monkeypatch
):
    real_create = records.create
    calls = []

    def create_without_mime_type(record):
        calls.append(record.transfer_key)
        record.mime_type = None
        return real_create(record)

    monkeypatch.setattr(records, "create", create_without_mime_type)

    with pytest.raises(MetadataWriteError):
        _upload(service)
    assert len(calls) == 1
    assert _blobs(object_store) == []


def test_repeated_key_collisions_give_up(service, records, object_store, monkeypatch):
    monkeypatch.setattr(records, "create", Mock(side_effect=KeyCollisionError("taken")))

    with pytest.raises(KeyExhausted):
        _upload(service)
    assert records.create.call_count == 3
    assert _blobs(object_store) == []


def test_key_generation_exhaustion_propagates(service, records, monkeypatch):
    monkeypatch.setattr(records, "exists", lambda key: True)
    with pytest.raises(KeyExhausted):
        _upload(service)


# -- download ------------------------------------------------------------------


@pytest.mark.parametrize("bad_key", ["", "12345", "1234567", "abcdef", "012345", " 123456", "12345a", "１２３４５６"])
def test_invalid_key_format_skips_lookup(object_store, bad_key):
    records = Mock()
    service = TransferService(records, object_store)

    with pytest.raises(InvalidKeyFormat):
        service.download(bad_key)
    records.find_by_key.assert_not_called()


def test_invalid_key_format_is_a_validation_error(service):
    with pytest.raises(ValidationError):
        service.download("99")


def test_unknown_key(service):
    with pytest.raises(KeyNotFound):
        service.download("123456")


def test_expiry_reached_after_ttl(service, clock):
    key = _upload(service, max_downloads=5)
    clock.advance(hours=24)

    with pytest.raises(TransferExpired):
        service.download(str(key))


def test_multiple_downloads_up_to_limit(service, records):
    key = _upload(service, max_downloads=3)

    for _ in range(3):
        assert service.download(str(key)).content == PAYLOAD
    with pytest.raises(DownloadLimitExceeded):
        service.download(str(key))
    assert records.find_by_key(key).download_count == 3


def test_missing_blob_is_a_storage_read_error(service, records, object_store, caplog):
    key = _upload(service)
    object_store.delete(records.find_by_key(key).storage_locator)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(StorageReadError):
            service.download(str(key))
    assert "is missing" in caplog.text


def test_storage_read_failure(records, object_store, clock):
    storage = Mock(wraps=object_store)
    service = TransferService(records, storage, clock=clock, allowed_mime_types=[])
    key = _upload(service)
    storage.get.side_effect = ObjectStoreError("timeout")

    with pytest.raises(StorageReadError):
        service.download(str(key))


def test_counter_failure_still_returns_bytes(service, records, monkeypatch, caplog):
    key = _upload(service)
    monkeypatch.setattr(records, "increment_if_below", Mock(side_effect=RecordStoreError("lock timeout")))

    with caplog.at_level(logging.ERROR):
        downloaded = service.download(str(key))

    assert downloaded.content == PAYLOAD
    assert "Failed to count download" in caplog.text


def test_concurrent_download_taking_last_slot_is_rejected(records, object_store, clock):
    storage = Mock(wraps=object_store)
    service = TransferService(records, storage, clock=clock, allowed_mime_types=[])
    key = _upload(service, max_downloads=1)
    record_id = records.find_by_key(key).id

    def read_while_another_download_completes(locator):
        records.increment_download_count(record_id)
        return object_store.get(locator)

    storage.get.side_effect = read_while_another_download_completes

    with pytest.raises(DownloadLimitExceeded):
        service.download(str(key))
    assert records.find_by_key(key).download_count == 1
