import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from . import celery_app, config
from .database import SessionLocal
from .services.object_store import ObjectStore, ObjectStoreError, build_object_store
from .services.record_store import TransferRecordStore

logger = logging.getLogger(__name__)


def purge_transfers(db_session: Session, storage: ObjectStore, now: datetime, batch_size: int) -> int:
    """Delete expired or exhausted transfers, blob first, then record.

    A record whose blob could not be removed is kept so the next run retries it.
    """
    records = TransferRecordStore(db_session)
    total_deleted = 0
    skipped: set[int] = set()
    # Loop until a batch comes back with nothing left to delete
    while True:
        batch = [rec for rec in records.find_purgeable(now, batch_size + len(skipped)) if rec.id not in skipped]
        if not batch:
            break
        for rec in batch:
            try:
                storage.delete(rec.storage_locator)
            except ObjectStoreError as exc:
                logger.warning("Keeping transfer %s, blob delete failed: %s", rec.transfer_key, exc)
                skipped.add(rec.id)
                continue
            records.delete(rec.transfer_key)
            total_deleted += 1
    return total_deleted


@celery_app.task(name="app.cleanup.cleanup_expired")
def cleanup_expired():
    db = SessionLocal()
    try:
        deleted = purge_transfers(db, build_object_store(), datetime.now(timezone.utc), config.CLEANUP_BATCH_SIZE)
    finally:
        db.close()
    logger.info("Cleanup removed %d transfers", deleted)
    return {"deleted": deleted}
