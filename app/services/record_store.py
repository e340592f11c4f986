import logging
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.file_transfer import FileTransfer

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    pass


class KeyCollisionError(RecordStoreError):
    """Another record already holds the transfer key."""


def _is_key_collision(exc: IntegrityError) -> bool:
    # PostgreSQL reports unique violations as SQLSTATE 23505 naming the index,
    # SQLite as "UNIQUE constraint failed: file_transfers.transfer_key"
    message = str(exc.orig).lower()
    if "transfer_key" not in message:
        return False
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    return "unique" in message or "duplicate" in message


class TransferRecordStore:
    def __init__(self, db_session: Session):
        self.db_session = db_session

    def create(self, record: FileTransfer) -> FileTransfer:
        self.db_session.add(record)
        try:
            self.db_session.commit()
        except IntegrityError as exc:
            self.db_session.rollback()
            if _is_key_collision(exc):
                raise KeyCollisionError(f"transfer key {record.transfer_key} is taken") from exc
            raise RecordStoreError(str(exc)) from exc
        except SQLAlchemyError as exc:
            self.db_session.rollback()
            raise RecordStoreError(str(exc)) from exc
        self.db_session.refresh(record)
        return record

    def find_by_key(self, transfer_key: int) -> FileTransfer | None:
        return self.db_session.query(FileTransfer).filter_by(transfer_key=transfer_key).first()

    def exists(self, transfer_key: int) -> bool:
        # Expired rows keep their key until the cleanup job removes them
        stmt = select(FileTransfer.id).where(FileTransfer.transfer_key == transfer_key).limit(1)
        return self.db_session.execute(stmt).first() is not None

    def increment_download_count(self, record_id: int) -> None:
        self._run_update(
            update(FileTransfer)
            .where(FileTransfer.id == record_id)
            .values(download_count=FileTransfer.download_count + 1)
        )

    def increment_if_below(self, record_id: int) -> int | None:
        """Count one download unless the record already reached ``max_downloads``.

        The check and the increment happen in a single UPDATE, so two
        concurrent downloads cannot both take the last slot. Returns the new
        count, or None when the record was already at its limit.
        """
        updated = self._run_update(
            update(FileTransfer)
            .where(
                FileTransfer.id == record_id,
                FileTransfer.download_count < FileTransfer.max_downloads,
            )
            .values(download_count=FileTransfer.download_count + 1)
        )
        if not updated:
            return None
        stmt = select(FileTransfer.download_count).where(FileTransfer.id == record_id)
        return self.db_session.execute(stmt).scalar_one()

    def delete(self, transfer_key: int) -> None:
        self._run_update(delete(FileTransfer).where(FileTransfer.transfer_key == transfer_key))

    def find_purgeable(self, now: datetime, limit: int) -> list[FileTransfer]:
        """Records past their expiry or out of downloads, oldest expiry first."""
        return (
            self.db_session.query(FileTransfer)
            .filter(
                or_(
                    FileTransfer.expires_at <= now,
                    FileTransfer.download_count >= FileTransfer.max_downloads,
                )
            )
            .order_by(FileTransfer.expires_at)
            .limit(limit)
            .all()
        )

    def _run_update(self, stmt) -> int:
        try:
            result = self.db_session.execute(stmt.execution_options(synchronize_session=False))
            self.db_session.commit()
        except SQLAlchemyError as exc:
            self.db_session.rollback()
            raise RecordStoreError(str(exc)) from exc
        return result.rowcount or 0
