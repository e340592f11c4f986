from datetime import datetime, timezone
from sqlalchemy import BigInteger, Column, DateTime, Integer, String
from app.database import Base


class FileTransfer(Base):
    """One uploaded file, addressed by its 6-digit transfer key."""

    __tablename__ = "file_transfers"

    id = Column(Integer, primary_key=True, index=True)
    transfer_key = Column(Integer, unique=True, index=True, nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(255), nullable=False)
    storage_locator = Column(String(1024), nullable=False)
    # hex, 16 bytes each; written once at creation
    encryption_iv = Column(String(32), nullable=False)
    auth_tag = Column(String(32), nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    max_downloads = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<FileTransfer id={self.id} key={self.transfer_key} name={self.file_name!r}>"
