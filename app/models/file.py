# app/models/file.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from app.models.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(Base):
    __tablename__ = "files"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    original_name = Column(String(255), nullable=False)              # Name user uploaded
    storage_name = Column(String(255), unique=True, nullable=False)  # Name we store on disk
    storage_path = Column(Text, nullable=False)                      # Full path on disk
    size = Column(Integer, nullable=False)                           # Size in bytes
    mime_type = Column(String(128), nullable=False)
    content_hash = Column(String(64), nullable=True)                 # None when hashing is off
    # microsecond precision keeps newest-first ordering stable for quick uploads
    uploaded_at = Column(DateTime(timezone=True), default=_utcnow, index=True, nullable=False)

    # Many files → one owner (User)
    owner = relationship("User", back_populates="files")

    def __repr__(self) -> str:
        return f"<FileRecord id={self.id} storage_name={self.storage_name!r}>"
