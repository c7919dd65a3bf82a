from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from app.models.database import Base


class User(Base):
    __tablename__ = "users"
    # AUTOINCREMENT: ids are never reused, so they only grow
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # One user → many files; the database removes them when the user goes
    files = relationship("FileRecord", back_populates="owner", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"
