"""Library log model for tracking executed rename/move/metadata operations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class LibraryLog(Base):
    """Log entries for library file operations."""

    __tablename__ = "library_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Type values: rename, rename_failed, metadata, metadata_failed, undo

    file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    dest_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    media_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    metadata_written: Mapped[bool] = mapped_column(Boolean, default=False)
    result: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Result values: success, failed
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<LibraryLog(id={self.id}, action='{self.action_type}', result='{self.result}')>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "action_type": self.action_type,
            "file_path": self.file_path,
            "dest_path": self.dest_path,
            "media_type": self.media_type,
            "metadata_written": self.metadata_written,
            "result": self.result,
            "details": self.details,
        }
