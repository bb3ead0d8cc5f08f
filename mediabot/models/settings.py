"""Runtime settings stored in the database."""

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class AppSettings(Base):
    """Key/value pairs edited through the settings API.

    Holds provider API keys, the primary provider, the naming template and
    the backup/metadata preferences. Values are strings; booleans are stored
    as "true"/"false".
    """

    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<AppSettings(key='{self.key}', value_len={len(self.value or '')})>"
