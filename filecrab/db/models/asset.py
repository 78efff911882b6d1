"""Asset model: metadata for one uploaded file."""

from __future__ import annotations

from datetime import datetime

from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from filecrab.db.base import Base


class Asset(Base):
    """An uploaded file. The bytes live in the object store under ``storage_id``."""

    __tablename__ = "assets"

    storage_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    memo_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expire_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True), nullable=False, index=True)
