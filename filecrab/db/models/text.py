"""Text model: a pasted payload stored directly in the index."""

from __future__ import annotations

from datetime import datetime

from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import String, Text as TextType
from sqlalchemy.orm import Mapped, mapped_column

from filecrab.db.base import Base


class Text(Base):
    """Hex-encoded ciphertext, removed after its first successful read."""

    __tablename__ = "texts"

    storage_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    memo_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(TextType, nullable=False)
    expire_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True), nullable=False, index=True)
