# src/sealhub/models/identity.py
"""Published public-key identities."""

from datetime import datetime

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from sealhub.db.session import Base
from sealhub.db.time import utcnow


class UserIdentity(Base):
    """Public key published by a user; last write wins."""

    __tablename__ = "user_identity"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    public_key_b64: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
