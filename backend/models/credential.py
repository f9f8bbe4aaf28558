"""Credential model - records that an owner holds a usable brokerage credential."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import ensure_utc, generate_uuid, utcnow


class Credential(Base):
    """Bearer credential bookkeeping for one owner.

    Secret material lives with the external credential provider; this row
    only tracks whether an active, unexpired credential exists.
    """

    __tablename__ = "credentials"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    owner_id = Column(
        String(36), ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    credential_type = Column(String, nullable=False, default="refresh")
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    owner = relationship("Owner", back_populates="credentials")

    def is_healthy(self, now=None) -> bool:
        """Active and not past its expiry (no expiry means healthy)."""
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return ensure_utc(self.expires_at) > (now or utcnow())
