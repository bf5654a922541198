"""Encrypted device credentials for a user's linked GET account."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Text, func
from sqlalchemy.dialects.postgresql import UUID

from mealshare_api.db.base import Base


class CommerceCredential(Base):
    """Device id + PIN pair, both stored as cipher envelopes, never plaintext."""

    __tablename__ = "commerce_credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    encrypted_device_id = Column(Text, nullable=False)
    encrypted_pin = Column(Text, nullable=False)
    last_validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
