from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from mealshare_api.db.base import Base


class PointsBalance(Base):
    """Dining points held by a user; only moved by request acceptance."""

    __tablename__ = "points_balances"
    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
