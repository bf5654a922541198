from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from mealshare_api.db.base import Base


class HelpRequestStatusEnum(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class CompletionTriggerEnum(str, Enum):
    FIRST_GET_TRANSACTION = "first_get_transaction"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class HelpRequest(Base):
    """A requester asking for dining points at a location."""

    __tablename__ = "help_requests"
    __table_args__ = (CheckConstraint("points_requested > 0", name="points_requested_positive"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    requester_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    donor_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    points_requested = Column(Integer, nullable=False)
    location = Column(String, nullable=False)
    status = Column(
        SqlEnum(
            HelpRequestStatusEnum,
            name="help_request_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=HelpRequestStatusEnum.PENDING,
        server_default=HelpRequestStatusEnum.PENDING.value,
        index=True,
    )
    fulfillment_mode = Column(String(32), nullable=True)
    code_issued_at = Column(DateTime(timezone=True), nullable=True)
    code_expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completion_trigger = Column(
        SqlEnum(
            CompletionTriggerEnum,
            name="help_request_completion_trigger_enum",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
