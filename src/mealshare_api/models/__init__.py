"""SQLAlchemy models package."""

from .credential import CommerceCredential  # noqa: F401
from .help_request import CompletionTriggerEnum, HelpRequest, HelpRequestStatusEnum  # noqa: F401
from .notification import Notification, NotificationTypeEnum  # noqa: F401
from .points import PointsBalance  # noqa: F401
from .user import User  # noqa: F401
