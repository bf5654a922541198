"""Help request lifecycle: creation, acceptance and code redemption."""

from .acceptance import AcceptanceResult, RequestAcceptanceService
from .fulfillment import (
    DEFAULT_FULFILLMENT_MODE,
    FulfillmentMode,
    ModeOverride,
    requires_code,
    requires_transfer,
    resolve_mode,
    validate_override,
)
from .lifecycle import HelpRequestService
from .redemption import (
    ActiveScan,
    CompletedScan,
    RedemptionStateMachine,
    ScanState,
    UnavailableReason,
    UnavailableScan,
)

__all__ = [
    "AcceptanceResult",
    "ActiveScan",
    "CompletedScan",
    "DEFAULT_FULFILLMENT_MODE",
    "FulfillmentMode",
    "HelpRequestService",
    "ModeOverride",
    "RedemptionStateMachine",
    "RequestAcceptanceService",
    "ScanState",
    "UnavailableReason",
    "UnavailableScan",
    "requires_code",
    "requires_transfer",
    "resolve_mode",
    "validate_override",
]
