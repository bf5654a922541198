"""Fulfillment mode resolution; pure functions, no I/O."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from mealshare_api.services.errors import InvalidFulfillmentModeError


class FulfillmentMode(str, Enum):
    CODE_ONLY = "CODE_ONLY"
    TRANSFER_ONLY = "TRANSFER_ONLY"
    CODE_AND_TRANSFER = "CODE_AND_TRANSFER"


DEFAULT_FULFILLMENT_MODE = FulfillmentMode.CODE_ONLY

MODE_LABELS: dict[FulfillmentMode, str] = {
    FulfillmentMode.CODE_ONLY: "Code only",
    FulfillmentMode.TRANSFER_ONLY: "Transfer only",
    FulfillmentMode.CODE_AND_TRANSFER: "Code + transfer",
}

_TRANSFER_MODES = frozenset({FulfillmentMode.TRANSFER_ONLY, FulfillmentMode.CODE_AND_TRANSFER})
_CODE_MODES = frozenset({FulfillmentMode.CODE_ONLY, FulfillmentMode.CODE_AND_TRANSFER})


def is_fulfillment_mode(value: Any) -> bool:
    return isinstance(value, str) and value in FulfillmentMode._value2member_map_


def resolve_mode(value: Any, fallback: FulfillmentMode = DEFAULT_FULFILLMENT_MODE) -> FulfillmentMode:
    """Return ``value`` as a mode, or ``fallback`` when it is absent or unknown."""

    if is_fulfillment_mode(value):
        return FulfillmentMode(value)
    return fallback


def requires_transfer(mode: FulfillmentMode | str | None) -> bool:
    return is_fulfillment_mode(mode) and FulfillmentMode(mode) in _TRANSFER_MODES


def requires_code(mode: FulfillmentMode | str | None) -> bool:
    return is_fulfillment_mode(mode) and FulfillmentMode(mode) in _CODE_MODES


@dataclass(frozen=True, slots=True)
class ModeOverride:
    """A validated override; ``mode is None`` means use the donor's stored default."""

    mode: FulfillmentMode | None = None


def validate_override(raw: Any) -> ModeOverride:
    if raw is None:
        return ModeOverride()
    if not is_fulfillment_mode(raw):
        raise InvalidFulfillmentModeError("Invalid fulfillment mode override")
    return ModeOverride(mode=FulfillmentMode(raw))


__all__ = [
    "DEFAULT_FULFILLMENT_MODE",
    "FulfillmentMode",
    "MODE_LABELS",
    "ModeOverride",
    "is_fulfillment_mode",
    "requires_code",
    "requires_transfer",
    "resolve_mode",
    "validate_override",
]
