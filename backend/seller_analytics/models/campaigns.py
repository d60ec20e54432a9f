"""Advertising campaign codes used by the marketplace API.

The marketplace reports campaign status/type/bid type as bare integers. Each
enum below is a closed mapping: every known code has a member, and any other
code is rejected with :class:`UnknownCodeError` instead of being defaulted.
"""
from __future__ import annotations

import enum
from typing import Optional, Type, TypeVar

from seller_analytics.exceptions import UnknownCodeError

E = TypeVar("E", bound="CodedEnum")


class CodedEnum(enum.Enum):
    """Enum whose members carry ``(code, description)``."""

    def __init__(self, code: int, description: str):
        self.code = code
        self.description = description

    @classmethod
    def from_code(cls: Type[E], code: Optional[int]) -> Optional[E]:
        if code is None:
            return None
        try:
            numeric = int(code)
        except (TypeError, ValueError):
            raise UnknownCodeError(cls.__name__, code) from None
        for member in cls:
            if member.code == numeric:
                return member
        raise UnknownCodeError(cls.__name__, code)


class CampaignStatus(CodedEnum):
    READY_TO_START = (4, "Ready to start")
    FINISHED = (7, "Finished")
    ACTIVE = (9, "Active")
    PAUSED = (11, "Paused")


class CampaignType(CodedEnum):
    # 4-7 are legacy campaign types the marketplace still reports for old
    # campaigns; they are stored but no longer created.
    LEGACY_4 = (4, "Legacy campaign type")
    LEGACY_5 = (5, "Legacy campaign type")
    LEGACY_6 = (6, "Legacy campaign type")
    LEGACY_7 = (7, "Legacy campaign type")
    AUTOMATIC = (8, "Automatic campaign")
    AUCTION = (9, "Auction")


class BidType(CodedEnum):
    MANUAL = (1, "Manual bid")
    UNIFIED = (2, "Unified bid")
