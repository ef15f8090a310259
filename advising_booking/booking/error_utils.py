# Custom exceptions to be used throughout the project.
from enum import Enum
from typing import Dict, Optional


class FailureReason(str, Enum):
    """
    Typed reasons a booking commit can fail with. The caller branches on these, never on raw exceptions.
    """
    INVALID_DRAFT = "InvalidDraft"
    SLOT_NO_LONGER_AVAILABLE = "SlotNoLongerAvailable"
    STORE_UNAVAILABLE = "StoreUnavailable"


class BookingError(Exception):
    # By default Exception class takes a tuple of arguments
    def __init__(self, *args):
        super().__init__(*args)

    @property
    def message(self) -> str:
        return self.args[0] if self.args else self.__class__.__name__


class InvalidDraftError(BookingError):
    """
    To be raised when a booking draft can't be committed as submitted.
    May be raised under the following circumstances:
        1. Required participant fields are missing or malformed
        2. Reasons are missing or over the policy limit
        3. The slot label isn't part of the slot catalog
        4. The date is outside the booking window (past, weekend, holiday, beyond horizon)
    """
    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("Booking draft is invalid: " + "; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class StoreUnavailable(BookingError):
    """
    Raised by the reservation stores when the backing service can't be reached or the query fails.
    """
    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class BlockedRangeValidationError(BookingError):
    """
    Raised when an advisor submits a blocked range that isn't usable (end before start, missing reason).
    """
