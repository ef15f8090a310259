"""
Availability and booking-slot resolution for advising sessions.

Two phases:
    1. Advisory reads (is_date_eligible, compute_bookable_dates, compute_bookable_slots). Pure, no I/O, safe to call from anywhere.
    2. attempt_commit_booking, which re-reads the store, re-validates, and relies on the store's atomic insert-if-absent
       so two racing commits for the same (advisor, date, slot) can't both land.

Nothing here reads ambient state. Reservations, blocked ranges, the policy and "today" are all passed in.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set
from uuid import uuid4

from .booking_utils import generate_reference_code, validate_draft
from .config import MAX_HORIZON_DAYS, load_policy
from .error_utils import FailureReason, InvalidDraftError, StoreUnavailable
from .models import BlockedRange, BookingDraft, BookingPolicy, Reservation, ReservationStatus, TimeSlot

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    reservation_id: Optional[str] = None
    reference_code: Optional[str] = None
    failure: Optional[FailureReason] = None
    message: str = ""
    # Field level messages for InvalidDraft failures
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, reservation: Reservation) -> "CommitResult":
        return cls(reservation_id=reservation.id, reference_code=reservation.reference_code,
                   message=f"Session {reservation.reference_code} has been booked.")

    @classmethod
    def failed(cls, reason: FailureReason, message: str, errors: Optional[Dict[str, str]] = None) -> "CommitResult":
        return cls(failure=reason, message=message, errors=dict(errors or {}))


def _on_open_weekday(booking_date: date, policy: BookingPolicy) -> bool:
    return booking_date.weekday() not in policy.excluded_weekdays and booking_date not in policy.holidays


def _window_days(policy: BookingPolicy, today: date) -> int:
    """
    Days after today that can be booked. Capped at MAX_HORIZON_DAYS and at the last representable date.
    """
    return max(0, min(policy.horizon_days, MAX_HORIZON_DAYS, (date.max - today).days))


def is_date_eligible(booking_date: date, policy: BookingPolicy, today: date) -> bool:
    """
    True when a booking may target booking_date: strictly after today, within the horizon,
    not on an excluded weekday and not a holiday. Today itself is never eligible.
    """
    if not 0 < (booking_date - today).days <= _window_days(policy, today):
        return False
    return _on_open_weekday(booking_date, policy)


def _occupied_labels(advisor_id: str, booking_date: date, reservations: Iterable[Reservation]) -> Set[str]:
    return {
        r.slot_label for r in reservations
        if r.advisor_id == advisor_id and r.session_date == booking_date and r.is_live
    }


def _blocked_labels(advisor_id: str, booking_date: date, policy: BookingPolicy,
                    blocked_ranges: Iterable[BlockedRange]) -> Set[str]:
    ranges = [b for b in blocked_ranges if b.advisor_id == advisor_id and b.blocked_date == booking_date]
    return {
        slot.label for slot in policy.slot_catalog
        if any(slot.overlaps(b.start_time, b.end_time) for b in ranges)
    }


def compute_bookable_slots(advisor_id: str, booking_date: date, policy: BookingPolicy,
                           reservations: Iterable[Reservation], blocked_ranges: Iterable[BlockedRange],
                           today: Optional[date] = None) -> List[TimeSlot]:
    """
    Catalog slots for booking_date that are neither held by a live reservation nor touched by a blocked range.

    The date is checked again here rather than trusted. With today given the full eligibility rules apply,
    without it only the weekday and holiday rules can be checked. An ineligible date gives an empty list.
    Result keeps catalog order.
    """
    if today is not None:
        if not is_date_eligible(booking_date, policy, today):
            return []
    elif not _on_open_weekday(booking_date, policy):
        return []

    occupied = _occupied_labels(advisor_id, booking_date, reservations)
    blocked = _blocked_labels(advisor_id, booking_date, policy, blocked_ranges)
    return [slot for slot in policy.slot_catalog if slot.label not in occupied and slot.label not in blocked]


def compute_bookable_dates(advisor_id: str, policy: BookingPolicy, reservations: Iterable[Reservation],
                           today: date, blocked_ranges: Iterable[BlockedRange] = ()) -> List[date]:
    """
    Ascending list of dates in (today, today + horizon] that are eligible and still have at least one free slot.
    """
    # Materialize once, callers may hand in generators
    reservations = list(reservations)
    blocked_ranges = list(blocked_ranges)

    bookable = []
    for offset in range(1, _window_days(policy, today) + 1):
        candidate = today + timedelta(days=offset)
        if not is_date_eligible(candidate, policy, today):
            continue
        if compute_bookable_slots(advisor_id, candidate, policy, reservations, blocked_ranges, today=today):
            bookable.append(candidate)
    return bookable


def attempt_commit_booking(advisor_id: str, booking_date: date, slot_label: str, draft: BookingDraft, store,
                           policy: Optional[BookingPolicy] = None, today: Optional[date] = None) -> CommitResult:
    """
    Books slot_label on booking_date with advisor_id as a Pending reservation.

    Args: store is any reservation store (DatabasePersistence, InMemoryReservationStore). policy defaults to the
    environment policy and today to the local calendar date.

    Returns: CommitResult. Failures always carry one of the FailureReason values, exceptions never escape.
    Safe to call again after SlotNoLongerAvailable.
    """
    if policy is None:
        policy = load_policy()
    if today is None:
        today = date.today()

    try:
        draft = validate_draft(draft, policy)
    except InvalidDraftError as e:
        logger.info("Booking draft rejected for advisor %s: %s", advisor_id, e.errors)
        return CommitResult.failed(FailureReason.INVALID_DRAFT, e.message, e.errors)

    if not (advisor_id or "").strip():
        return CommitResult.failed(FailureReason.INVALID_DRAFT, "An advisor is required.", {"advisor_id": "An advisor is required."})
    if policy.slot_by_label(slot_label) is None:
        return CommitResult.failed(FailureReason.INVALID_DRAFT, f"{slot_label} is not a bookable time slot.",
                                   {"slot": "Please choose a time slot from the list."})
    if not is_date_eligible(booking_date, policy, today):
        return CommitResult.failed(FailureReason.INVALID_DRAFT, f"{booking_date.isoformat()} is outside the booking window.",
                                   {"date": "Please select a weekday within the booking window."})

    # Never trust the slot list the form was rendered with, re-read what the store has now
    try:
        reservations = store.retrieve_live_reservations(advisor_id, booking_date)
        blocked_ranges = store.retrieve_blocked_ranges(advisor_id, booking_date)
    except StoreUnavailable as e:
        logger.error("Reservation store unavailable while re-validating %s %s: %s", booking_date, slot_label, e.message)
        return CommitResult.failed(FailureReason.STORE_UNAVAILABLE, "Bookings can't be checked right now. Please try again.")

    free_labels = [s.label for s in compute_bookable_slots(advisor_id, booking_date, policy, reservations, blocked_ranges, today=today)]
    if slot_label not in free_labels:
        logger.info("Slot %s on %s for advisor %s no longer available", slot_label, booking_date, advisor_id)
        return CommitResult.failed(FailureReason.SLOT_NO_LONGER_AVAILABLE,
                                   "This time slot is already booked. Please select a different time.")

    reservation = Reservation(
        advisor_id=advisor_id,
        session_date=booking_date,
        slot_label=slot_label,
        status=ReservationStatus.PENDING,
        id=str(uuid4()),
        reference_code=generate_reference_code(),
        student_id=draft.student_id,
        details=draft.to_details(),
        created_at=datetime.now(timezone.utc),
    )

    try:
        inserted = store.insert_reservation(reservation)
    except StoreUnavailable as e:
        logger.error("Reservation insert failed for %s %s: %s", booking_date, slot_label, e.message)
        return CommitResult.failed(FailureReason.STORE_UNAVAILABLE, "The booking could not be saved. Please try again.")

    if not inserted:
        # Another commit landed between the re-check and the insert
        logger.warning("Lost booking race for advisor %s on %s %s", advisor_id, booking_date, slot_label)
        return CommitResult.failed(FailureReason.SLOT_NO_LONGER_AVAILABLE,
                                   "This time slot was just booked by someone else. Please select a different time.")

    logger.info("Booking %s committed for advisor %s on %s %s", reservation.reference_code, advisor_id, booking_date, slot_label)
    return CommitResult.success(reservation)
