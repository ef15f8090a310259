# In-process reservation store with the same interface as DatabasePersistence.
# Selected with BOOKING_STORE=memory (see app.default_store_factory) for running without Postgres.
import copy
import logging
import threading
from datetime import date
from typing import Dict, List, Optional
from uuid import uuid4

from .models import BlockedRange, Reservation, ReservationStatus

logger = logging.getLogger(__name__)


class InMemoryReservationStore:
    def __init__(self, reservations: Optional[List[Reservation]] = None, blocked_ranges: Optional[List[BlockedRange]] = None):
        # One lock guards both collections. insert_reservation's check-then-write happens under it.
        self._lock = threading.Lock()
        self._reservations: Dict[str, Reservation] = {}
        self._blocked_ranges: Dict[str, BlockedRange] = {}
        for reservation in reservations or []:
            if reservation.id is None:
                reservation.id = str(uuid4())
            self._reservations[reservation.id] = copy.deepcopy(reservation)
        for blocked_range in blocked_ranges or []:
            if blocked_range.id is None:
                blocked_range.id = str(uuid4())
            self._blocked_ranges[blocked_range.id] = copy.deepcopy(blocked_range)

    def retrieve_live_reservations(self, advisor_id: str, booking_date: Optional[date] = None) -> List[Reservation]:
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._reservations.values()
                if r.advisor_id == advisor_id and r.is_live and (booking_date is None or r.session_date == booking_date)
            ]

    def retrieve_blocked_ranges(self, advisor_id: str, booking_date: Optional[date] = None) -> List[BlockedRange]:
        with self._lock:
            ranges = [
                copy.deepcopy(b) for b in self._blocked_ranges.values()
                if b.advisor_id == advisor_id and (booking_date is None or b.blocked_date == booking_date)
            ]
        return sorted(ranges, key=lambda b: (b.blocked_date, b.start_time))

    def insert_reservation(self, reservation: Reservation) -> bool:
        """
        Inserts the reservation unless a live one already holds the same (advisor, date, slot).
        Returns True if inserted, False on conflict.
        """
        with self._lock:
            for existing in self._reservations.values():
                if (existing.is_live and existing.advisor_id == reservation.advisor_id
                        and existing.session_date == reservation.session_date
                        and existing.slot_label == reservation.slot_label):
                    logger.info("Insert skipped, %s %s already held by %s", reservation.session_date,
                                reservation.slot_label, existing.reference_code)
                    return False
            if reservation.id is None:
                reservation.id = str(uuid4())
            self._reservations[reservation.id] = copy.deepcopy(reservation)
        return True

    def find_reservation(self, reference_code: str) -> Optional[Reservation]:
        with self._lock:
            for reservation in self._reservations.values():
                if reservation.reference_code == reference_code:
                    return copy.deepcopy(reservation)
        return None

    def update_reservation_status(self, reservation_id: str, status: ReservationStatus, reason: Optional[str] = None) -> bool:
        with self._lock:
            reservation = self._reservations.get(reservation_id)
            if reservation is None:
                return False
            # Reviving a vacated reservation must not collide with whoever booked the slot since
            if ReservationStatus(status) in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED) and not reservation.is_live:
                for other in self._reservations.values():
                    if (other.id != reservation_id and other.is_live and other.advisor_id == reservation.advisor_id
                            and other.session_date == reservation.session_date and other.slot_label == reservation.slot_label):
                        return False
            reservation.status = ReservationStatus(status)
            if reason is not None:
                reservation.cancellation_reason = reason
        return True

    def insert_blocked_range(self, blocked_range: BlockedRange) -> str:
        with self._lock:
            blocked_range = copy.deepcopy(blocked_range)
            blocked_range.id = str(uuid4())
            self._blocked_ranges[blocked_range.id] = blocked_range
        return blocked_range.id

    def delete_blocked_range(self, advisor_id: str, range_id: str) -> bool:
        with self._lock:
            blocked_range = self._blocked_ranges.get(range_id)
            if blocked_range is None or blocked_range.advisor_id != advisor_id:
                return False
            del self._blocked_ranges[range_id]
        return True
