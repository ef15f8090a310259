# Value types used by the availability resolver and the reservation stores
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    TO_COMPLETE = "ToComplete"
    CANCELLED = "Cancelled"
    NO_SHOW = "NoShow"


# Only these statuses hold on to a slot. Everything else counts as vacated.
LIVE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


@dataclass(frozen=True)
class TimeSlot:
    """
    One entry of the daily slot catalog, e.g. "08:00-09:00".
    """
    label: str
    start: time
    end: time

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Slot {self.label} must start before it ends")

    def overlaps(self, start: time, end: time) -> bool:
        # Half-open intervals, so back to back ranges don't collide
        return self.start < end and start < self.end

    @classmethod
    def from_label(cls, label: str) -> "TimeSlot":
        """
        Builds a slot from a "HH:MM-HH:MM" label. Whitespace around the dash is tolerated ("08:00 - 09:00").
        """
        try:
            raw_start, raw_end = [part.strip() for part in label.split("-")]
            start = time.fromisoformat(raw_start)
            end = time.fromisoformat(raw_end)
        except ValueError as e:
            raise ValueError(f"Invalid slot label: {label!r}. Expected HH:MM-HH:MM") from e
        return cls(f"{start:%H:%M}-{end:%H:%M}", start, end)


@dataclass
class Reservation:
    advisor_id: str
    session_date: date
    slot_label: str
    status: ReservationStatus = ReservationStatus.PENDING
    id: Optional[str] = None
    reference_code: Optional[str] = None
    student_id: Optional[str] = None
    details: Dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return ReservationStatus(self.status) in LIVE_STATUSES

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "advisor_id": self.advisor_id,
            "session_date": self.session_date.isoformat(),
            "slot": self.slot_label,
            "status": ReservationStatus(self.status).value,
            "reference_code": self.reference_code,
            "student_id": self.student_id,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "cancellation_reason": self.cancellation_reason,
        }


@dataclass
class BlockedRange:
    """
    Advisor-declared exclusion on a single date. Any catalog slot intersecting [start_time, end_time) is unavailable.
    """
    advisor_id: str
    blocked_date: date
    start_time: time
    end_time: time
    reason: str
    reason_details: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "advisor_id": self.advisor_id,
            "date": self.blocked_date.isoformat(),
            "start_time": f"{self.start_time:%H:%M}",
            "end_time": f"{self.end_time:%H:%M}",
            "reason": self.reason,
            "reason_details": self.reason_details,
        }


@dataclass(frozen=True)
class BookingPolicy:
    horizon_days: int
    excluded_weekdays: FrozenSet[int]
    holidays: FrozenSet[date]
    slot_catalog: Tuple[TimeSlot, ...]
    max_reasons: int = 5
    max_group_size: int = 5
    # Group members must use an address in this domain. None disables the check.
    member_email_domain: Optional[str] = None

    def slot_by_label(self, label: str) -> Optional[TimeSlot]:
        for slot in self.slot_catalog:
            if slot.label == label:
                return slot
        return None


@dataclass
class BookingDraft:
    student_id: str
    student_name: str
    reasons: List[str]
    mode: str
    session_type: str = "individual"
    student_email: Optional[str] = None
    other_reason: Optional[str] = None
    group_members: List[Dict[str, str]] = field(default_factory=list)
    comments: str = ""

    def to_details(self) -> Dict:
        """
        Session details stored alongside the reservation.
        """
        reasons = [self.other_reason if r == "Other" and self.other_reason else r for r in self.reasons]
        details = {
            "student_name": self.student_name,
            "student_email": self.student_email,
            "session_type": self.session_type,
            "reasons": reasons,
            "mode": self.mode,
            "comments": self.comments,
        }
        if self.session_type == "group":
            details["group_members"] = self.group_members
        return details
