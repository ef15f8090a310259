# Canonical booking policy and environment overrides
import logging
import os
from datetime import date, time
from typing import FrozenSet, Mapping, Optional, Tuple

from .models import BookingPolicy, TimeSlot

logger = logging.getLogger(__name__)

# The booking dialogs used to disagree (9, 10 and 15 day windows, 4 vs 5 reasons). These are the values in use now.
DEFAULT_HORIZON_DAYS = 10
# A year ahead is the furthest any booking window goes
MAX_HORIZON_DAYS = 366
DEFAULT_EXCLUDED_WEEKDAYS = frozenset({5, 6})  # Saturday, Sunday
DEFAULT_MAX_REASONS = 5
DEFAULT_MAX_GROUP_SIZE = 5
DEFAULT_MEMBER_EMAIL_DOMAIN = "edu.vut.ac.za"

# Hourly sessions from 08:00, last one ending 17:00
DEFAULT_SLOT_CATALOG = tuple(
    TimeSlot(f"{hour:02d}:00-{hour + 1:02d}:00", time(hour), time(hour + 1)) for hour in range(8, 17)
)


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e


def _parse_weekdays(raw: str) -> FrozenSet[int]:
    weekdays = set()
    for part in [p.strip() for p in raw.split(",") if p.strip()]:
        try:
            day = int(part)
        except ValueError as e:
            raise ValueError(f"Invalid BOOKING_EXCLUDED_WEEKDAYS value: {part!r}. Expected 0 (Monday) to 6 (Sunday).") from e
        if not 0 <= day <= 6:
            raise ValueError(f"Invalid BOOKING_EXCLUDED_WEEKDAYS value: {part!r}. Expected 0 (Monday) to 6 (Sunday).")
        weekdays.add(day)
    return frozenset(weekdays)


def _parse_holidays(raw: str) -> FrozenSet[date]:
    holidays = set()
    for part in [p.strip() for p in raw.split(",") if p.strip()]:
        try:
            holidays.add(date.fromisoformat(part))
        except ValueError as e:
            raise ValueError(f"Invalid BOOKING_HOLIDAYS value: {part!r}. Expected YYYY-MM-DD.") from e
    return frozenset(holidays)


def parse_slot_catalog(raw: str) -> Tuple[TimeSlot, ...]:
    """
    Parses a comma-separated list of "HH:MM-HH:MM" labels into an ordered, non-overlapping catalog.
    """
    slots = []
    for part in [p.strip() for p in raw.split(",") if p.strip()]:
        try:
            slot = TimeSlot.from_label(part)
        except ValueError as e:
            raise ValueError(f"Invalid BOOKING_SLOT_CATALOG value: {part!r}. Expected HH:MM-HH:MM.") from e
        slots.append(slot)
    if not slots:
        raise ValueError("BOOKING_SLOT_CATALOG is empty. Provide at least one slot.")
    slots.sort(key=lambda s: s.start)
    for previous, current in zip(slots, slots[1:]):
        if current.overlaps(previous.start, previous.end):
            raise ValueError(f"BOOKING_SLOT_CATALOG slots overlap: {previous.label} and {current.label}")
    return tuple(slots)


def load_policy(environ: Optional[Mapping[str, str]] = None) -> BookingPolicy:
    """
    Builds the booking policy from the canonical defaults, overridden by any BOOKING_* environment variables.
    """
    if environ is None:
        environ = os.environ

    horizon_days = _parse_int(environ, "BOOKING_HORIZON_DAYS", DEFAULT_HORIZON_DAYS)
    if horizon_days > MAX_HORIZON_DAYS:
        raise ValueError(f"BOOKING_HORIZON_DAYS must be <= {MAX_HORIZON_DAYS}, got {horizon_days}")

    raw_weekdays = environ.get("BOOKING_EXCLUDED_WEEKDAYS")
    # Set but empty means every weekday is bookable
    excluded_weekdays = DEFAULT_EXCLUDED_WEEKDAYS if raw_weekdays is None else _parse_weekdays(raw_weekdays)

    holidays = _parse_holidays(environ.get("BOOKING_HOLIDAYS", ""))

    raw_catalog = environ.get("BOOKING_SLOT_CATALOG", "").strip()
    slot_catalog = parse_slot_catalog(raw_catalog) if raw_catalog else DEFAULT_SLOT_CATALOG

    max_reasons = _parse_int(environ, "BOOKING_MAX_REASONS", DEFAULT_MAX_REASONS)
    if max_reasons < 1:
        raise ValueError("BOOKING_MAX_REASONS must be >= 1")

    max_group_size = _parse_int(environ, "BOOKING_MAX_GROUP_SIZE", DEFAULT_MAX_GROUP_SIZE)
    if max_group_size < 2:
        raise ValueError("BOOKING_MAX_GROUP_SIZE must be >= 2")

    member_email_domain = environ.get("BOOKING_MEMBER_EMAIL_DOMAIN", DEFAULT_MEMBER_EMAIL_DOMAIN).strip() or None

    policy = BookingPolicy(
        horizon_days=horizon_days,
        excluded_weekdays=excluded_weekdays,
        holidays=holidays,
        slot_catalog=slot_catalog,
        max_reasons=max_reasons,
        max_group_size=max_group_size,
        member_email_domain=member_email_domain,
    )
    logger.info("Booking policy loaded: horizon=%s days, %s slots, %s holidays", horizon_days, len(slot_catalog), len(holidays))
    return policy
