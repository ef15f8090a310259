import unittest
import os
import sys
from datetime import date, time, timedelta
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from advising_booking.booking.availability import compute_bookable_dates, compute_bookable_slots, is_date_eligible
from advising_booking.booking.config import DEFAULT_SLOT_CATALOG, MAX_HORIZON_DAYS
from advising_booking.booking.models import BlockedRange, BookingPolicy, Reservation, ReservationStatus, TimeSlot

# A Friday
TODAY = date(2026, 10, 16)
TUESDAY = date(2026, 10, 20)

TWO_SLOTS = (TimeSlot.from_label("08:00-09:00"), TimeSlot.from_label("09:00-10:00"))


def make_policy(**overrides):
    values = dict(horizon_days=10, excluded_weekdays=frozenset({5, 6}), holidays=frozenset(),
                  slot_catalog=DEFAULT_SLOT_CATALOG)
    values.update(overrides)
    return BookingPolicy(**values)


def reservation(slot_label, booking_date=TUESDAY, advisor_id="advisorA", status=ReservationStatus.PENDING):
    return Reservation(advisor_id=advisor_id, session_date=booking_date, slot_label=slot_label, status=status)


def block(start, end, booking_date=TUESDAY, advisor_id="advisorA"):
    return BlockedRange(advisor_id=advisor_id, blocked_date=booking_date, start_time=time.fromisoformat(start),
                        end_time=time.fromisoformat(end), reason="Meeting")


class DateEligibilityTest(unittest.TestCase):
    def setUp(self):
        self.policy = make_policy()

    def test_today_is_never_eligible(self):
        monday = date(2026, 10, 19)
        self.assertFalse(is_date_eligible(monday, self.policy, monday))

    def test_past_dates_are_not_eligible(self):
        self.assertFalse(is_date_eligible(TODAY - timedelta(days=1), self.policy, TODAY))

    def test_weekend_is_not_eligible(self):
        self.assertFalse(is_date_eligible(date(2026, 10, 17), self.policy, TODAY))
        self.assertFalse(is_date_eligible(date(2026, 10, 18), self.policy, TODAY))

    def test_last_day_of_horizon_is_eligible(self):
        self.assertTrue(is_date_eligible(TODAY + timedelta(days=10), self.policy, TODAY))

    def test_day_after_horizon_is_not_eligible(self):
        self.assertFalse(is_date_eligible(TODAY + timedelta(days=11), self.policy, TODAY))

    def test_holiday_is_not_eligible(self):
        policy = make_policy(holidays=frozenset({TUESDAY}))
        self.assertFalse(is_date_eligible(TUESDAY, policy, TODAY))
        self.assertTrue(is_date_eligible(date(2026, 10, 21), policy, TODAY))

    def test_zero_or_negative_horizon(self):
        self.assertFalse(is_date_eligible(TODAY + timedelta(days=1), make_policy(horizon_days=0), TODAY))
        self.assertFalse(is_date_eligible(TODAY + timedelta(days=1), make_policy(horizon_days=-3), TODAY))

    def test_huge_horizon_near_end_of_calendar(self):
        policy = make_policy(horizon_days=10 ** 9)
        near_end = date.max - timedelta(days=3)
        self.assertTrue(is_date_eligible(date.max, make_policy(horizon_days=10 ** 9, excluded_weekdays=frozenset()),
                                         near_end))
        self.assertFalse(is_date_eligible(near_end, policy, date.max))
        self.assertFalse(is_date_eligible(TODAY + timedelta(days=400), policy, TODAY))

    def test_no_excluded_weekdays_allows_saturday(self):
        policy = make_policy(excluded_weekdays=frozenset())
        self.assertTrue(is_date_eligible(date(2026, 10, 17), policy, TODAY))


class BookableDatesTest(unittest.TestCase):
    def setUp(self):
        self.policy = make_policy()

    def test_friday_with_ten_day_horizon(self):
        dates = compute_bookable_dates("advisorA", self.policy, [], TODAY)
        self.assertEqual(dates, [date(2026, 10, 19), date(2026, 10, 20), date(2026, 10, 21),
                                 date(2026, 10, 22), date(2026, 10, 23), date(2026, 10, 26)])
        self.assertNotIn(TODAY + timedelta(days=11), dates)
        self.assertFalse(any(d.weekday() in (5, 6) for d in dates))

    def test_dates_respect_window_for_every_start_day(self):
        reservations = [reservation("08:00-09:00")]
        policy = make_policy(holidays=frozenset({date(2026, 10, 21)}))
        for offset in range(14):
            today = TODAY + timedelta(days=offset)
            for d in compute_bookable_dates("advisorA", policy, reservations, today):
                self.assertTrue(today < d <= today + timedelta(days=policy.horizon_days))
                self.assertNotIn(d.weekday(), policy.excluded_weekdays)
                self.assertNotIn(d, policy.holidays)

    def test_empty_for_non_positive_horizon(self):
        self.assertEqual(compute_bookable_dates("advisorA", make_policy(horizon_days=0), [], TODAY), [])
        self.assertEqual(compute_bookable_dates("advisorA", make_policy(horizon_days=-1), [], TODAY), [])

    def test_huge_horizon_is_bounded(self):
        policy = make_policy(horizon_days=10 ** 9, excluded_weekdays=frozenset())
        self.assertEqual(compute_bookable_dates("advisorA", policy, [], date.max), [])
        near_end = date.max - timedelta(days=3)
        self.assertEqual(compute_bookable_dates("advisorA", policy, [], near_end),
                         [near_end + timedelta(days=offset) for offset in (1, 2, 3)])
        dates = compute_bookable_dates("advisorA", policy, [], TODAY)
        self.assertEqual(dates[-1], TODAY + timedelta(days=MAX_HORIZON_DAYS))

    def test_fully_booked_date_is_dropped(self):
        policy = make_policy(slot_catalog=TWO_SLOTS)
        reservations = [reservation("08:00-09:00"), reservation("09:00-10:00", status=ReservationStatus.CONFIRMED)]
        dates = compute_bookable_dates("advisorA", policy, reservations, TODAY)
        self.assertNotIn(TUESDAY, dates)
        self.assertIn(date(2026, 10, 21), dates)

    def test_fully_blocked_date_is_dropped(self):
        policy = make_policy(slot_catalog=TWO_SLOTS)
        dates = compute_bookable_dates("advisorA", policy, [], TODAY, blocked_ranges=[block("08:00", "10:00")])
        self.assertNotIn(TUESDAY, dates)

    def test_other_advisors_bookings_do_not_count(self):
        policy = make_policy(slot_catalog=TWO_SLOTS)
        reservations = [reservation("08:00-09:00", advisor_id="advisorB"), reservation("09:00-10:00", advisor_id="advisorB")]
        self.assertIn(TUESDAY, compute_bookable_dates("advisorA", policy, reservations, TODAY))

    def test_every_returned_date_has_a_free_slot(self):
        policy = make_policy(slot_catalog=TWO_SLOTS)
        reservations = [reservation("08:00-09:00", booking_date=date(2026, 10, 22))]
        blocked = [block("09:00", "09:30", booking_date=date(2026, 10, 22)), block("08:00", "08:15", booking_date=date(2026, 10, 23))]
        for d in compute_bookable_dates("advisorA", policy, reservations, TODAY, blocked):
            self.assertTrue(compute_bookable_slots("advisorA", d, policy, reservations, blocked, today=TODAY))

    def test_accepts_generators(self):
        policy = make_policy(slot_catalog=TWO_SLOTS)
        reservations = (r for r in [reservation("08:00-09:00"), reservation("09:00-10:00")])
        self.assertNotIn(TUESDAY, compute_bookable_dates("advisorA", policy, reservations, TODAY))


class BookableSlotsTest(unittest.TestCase):
    def setUp(self):
        self.policy = make_policy(slot_catalog=TWO_SLOTS)

    def labels(self, slots):
        return [s.label for s in slots]

    def test_block_overlapping_both_slots(self):
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, [], [block("08:30", "09:30")], today=TODAY)
        self.assertEqual(slots, [])

    def test_pending_reservation_occupies_slot(self):
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, [reservation("09:00-10:00")], [], today=TODAY)
        self.assertEqual(self.labels(slots), ["08:00-09:00"])

    def test_cancelled_reservation_does_not_occupy(self):
        cancelled = reservation("08:00-09:00", status=ReservationStatus.CANCELLED)
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, [cancelled], [], today=TODAY)
        self.assertEqual(self.labels(slots), ["08:00-09:00", "09:00-10:00"])

    def test_only_live_statuses_occupy(self):
        vacated = [reservation("08:00-09:00", status=s) for s in
                   (ReservationStatus.COMPLETED, ReservationStatus.TO_COMPLETE, ReservationStatus.NO_SHOW)]
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, vacated, [], today=TODAY)
        self.assertIn("08:00-09:00", self.labels(slots))

    def test_block_touching_slot_edge_does_not_block(self):
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, [], [block("09:00", "12:00")], today=TODAY)
        self.assertEqual(self.labels(slots), ["08:00-09:00"])

    def test_block_on_other_date_or_advisor_is_ignored(self):
        blocked = [block("08:00", "10:00", booking_date=date(2026, 10, 21)), block("08:00", "10:00", advisor_id="advisorB")]
        slots = compute_bookable_slots("advisorA", TUESDAY, self.policy, [], blocked, today=TODAY)
        self.assertEqual(self.labels(slots), ["08:00-09:00", "09:00-10:00"])

    def test_ineligible_date_returns_empty(self):
        saturday = date(2026, 10, 17)
        self.assertEqual(compute_bookable_slots("advisorA", saturday, self.policy, [], [], today=TODAY), [])
        self.assertEqual(compute_bookable_slots("advisorA", saturday, self.policy, [], []), [])
        self.assertEqual(compute_bookable_slots("advisorA", TODAY, self.policy, [], [], today=TODAY), [])
        beyond = TODAY + timedelta(days=11)
        self.assertEqual(compute_bookable_slots("advisorA", beyond, self.policy, [], [], today=TODAY), [])

    def test_holiday_rejected_without_today(self):
        policy = make_policy(slot_catalog=TWO_SLOTS, holidays=frozenset({TUESDAY}))
        self.assertEqual(compute_bookable_slots("advisorA", TUESDAY, policy, [], []), [])

    def test_same_inputs_same_output(self):
        reservations = [reservation("10:00-11:00"), reservation("13:00-14:00", status=ReservationStatus.CANCELLED)]
        blocked = [block("14:30", "15:10")]
        policy = make_policy()
        first = compute_bookable_slots("advisorA", TUESDAY, policy, reservations, blocked, today=TODAY)
        second = compute_bookable_slots("advisorA", TUESDAY, policy, reservations, blocked, today=TODAY)
        self.assertEqual(first, second)
        self.assertEqual(self.labels(first), ["08:00-09:00", "09:00-10:00", "11:00-12:00", "12:00-13:00",
                                              "13:00-14:00", "16:00-17:00"])


class TimeSlotTest(unittest.TestCase):
    def test_from_label_with_spaces(self):
        slot = TimeSlot.from_label("08:00 - 09:00")
        self.assertEqual(slot.label, "08:00-09:00")
        self.assertEqual(slot.start, time(8))

    def test_rejects_inverted_slot(self):
        with self.assertRaises(ValueError):
            TimeSlot.from_label("10:00-09:00")

    def test_rejects_garbage(self):
        with self.assertRaises(ValueError):
            TimeSlot.from_label("morning")


if __name__ == '__main__':
    unittest.main()
