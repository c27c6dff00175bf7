"""Punch bucketing and slot binding tests.

Pure logic, no DB.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from dtr_portal.common.constants import DaySlot
from dtr_portal.reconciliation.punches import DayBuckets, bind_slots, bucketize, raw_logs
from dtr_portal.reconciliation.schemas import TimePunch

MANILA = ZoneInfo("Asia/Manila")
EMP = uuid.uuid4()
ALL_SLOTS = frozenset(DaySlot)
SCHEDULE = {
    DaySlot.am_in: time(8, 0),
    DaySlot.am_out: time(12, 0),
    DaySlot.pm_in: time(13, 0),
    DaySlot.pm_out: time(17, 0),
}


def _punch(day: date, hh: int, mm: int = 0) -> TimePunch:
    return TimePunch(employee_id=EMP, timestamp=datetime(day.year, day.month, day.day, hh, mm, tzinfo=MANILA))


class TestBucketize:

    def test_every_requested_date_present(self):
        days = [date(2025, 8, 4), date(2025, 8, 5), date(2025, 8, 6)]
        buckets = bucketize([_punch(days[1], 8)], days, MANILA)
        assert list(buckets) == days
        assert buckets[days[0]].count == 0
        assert buckets[days[1]].am == (time(8, 0),)

    def test_noon_boundary_goes_to_pm(self):
        day = date(2025, 8, 4)
        buckets = bucketize([_punch(day, 11, 59), _punch(day, 12, 0)], [day], MANILA)
        assert buckets[day].am == (time(11, 59),)
        assert buckets[day].pm == (time(12, 0),)

    def test_punches_are_sorted(self):
        day = date(2025, 8, 4)
        buckets = bucketize([_punch(day, 17), _punch(day, 13), _punch(day, 8)], [day], MANILA)
        assert buckets[day].am == (time(8, 0),)
        assert buckets[day].pm == (time(13, 0), time(17, 0))

    def test_utc_timestamp_is_converted_to_portal_zone(self):
        day = date(2025, 8, 4)
        # 00:30 UTC is 08:30 in Manila
        punch = TimePunch(employee_id=EMP, timestamp=datetime(2025, 8, 4, 0, 30, tzinfo=timezone.utc))
        buckets = bucketize([punch], [day], MANILA)
        assert buckets[day].am == (time(8, 30),)

    def test_naive_timestamp_is_treated_as_local(self):
        day = date(2025, 8, 4)
        punch = TimePunch(employee_id=EMP, timestamp=datetime(2025, 8, 4, 8, 5))
        assert bucketize([punch], [day], MANILA)[day].am == (time(8, 5),)

    def test_punches_outside_window_are_ignored(self):
        day = date(2025, 8, 4)
        buckets = bucketize([_punch(date(2025, 8, 5), 8)], [day], MANILA)
        assert buckets[day].count == 0

    def test_raw_logs_mark_weekends(self):
        days = [date(2025, 8, 15), date(2025, 8, 16)]  # Fri, Sat
        buckets = bucketize([_punch(days[0], 8), _punch(days[0], 17, 5)], days, MANILA)
        rows = raw_logs(buckets)
        assert [r.date for r in rows] == days
        assert rows[0].am == ("08:00",)
        assert rows[0].pm == ("17:05",)
        assert rows[0].remarks == ""
        assert rows[1].remarks == "Weekend"


class TestBindSlots:

    def test_four_punches_fill_four_slots(self):
        bucket = DayBuckets(am=(time(7, 55), time(11, 58)), pm=(time(12, 59), time(17, 2)))
        bound = bind_slots(bucket, ALL_SLOTS, SCHEDULE)
        assert bound == {
            DaySlot.am_in: time(7, 55),
            DaySlot.am_out: time(11, 58),
            DaySlot.pm_in: time(12, 59),
            DaySlot.pm_out: time(17, 2),
        }

    def test_extra_punches_keep_first_and_last(self):
        bucket = DayBuckets(am=(time(7, 50), time(7, 51), time(11, 30)), pm=())
        bound = bind_slots(bucket, ALL_SLOTS, SCHEDULE)
        assert bound[DaySlot.am_in] == time(7, 50)
        assert bound[DaySlot.am_out] == time(11, 30)

    def test_lunch_out_after_noon_spills_into_am_out(self):
        bucket = DayBuckets(am=(time(8, 0),), pm=(time(12, 5), time(13, 0), time(17, 0)))
        bound = bind_slots(bucket, ALL_SLOTS, SCHEDULE)
        assert bound == {
            DaySlot.am_in: time(8, 0),
            DaySlot.am_out: time(12, 5),
            DaySlot.pm_in: time(13, 0),
            DaySlot.pm_out: time(17, 0),
        }

    def test_lone_punch_binds_to_nearest_scheduled_slot(self):
        bound = bind_slots(DayBuckets(am=(time(11, 40),)), ALL_SLOTS, SCHEDULE)
        assert bound == {DaySlot.am_out: time(11, 40)}

    def test_lone_pm_punch_without_schedule_goes_to_pm_out(self):
        bound = bind_slots(DayBuckets(pm=(time(15, 0),)), ALL_SLOTS, {})
        assert bound == {DaySlot.pm_out: time(15, 0)}

    def test_lone_punch_takes_the_only_active_slot(self):
        active = frozenset({DaySlot.am_out, DaySlot.pm_in, DaySlot.pm_out})
        bound = bind_slots(DayBuckets(am=(time(8, 0),)), active, SCHEDULE)
        assert bound == {DaySlot.am_out: time(8, 0)}

    def test_inactive_slots_are_never_bound(self):
        active = frozenset({DaySlot.pm_in, DaySlot.pm_out})
        bucket = DayBuckets(am=(time(8, 0), time(12, 0)), pm=(time(13, 0), time(17, 0)))
        bound = bind_slots(bucket, active, SCHEDULE)
        assert set(bound) == {DaySlot.pm_in, DaySlot.pm_out}

    def test_no_punches_binds_nothing(self):
        assert bind_slots(DayBuckets(), ALL_SLOTS, SCHEDULE) == {}
