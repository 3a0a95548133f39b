"""
Tests for business calendar arithmetic.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import make_policy
from helpdesk_sla.core import CalendarComputationError
from helpdesk_sla.sla.domain import (
    BusinessCalendar,
    BusinessHours,
    DayWindow,
    advance_working_time,
    is_working_instant,
    parse_holidays,
    working_minutes_between,
)


UTC = timezone.utc

# 2026-10-16 is a Friday, 2026-10-19 the following Monday
FRIDAY_1730 = datetime(2026, 10, 16, 17, 30, tzinfo=UTC)
MONDAY_0900 = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


@pytest.fixture
def office_calendar():
    """Mon-Fri 09:00-18:00 UTC."""
    return BusinessCalendar(BusinessHours.weekdays("09:00", "18:00"), "UTC")


class TestWorkingInstant:

    def test_window_is_half_open(self, office_calendar):
        assert office_calendar.is_working_instant(datetime(2026, 10, 19, 9, 0, tzinfo=UTC))
        assert office_calendar.is_working_instant(datetime(2026, 10, 19, 17, 59, tzinfo=UTC))
        assert not office_calendar.is_working_instant(datetime(2026, 10, 19, 18, 0, tzinfo=UTC))
        assert not office_calendar.is_working_instant(datetime(2026, 10, 19, 8, 59, tzinfo=UTC))

    def test_weekend_is_closed(self, office_calendar):
        saturday_noon = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
        assert not office_calendar.is_working_instant(saturday_noon)

    def test_holiday_is_closed(self):
        calendar = BusinessCalendar(BusinessHours.weekdays(), "UTC", holidays=[date(2026, 10, 19)])
        assert not calendar.is_working_instant(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))

    def test_local_timezone_is_used(self):
        # 07:30 UTC is 09:30 in Berlin (CEST) on 2026-10-16
        calendar = BusinessCalendar(BusinessHours.weekdays("09:00", "17:00"), "Europe/Berlin")
        assert calendar.is_working_instant(datetime(2026, 10, 16, 7, 30, tzinfo=UTC))
        assert not calendar.is_working_instant(datetime(2026, 10, 16, 15, 30, tzinfo=UTC))

    def test_always_open(self):
        calendar = BusinessCalendar.always_open()
        assert calendar.is_working_instant(datetime(2026, 10, 17, 3, 0, tzinfo=UTC))


class TestWorkingMinutes:

    def test_weekend_is_skipped(self, office_calendar):
        end = MONDAY_0900 + timedelta(minutes=90)
        assert office_calendar.working_minutes_between(FRIDAY_1730, end) == pytest.approx(120)

    def test_end_before_start_is_zero(self, office_calendar):
        assert office_calendar.working_minutes_between(MONDAY_0900, FRIDAY_1730) == 0

    def test_always_open_is_wall_clock(self):
        calendar = BusinessCalendar.always_open()
        assert calendar.working_minutes_between(FRIDAY_1730, MONDAY_0900) == pytest.approx(
            (MONDAY_0900 - FRIDAY_1730).total_seconds() / 60
        )

    def test_full_week(self, office_calendar):
        start = datetime(2026, 10, 19, 0, 0, tzinfo=UTC)
        assert office_calendar.working_minutes_between(start, start + timedelta(days=7)) == pytest.approx(5 * 9 * 60)


class TestAdvanceWorkingTime:

    def test_friday_evening_rolls_to_monday(self, office_calendar):
        deadline = office_calendar.advance_working_time(FRIDAY_1730, 120)
        assert deadline == datetime(2026, 10, 19, 10, 30, tzinfo=UTC)

    def test_holiday_is_skipped(self):
        # Friday 2026-12-25 is a holiday
        calendar = BusinessCalendar(BusinessHours.weekdays(), "UTC", holidays=[date(2026, 12, 25)])
        start = datetime(2026, 12, 24, 17, 0, tzinfo=UTC)
        assert calendar.advance_working_time(start, 120) == datetime(2026, 12, 28, 10, 0, tzinfo=UTC)

    def test_start_before_opening(self, office_calendar):
        start = datetime(2026, 10, 19, 6, 0, tzinfo=UTC)
        assert office_calendar.advance_working_time(start, 30) == datetime(2026, 10, 19, 9, 30, tzinfo=UTC)

    def test_zero_minutes_returns_start(self, office_calendar):
        assert office_calendar.advance_working_time(FRIDAY_1730, 0) == FRIDAY_1730

    @pytest.mark.parametrize("minutes", [1, 30, 540, 600, 2000, 7777.5])
    def test_inverse_of_working_minutes(self, office_calendar, minutes):
        deadline = office_calendar.advance_working_time(FRIDAY_1730, minutes)
        assert office_calendar.working_minutes_between(FRIDAY_1730, deadline) == pytest.approx(minutes)


class TestBusinessHoursParsing:

    def test_missing_days_are_closed(self):
        hours = BusinessHours.parse({"monday": {"start": "08:00", "end": "12:00"}})
        assert hours.window_for(0) == DayWindow(8 * 60, 12 * 60)
        assert hours.window_for(1) is None

    def test_string_ranges_and_closed(self):
        hours = BusinessHours.parse({"Tuesday": "10:00-16:00", "wednesday": "closed"})
        assert hours.window_for(1).length_minutes == 360
        assert hours.window_for(2) is None

    def test_none_means_weekdays(self):
        hours = BusinessHours.parse(None)
        assert hours.to_dict()["friday"] == {"start": "09:00", "end": "18:00"}
        assert hours.to_dict()["sunday"] is None

    @pytest.mark.parametrize("raw", [
        {"monday": {"start": "18:00", "end": "09:00"}},
        {"monday": {"start": "25:00", "end": "26:00"}},
        {"funday": "09:00-17:00"},
        {"monday": {"start": "09:00"}},
    ])
    def test_invalid_tables_are_rejected(self, raw):
        with pytest.raises(CalendarComputationError):
            BusinessHours.parse(raw)

    def test_unknown_timezone(self):
        with pytest.raises(CalendarComputationError):
            BusinessCalendar(BusinessHours.weekdays(), "Mars/Olympus_Mons")

    def test_holidays_are_sorted_and_deduplicated(self):
        assert parse_holidays(["2026-12-25", "2026-01-01", "2026-12-25"]) == (
            date(2026, 1, 1), date(2026, 12, 25)
        )

    def test_invalid_holiday(self):
        with pytest.raises(CalendarComputationError):
            parse_holidays(["not-a-date"])


class TestPolicyHelpers:

    def test_business_hours_policy(self):
        policy = make_policy(use_business_hours=True, business_hours=BusinessHours.weekdays("09:00", "18:00"))

        assert is_working_instant(policy, MONDAY_0900)
        assert not is_working_instant(policy, datetime(2026, 10, 17, 12, 0, tzinfo=UTC))
        assert working_minutes_between(policy, FRIDAY_1730, MONDAY_0900) == pytest.approx(30)
        assert advance_working_time(policy, FRIDAY_1730, 60) == datetime(2026, 10, 19, 9, 30, tzinfo=UTC)

    def test_policy_holidays_apply(self):
        policy = make_policy(use_business_hours=True, holidays=(date(2026, 10, 19),))
        assert not is_working_instant(policy, datetime(2026, 10, 19, 12, 0, tzinfo=UTC))

    def test_round_the_clock_policy(self):
        policy = make_policy()

        assert is_working_instant(policy, datetime(2026, 10, 17, 3, 0, tzinfo=UTC))
        assert working_minutes_between(policy, FRIDAY_1730, MONDAY_0900) == pytest.approx(3810)
        assert advance_working_time(policy, FRIDAY_1730, 60) == datetime(2026, 10, 16, 18, 30, tzinfo=UTC)


class TestCalendarSnapshot:

    def test_business_hours_survive_a_round_trip(self):
        calendar = BusinessCalendar(
            BusinessHours.weekdays("08:00", "16:00"), "Europe/Berlin", holidays=[date(2026, 12, 25)]
        )
        snapshot = calendar.to_snapshot()
        restored = BusinessCalendar.from_snapshot(snapshot)

        assert snapshot["timezone"] == "Europe/Berlin"
        assert snapshot["holidays"] == ["2026-12-25"]
        assert restored.to_snapshot() == snapshot
        assert restored.working_minutes_between(FRIDAY_1730, MONDAY_0900) == pytest.approx(
            calendar.working_minutes_between(FRIDAY_1730, MONDAY_0900)
        )

    def test_always_open(self):
        snapshot = BusinessCalendar.always_open().to_snapshot()
        assert snapshot == {"use_business_hours": False}
        assert BusinessCalendar.from_snapshot(snapshot).is_always_open
