"""Tests for recurrence rule parsing, serialization and iteration."""
from datetime import date, datetime
from itertools import islice

import pytest
import pytz

from webcal.errors import ParseError
from webcal.recurrence import RecurrenceRule, WeekdaySpec


def utc(*args):
    return datetime(*args, tzinfo=pytz.UTC)


def starts(rule_text, dtstart, limit=50):
    return list(islice(RecurrenceRule.from_string(rule_text).iter_starts(dtstart), limit))


def test_weekly_by_weekday():
    """Test MO/WE/FR series starting on a Monday."""
    result = starts("FREQ=WEEKLY;BYDAY=MO,WE,FR", utc(2024, 1, 1, 9, 0), limit=6)

    assert result == [
        utc(2024, 1, 1, 9, 0),
        utc(2024, 1, 3, 9, 0),
        utc(2024, 1, 5, 9, 0),
        utc(2024, 1, 8, 9, 0),
        utc(2024, 1, 10, 9, 0),
        utc(2024, 1, 12, 9, 0),
    ]


def test_count_limits_series():
    """Test that COUNT ends an otherwise infinite series."""
    result = starts("FREQ=DAILY;COUNT=3", utc(2024, 1, 1, 9, 0), limit=100)

    assert len(result) == 3
    assert result[-1] == utc(2024, 1, 3, 9, 0)


def test_count_zero_yields_nothing():
    rule = RecurrenceRule(frequency="DAILY", count=0)

    assert list(rule.iter_starts(utc(2024, 1, 1))) == []


def test_until_is_inclusive():
    """Test that a start equal to UNTIL is still part of the series."""
    result = starts("FREQ=DAILY;UNTIL=20240105T090000Z", utc(2024, 1, 1, 9, 0))

    assert len(result) == 5
    assert result[-1] == utc(2024, 1, 5, 9, 0)


def test_count_and_until_whichever_first():
    result = starts("FREQ=DAILY;COUNT=10;UNTIL=20240103T090000Z", utc(2024, 1, 1, 9, 0))

    assert len(result) == 3


def test_dtstart_is_first_occurrence_even_if_not_matching():
    """Test that DTSTART counts toward COUNT even off the BYDAY pattern."""
    # 2024-01-02 is a Tuesday
    result = starts("FREQ=WEEKLY;BYDAY=MO;COUNT=3", utc(2024, 1, 2, 9, 0))

    assert result == [
        utc(2024, 1, 2, 9, 0),
        utc(2024, 1, 8, 9, 0),
        utc(2024, 1, 15, 9, 0),
    ]


def test_interval():
    result = starts("FREQ=DAILY;INTERVAL=2;COUNT=3", utc(2024, 1, 1, 9, 0))

    assert [r.day for r in result] == [1, 3, 5]


def test_monthly_last_friday():
    """Test an ordinal BYDAY (-1FR)."""
    result = starts("FREQ=MONTHLY;BYDAY=-1FR;COUNT=3", utc(2024, 1, 26, 18, 0))

    assert [r.date() for r in result] == [date(2024, 1, 26), date(2024, 2, 23), date(2024, 3, 29)]


def test_monthly_last_weekday_by_set_position():
    result = starts("FREQ=MONTHLY;BYDAY=MO,TU,WE,TH,FR;BYSETPOS=-1;COUNT=3", utc(2024, 1, 31, 12, 0))

    assert [r.date() for r in result] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)]


def test_yearly_by_month_and_month_day():
    result = starts("FREQ=YEARLY;BYMONTH=7;BYMONTHDAY=4;COUNT=2", utc(2024, 7, 4, 12, 0))

    assert [r.date() for r in result] == [date(2024, 7, 4), date(2025, 7, 4)]


def test_all_day_series_yields_dates():
    result = starts("FREQ=DAILY;COUNT=2", date(2024, 3, 1))

    assert result == [date(2024, 3, 1), date(2024, 3, 2)]


def test_all_day_series_with_date_until():
    result = starts("FREQ=WEEKLY;UNTIL=20240115", date(2024, 1, 1))

    assert result == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]


def test_wall_clock_kept_across_dst():
    """Test that a 09:00 Berlin meeting stays at 09:00 after the DST switch."""
    berlin = pytz.timezone("Europe/Berlin")
    dtstart = berlin.localize(datetime(2024, 3, 29, 9, 0))

    result = starts("FREQ=DAILY;COUNT=4", dtstart)

    assert [r.hour for r in result] == [9, 9, 9, 9]
    assert result[0].utcoffset() != result[-1].utcoffset()


def test_hourly_series_keeps_repeated_hour_at_dst_end():
    """Test that an hourly Berlin series steps through the repeated 02:00 hour."""
    berlin = pytz.timezone("Europe/Berlin")
    dtstart = berlin.localize(datetime(2024, 10, 27, 1, 0))

    result = starts("FREQ=HOURLY;COUNT=4", dtstart)

    assert [r.astimezone(pytz.UTC) for r in result] == [
        utc(2024, 10, 26, 23, 0),
        utc(2024, 10, 27, 0, 0),
        utc(2024, 10, 27, 1, 0),
        utc(2024, 10, 27, 2, 0),
    ]
    assert [r.hour for r in result] == [1, 2, 2, 3]
    assert result[0].tzinfo.zone == "Europe/Berlin"


def test_from_string_accepts_rrule_prefix():
    assert RecurrenceRule.from_string("RRULE:FREQ=WEEKLY;BYDAY=MO,WE") == \
        RecurrenceRule.from_string("FREQ=WEEKLY;BYDAY=MO,WE")


def test_secondly_is_rejected():
    with pytest.raises(ParseError, match="frequency"):
        RecurrenceRule.from_string("FREQ=SECONDLY")


def test_missing_freq_is_rejected():
    with pytest.raises(ParseError, match="FREQ"):
        RecurrenceRule.from_string("INTERVAL=2")


def test_invalid_interval_is_rejected():
    with pytest.raises(ParseError):
        RecurrenceRule(frequency="DAILY", interval=0)


def test_weekday_spec_parse():
    spec = WeekdaySpec.parse("-1FR")

    assert spec.weekday == "FR"
    assert spec.ordinal == -1
    assert spec.to_ical() == "-1FR"


def test_weekday_spec_rejects_garbage():
    with pytest.raises(ParseError):
        WeekdaySpec.parse("XX")


def test_to_ical_canonical_order():
    rule = RecurrenceRule(
        frequency="WEEKLY",
        by_weekday=(WeekdaySpec("MO"), WeekdaySpec("FR")),
        count=4,
    )

    assert rule.to_ical() == "FREQ=WEEKLY;COUNT=4;BYDAY=MO,FR"


def test_to_dict_omits_default_interval():
    rule = RecurrenceRule.from_string("FREQ=MONTHLY;INTERVAL=1;BYMONTHDAY=15")

    assert rule.to_dict() == {"freq": "MONTHLY", "bymonthday": [15]}
