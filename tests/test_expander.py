"""Tests for expanding raw calendar resources into occurrences."""
import logging
from datetime import date, datetime, timedelta
from types import GeneratorType

import pytz

from conftest import make_ical, make_resource
from webcal.expander import expand_resource
from webcal.occurrence import RawResource, TimeWindow


def utc(*args):
    return datetime(*args, tzinfo=pytz.UTC)


def expand(resource, window, **kwargs):
    return list(expand_resource(resource, "work", window, **kwargs))


JANUARY = TimeWindow(utc(2024, 1, 1), utc(2024, 2, 1))


def test_single_event_in_window():
    resource = make_resource("https://dav.example.com/cal/work/event-1.ics")

    result = expand(resource, JANUARY)

    assert len(result) == 1
    occurrence = result[0]
    assert occurrence.event_uid == "event-1"
    assert occurrence.source_uid == "work"
    assert occurrence.title == "Meeting"
    assert occurrence.start == utc(2024, 1, 1, 9, 0)
    assert occurrence.end == utc(2024, 1, 1, 10, 0)
    assert occurrence.all_day is False
    assert occurrence.rrule is None
    assert occurrence.source_locator == "https://dav.example.com/cal/work/event-1.ics"


def test_single_event_outside_window():
    resource = make_resource("e.ics", dtstart="20240301T090000Z", dtend="20240301T100000Z")

    assert expand(resource, JANUARY) == []


def test_expand_is_lazy():
    resource = make_resource("e.ics", rrule="FREQ=DAILY")

    assert isinstance(expand_resource(resource, "work", JANUARY), GeneratorType)


def test_malformed_resource_is_skipped(caplog):
    """Test that unparseable text yields nothing and does not raise."""
    resource = RawResource(locator="broken.ics", raw_text="this is not iCalendar")

    with caplog.at_level(logging.WARNING):
        result = expand(resource, JANUARY)

    assert result == []
    assert "broken.ics" in caplog.text


def test_calendar_without_event_is_skipped():
    text = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Test//EN\r\nEND:VCALENDAR\r\n"

    assert expand(RawResource(locator="empty.ics", raw_text=text), JANUARY) == []


def test_event_without_dtstart_is_skipped():
    resource = make_resource("nostart.ics", dtstart=None, dtend=None)

    assert expand(resource, JANUARY) == []


def test_missing_summary_gets_default_title():
    resource = make_resource("e.ics", summary=None)

    assert expand(resource, JANUARY)[0].title == "No Title"


def test_missing_uid_falls_back_to_locator():
    resource = make_resource("https://dav.example.com/cal/work/x.ics", uid=None)

    assert expand(resource, JANUARY)[0].event_uid == "https://dav.example.com/cal/work/x.ics"


def test_all_day_event():
    resource = make_resource(
        "allday.ics",
        dtstart="DTSTART;VALUE=DATE:20240105",
        dtend="DTEND;VALUE=DATE:20240106",
    )

    occurrence = expand(resource, JANUARY)[0]

    assert occurrence.all_day is True
    assert occurrence.start == date(2024, 1, 5)
    assert occurrence.end == date(2024, 1, 6)


def test_all_day_without_dtend_lasts_one_day():
    resource = make_resource("allday.ics", dtstart="DTSTART;VALUE=DATE:20240105", dtend=None)

    occurrence = expand(resource, JANUARY)[0]

    assert occurrence.end == date(2024, 1, 6)


def test_duration_instead_of_dtend():
    resource = make_resource("e.ics", dtend=None, extra="DURATION:PT30M")

    occurrence = expand(resource, JANUARY)[0]

    assert occurrence.end == utc(2024, 1, 1, 9, 30)


def test_weekly_series_in_window():
    """Test MO/WE/FR series over two weeks."""
    resource = make_resource("series.ics", rrule="FREQ=WEEKLY;BYDAY=MO,WE,FR")
    window = TimeWindow(utc(2024, 1, 1), utc(2024, 1, 15))

    result = expand(resource, window)

    assert [o.start.day for o in result] == [1, 3, 5, 8, 10, 12]
    assert {o.event_uid for o in result} == {"event-1"}
    assert {o.source_locator for o in result} == {"series.ics"}
    assert all(o.rrule == "FREQ=WEEKLY;BYDAY=MO,WE,FR" for o in result)
    assert all(o.end - o.start == timedelta(hours=1) for o in result)


def test_count_limited_series_in_huge_window():
    resource = make_resource("series.ics", rrule="FREQ=DAILY;COUNT=3")
    window = TimeWindow(utc(2000, 1, 1), utc(2100, 1, 1))

    assert len(expand(resource, window)) == 3


def test_infinite_series_terminates():
    """Test that an unbounded rule anchored long ago stops at the window end."""
    resource = make_resource(
        "daily.ics",
        dtstart="20000101T090000Z",
        dtend="20000101T100000Z",
        rrule="FREQ=DAILY",
    )
    window = TimeWindow(utc(2024, 1, 1), utc(2024, 1, 8))

    result = expand(resource, window)

    assert len(result) == 7
    assert all(window.start <= o.start < window.end for o in result)


def test_half_open_boundaries():
    """Test that touching the window edges does not count as overlap."""
    resource = make_resource("daily.ics", rrule="FREQ=DAILY")
    # Jan 2 ends exactly at window start, Jan 4 starts exactly at window end
    window = TimeWindow(utc(2024, 1, 2, 10, 0), utc(2024, 1, 4, 9, 0))

    result = expand(resource, window)

    assert [o.start for o in result] == [utc(2024, 1, 3, 9, 0)]


def test_occurrence_started_before_window_is_kept():
    resource = make_resource(
        "trip.ics",
        dtstart="DTSTART;VALUE=DATE:20231230",
        dtend="DTEND;VALUE=DATE:20240103",
    )

    result = expand(resource, JANUARY)

    assert len(result) == 1
    assert result[0].start == date(2023, 12, 30)


def test_zero_length_event_at_window_start_is_kept():
    resource = make_resource("reminder.ics", dtstart="20240101T000000Z", dtend="20240101T000000Z")

    assert len(expand(resource, JANUARY)) == 1


def test_unsupported_frequency_skips_resource():
    resource = make_resource("secondly.ics", rrule="FREQ=SECONDLY")

    assert expand(resource, JANUARY) == []


def test_candidate_limit_stops_expansion(caplog):
    resource = make_resource(
        "minutely.ics",
        dtstart="20000101T000000Z",
        dtend="20000101T000100Z",
        rrule="FREQ=MINUTELY",
    )

    with caplog.at_level(logging.WARNING):
        result = expand(resource, JANUARY, max_candidates=1000)

    assert result == []
    assert "1000 candidates" in caplog.text


def test_timezone_event_keeps_wall_clock():
    resource = make_resource(
        "berlin.ics",
        dtstart="DTSTART;TZID=Europe/Berlin:20240329T090000",
        dtend="DTEND;TZID=Europe/Berlin:20240329T100000",
        rrule="FREQ=DAILY;COUNT=4",
    )

    result = expand(resource, TimeWindow(utc(2024, 3, 1), utc(2024, 5, 1)))

    assert [o.start.hour for o in result] == [9, 9, 9, 9]
    assert result[0].start_instant.hour == 8
    assert result[-1].start_instant.hour == 7
