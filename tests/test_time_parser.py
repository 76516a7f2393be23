from datetime import datetime, timezone

import pytest

from time_parser import GRAMMARS, ensure_utc, matching_grammars, parse_flexible_datetime

UTC = timezone.utc
NOW = datetime(2025, 12, 16, 12, 0, tzinfo=UTC)


def utc(*args):
    return datetime(*args, tzinfo=UTC)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2025-12-13T10:00", utc(2025, 12, 13, 10, 0)),
        ("2025-12-13 10:00", utc(2025, 12, 13, 10, 0)),
        ("2025-12-13T10:00:30", utc(2025, 12, 13, 10, 0, 30)),
        ("2025-12-13T10:00Z", utc(2025, 12, 13, 10, 0)),
        ("2025-12-13T10:00:00+02:00", utc(2025, 12, 13, 8, 0)),
        ("2025-12-13 9:00", utc(2025, 12, 13, 9, 0)),
        ("2025/12/13 10:00", utc(2025, 12, 13, 10, 0)),
        ("13-12-2025 10:00", utc(2025, 12, 13, 10, 0)),
        ("5:30PM", utc(2025, 12, 16, 17, 30)),
        ("5:30 pm", utc(2025, 12, 16, 17, 30)),
        ("6 AM", utc(2025, 12, 16, 6, 0)),
        ("12:15 a.m.", utc(2025, 12, 16, 0, 15)),
        ("12 PM", utc(2025, 12, 16, 12, 0)),
        ("17:00", utc(2025, 12, 16, 17, 0)),
        ("7:30", utc(2025, 12, 16, 7, 30)),
        ("9", utc(2025, 12, 16, 9, 0)),
        ("2025-12-13", utc(2025, 12, 13, 0, 0)),
        ("  17:00  ", utc(2025, 12, 16, 17, 0)),
    ],
)
def test_parses_each_grammar_in_utc(raw, expected):
    parsed = parse_flexible_datetime(raw, "UTC", now=NOW)

    assert parsed is not None
    assert parsed.instant == expected
    assert parsed.instant.tzinfo == UTC


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   ",
        "banana",
        "tomorrow at noon",
        "25:00",
        "13:75",
        "13 PM",
        "0 AM",
        "2025-12-13T25:00",
        "2025-13-01 10:00",
        "2025/02/30 10:00",
        "10:00:00:00",
    ],
)
def test_rejects_unparseable_input(raw):
    assert parse_flexible_datetime(raw, "UTC", now=NOW) is None


def test_rejects_non_string_and_unknown_timezone():
    assert parse_flexible_datetime(None, "UTC") is None
    assert parse_flexible_datetime("17:00", "Mars/Olympus_Mons") is None


def test_naive_input_is_read_in_room_timezone():
    parsed = parse_flexible_datetime("2025-12-16T08:00", "America/New_York")

    assert parsed.instant == utc(2025, 12, 16, 13, 0)
    assert (parsed.local.hour, parsed.local.minute) == (8, 0)
    assert str(parsed.local.tzinfo) == "America/New_York"


def test_explicit_offset_wins_over_room_timezone():
    parsed = parse_flexible_datetime("2025-12-16T10:00:00+00:00", "Europe/Berlin")

    assert parsed.instant == utc(2025, 12, 16, 10, 0)
    assert parsed.local.hour == 11


def test_bare_clock_anchors_to_today_in_room_timezone():
    # 23:30 UTC on the 16th is already the 17th in Tokyo
    now = utc(2025, 12, 16, 23, 30)

    parsed = parse_flexible_datetime("17:00", "Asia/Tokyo", now=now)

    assert parsed.local.date().isoformat() == "2025-12-17"
    assert parsed.instant == utc(2025, 12, 17, 8, 0)


def test_grammar_precedence_is_explicit():
    assert [g.name for g in GRAMMARS] == [
        "iso_datetime",
        "date_time",
        "clock_12h",
        "clock_24h",
        "iso_fallback",
    ]


def test_matched_category_does_not_fall_through():
    # Shaped like an ISO datetime, so the fallback grammar never sees it
    names = [name for name, _ in matching_grammars("2025-12-13T24:00", "UTC", NOW)]

    assert names[0] == "iso_datetime"
    assert parse_flexible_datetime("2025-12-13T24:00", "UTC", now=NOW) is None


def test_overlapping_grammars_report_their_matches():
    names = [name for name, _ in matching_grammars("2025-12-13 10:00", "UTC", NOW)]

    assert names == ["iso_datetime", "date_time", "iso_fallback"]


@pytest.mark.parametrize(
    "raw",
    [
        "2025-12-13T10:00",
        "2025-12-13 10:00",
        "2025-12-13 9:00",
        "2025-12-13T10:00:00+02:00",
        "2025/12/13 10:00",
        "13-12-2025 10:00",
        "5:30PM",
        "17:00",
        "9",
        "12 AM",
        "2025-12-13",
        "20251213T1000",
    ],
)
@pytest.mark.parametrize("timezone_name", ["UTC", "America/New_York", "Asia/Kolkata"])
def test_no_two_grammars_disagree(raw, timezone_name):
    results = matching_grammars(raw, timezone_name, NOW)
    instants = {value for _, value in results if value is not None}

    assert len(instants) <= 1
    parsed = parse_flexible_datetime(raw, timezone_name, now=NOW)
    if parsed is not None:
        assert instants == {parsed.instant}


def test_ensure_utc_handles_naive_and_aware_values():
    naive = datetime(2025, 12, 16, 9, 0)
    aware = parse_flexible_datetime("2025-12-16T10:00:00+01:00").instant

    assert ensure_utc(naive) == utc(2025, 12, 16, 9, 0)
    assert ensure_utc(aware) == utc(2025, 12, 16, 9, 0)


@pytest.mark.parametrize(
    "raw,timezone_name",
    [
        ("9999-12-31T23:00", "America/New_York"),
        ("9999-12-31 23:00", "America/New_York"),
        ("0001-01-01T05:00", "Asia/Tokyo"),
    ],
)
def test_values_that_leave_the_datetime_range_are_rejected(raw, timezone_name):
    assert parse_flexible_datetime(raw, timezone_name, now=NOW) is None
    assert all(value is None for _, value in matching_grammars(raw, timezone_name, NOW))


def test_extreme_values_that_stay_in_range_parse():
    parsed = parse_flexible_datetime("9999-12-31T18:00", "America/New_York")

    assert parsed.instant == utc(9999, 12, 31, 23, 0)
