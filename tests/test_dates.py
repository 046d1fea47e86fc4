from datetime import date

from minequery.planner.dates import parse_date

TODAY = date(2025, 3, 12)  # a Wednesday


def test_month_spans_whole_month():
    d = parse_date("January 2024", today=TODAY)
    assert d.kind == 'month'
    assert (d.start, d.end) == (date(2024, 1, 1), date(2024, 1, 31))


def test_february_respects_leap_years():
    assert parse_date("February 2024", today=TODAY).end == date(2024, 2, 29)
    assert parse_date("February 2023", today=TODAY).end == date(2023, 2, 28)


def test_quarter():
    d = parse_date("Q1 2024", today=TODAY)
    assert d.kind == 'quarter'
    assert (d.start, d.end) == (date(2024, 1, 1), date(2024, 3, 31))
    d = parse_date("first quarter of 2023", today=TODAY)
    assert (d.start, d.end) == (date(2023, 1, 1), date(2023, 3, 31))


def test_explicit_day_is_single_day_not_month():
    d = parse_date("January 15, 2025", today=TODAY)
    assert d.kind == 'single'
    assert d.start == d.end == date(2025, 1, 15)
    assert d.is_single_day


def test_numeric_day_formats():
    assert parse_date("production on 2024-03-05", today=TODAY).start == date(2024, 3, 5)
    # day first
    assert parse_date("production on 05/03/2024", today=TODAY).start == date(2024, 3, 5)


def test_range_year_propagates_to_first_endpoint():
    d = parse_date("from January to March 2024", today=TODAY)
    assert d.kind == 'range'
    assert (d.start, d.end) == (date(2024, 1, 1), date(2024, 3, 31))


def test_quarter_wins_over_range_connector():
    d = parse_date("compare Q1 to Q2 2024", today=TODAY)
    assert d.kind == 'quarter'
    assert (d.quarter, d.start, d.end) == (1, date(2024, 1, 1), date(2024, 3, 31))
    assert parse_date("between Q1 2024 and Q2 2024", today=TODAY).quarter == 1


def test_relative_periods():
    d = parse_date("last 7 days", today=TODAY)
    assert (d.start, d.end) == (date(2025, 3, 5), TODAY)
    assert d.relative_period == 'last_7_days'

    d = parse_date("this week", today=TODAY)
    assert d.start == date(2025, 3, 10)  # Monday

    d = parse_date("last month", today=TODAY)
    assert (d.start, d.end) == (date(2025, 2, 1), date(2025, 2, 28))


def test_bare_year():
    d = parse_date("production in 2024", today=TODAY)
    assert d.kind == 'year'
    assert (d.start, d.end) == (date(2024, 1, 1), date(2024, 12, 31))


def test_quantities_are_not_years():
    assert parse_date("moved 2000 tons", today=TODAY) is None
    assert parse_date("days with production over 2000", today=TODAY) is None
    assert parse_date("at least 1950 trips in 2024", today=TODAY).year == 2024


def test_may_as_verb_is_not_a_month():
    assert parse_date("may I see production", today=TODAY) is None
    assert parse_date("production in may 2024", today=TODAY).month == 5


def test_unparseable_input_is_none():
    assert parse_date("", today=TODAY) is None
    assert parse_date(None, today=TODAY) is None
    assert parse_date(42, today=TODAY) is None


def test_to_dict():
    out = parse_date("January 2024", today=TODAY).to_dict()
    assert out['start'] == '2024-01-01'
    assert out['month_name'] == 'January'
