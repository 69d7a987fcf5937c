from datetime import date

from utils.expirations import (
    format_expiry,
    generate_expirations,
    is_last_friday,
    is_third_friday,
)

OCT_1_2025 = date(2025, 10, 1)  # Wednesday


def test_fridays_then_last_week_weekdays():
    assert generate_expirations(8, today=OCT_1_2025) == [
        "251003", "251010", "251017", "251024",
        "251027", "251028", "251029", "251030",
    ]


def test_stops_at_horizon():
    assert generate_expirations(100, horizon_days=7, today=OCT_1_2025) == ["251003"]


def test_distinct_and_ordered():
    exps = generate_expirations(50, today=OCT_1_2025)

    assert len(exps) == 50
    assert exps == sorted(set(exps))


def test_deterministic_for_fixed_today():
    assert generate_expirations(30, today=OCT_1_2025) == generate_expirations(30, today=OCT_1_2025)


def test_monthly_and_month_end_fridays():
    assert is_third_friday(date(2025, 10, 17))
    assert not is_third_friday(date(2025, 10, 10))
    assert is_last_friday(date(2025, 10, 31))
    assert not is_last_friday(date(2025, 10, 24))
    assert is_last_friday(date(2026, 2, 27))


def test_format_expiry():
    assert format_expiry("251121") == "2025-11-21"
