"""
Unit tests for the monthly usage cost aggregator
"""
from datetime import datetime, timezone

import pytest

from services.usage_service import (
    normalize_usage_event,
    calc_cost_by_type,
    count_by_type,
    aggregate_monthly,
    rank_users_by_cost,
    build_usage_report,
    month_key,
    month_range,
    shift_month,
)


def _events(month: str = "2025-03-10T09:00:00Z"):
    return (
        [{"user_id": "u1", "type": "url", "created_at": month}] * 2
        + [{"userId": "u1", "type": "vision", "createdAt": month}]
        + [{"userId": "u2", "type": "chat", "createdAt": month}] * 3
    )


def test_cost_example_totals_three_point_three():
    summary = aggregate_monthly(_events())[0]
    assert summary["month"] == "2025-03"
    assert summary["counts"] == {"url": 2, "vision": 1, "chat": 3, "video": 0}
    assert summary["costs"]["url"] == 1.4
    assert summary["costs"]["chat"] == 0.9
    assert summary["total_cost"] == 3.3
    assert summary["total_requests"] == 6


def test_snake_and_camel_case_rows_normalize_the_same():
    snake = normalize_usage_event({"user_id": "u1", "type": "chat", "created_at": "2025-01-01T00:00:00Z"})
    camel = normalize_usage_event({"userId": "u1", "type": "chat", "createdAt": "2025-01-01T00:00:00Z"})
    assert snake == camel
    assert snake.created_at.tzinfo == timezone.utc


def test_rows_without_timestamp_are_dropped():
    assert normalize_usage_event({"user_id": "u1", "type": "chat"}) is None
    assert aggregate_monthly([{"user_id": "u1", "type": "chat", "created_at": "garbage"}]) == []


def test_video_cost_and_unknown_types():
    counts = count_by_type(normalize_usage_event(r) for r in [
        {"user_id": "u1", "type": "video", "created_at": "2025-01-01T00:00:00Z"},
        {"user_id": "u1", "type": "fax", "created_at": "2025-01-01T00:00:00Z"},
    ])
    costs = calc_cost_by_type(counts)
    assert costs["video"] == 20.0
    assert costs["total"] == 20.0


def test_months_are_bucketed_in_utc_and_sorted():
    rows = [
        {"user_id": "u1", "type": "url", "created_at": "2025-02-28T23:30:00-02:00"},  # 2025-03-01 UTC
        {"user_id": "u1", "type": "url", "created_at": "2025-01-15T00:00:00Z"},
    ]
    assert [m["month"] for m in aggregate_monthly(rows)] == ["2025-01", "2025-03"]


def test_rank_users_by_cost():
    ranking = rank_users_by_cost(_events(), profiles={"u1": {"email": "one@example.com", "account_id": "00001"}})
    assert [row["user_id"] for row in ranking] == ["u1", "u2"]
    assert ranking[0]["total_cost"] == 2.4
    assert ranking[0]["email"] == "one@example.com"
    assert ranking[1]["email"] is None
    assert len(rank_users_by_cost(_events(), top_n=1)) == 1


def test_report_defaults_to_latest_month_with_data():
    rows = _events("2025-03-10T09:00:00Z") + [{"user_id": "u3", "type": "video", "created_at": "2025-01-05T00:00:00Z"}]
    report = build_usage_report(rows)
    assert report["summary"]["month"] == "2025-03"
    assert report["summary"]["total_cost"] == 3.3
    assert [m["month"] for m in report["monthly"]] == ["2025-01", "2025-03"]

    january = build_usage_report(rows, target_month="2025-01")
    assert january["top_users"][0]["user_id"] == "u3"


def test_report_without_data_uses_current_month():
    now = datetime(2025, 6, 2, tzinfo=timezone.utc)
    report = build_usage_report([], now=now)
    assert report["summary"]["month"] == "2025-06"
    assert report["summary"]["total_cost"] == 0
    assert report["monthly"] == []
    assert report["top_users"] == []


def test_month_helpers():
    assert month_key(datetime(2025, 12, 31, 23, 0, tzinfo=timezone.utc)) == "2025-12"
    start, end = month_range("2025-12")
    assert start == datetime(2025, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert shift_month("2025-01", -1) == "2024-12"
    assert shift_month("2025-03", -23) == "2023-04"

    with pytest.raises(ValueError):
        month_range("2025-13")
    for key in ("2025-3", "25-03", "2025-03-01", "2025-03\n", ""):
        with pytest.raises(ValueError):
            month_range(key)
