"""
Usage Service - monthly cost aggregation over usage events
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from config.settings import UNIT_COST, FEATURES
from services.plan_service import to_utc, utcnow

logger = logging.getLogger(__name__)

MONTH_KEY_RE = re.compile(r"([0-9]{4})-([0-9]{2})")


@dataclass(frozen=True)
class UsageEvent:
    user_id: Optional[str]
    type: str
    created_at: datetime
    id: Optional[int] = None


def _pick(row: Any, *names: str) -> Any:
    for name in names:
        if isinstance(row, Mapping):
            if name in row and row[name] is not None:
                return row[name]
        else:
            value = getattr(row, name, None)
            if value is not None:
                return value
    return None


def normalize_usage_event(row: Any) -> Optional[UsageEvent]:
    """
    Turn a usage row into a UsageEvent. Accepts ORM rows and mappings keyed
    in snake_case or camelCase. Rows without a parsable timestamp are dropped.
    """
    created_at = to_utc(_pick(row, "created_at", "createdAt"))
    if created_at is None:
        logger.warning(f"Skipping usage row without a valid timestamp: {row!r}")
        return None
    return UsageEvent(
        user_id=_pick(row, "user_id", "userId"),
        type=_pick(row, "type", "feature") or "",
        created_at=created_at,
        id=_pick(row, "id"),
    )


def normalize_usage_events(rows: Iterable[Any]) -> List[UsageEvent]:
    events = []
    for row in rows:
        event = row if isinstance(row, UsageEvent) else normalize_usage_event(row)
        if event is not None:
            events.append(event)
    return events


def month_key(value: Any) -> str:
    """'YYYY-MM' of a timestamp, in UTC."""
    dt = to_utc(value)
    return f"{dt.year:04d}-{dt.month:02d}"


def parse_month_key(key: str) -> Tuple[int, int]:
    """Year and month of a zero-padded 'YYYY-MM' key. Anything else raises ValueError."""
    match = MONTH_KEY_RE.fullmatch(key or "")
    if not match:
        raise ValueError(f"Invalid month key: {key!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key!r}")
    return year, month


def month_range(key: str) -> Tuple[datetime, datetime]:
    """[start, end) of a 'YYYY-MM' month key, in UTC."""
    year, month = parse_month_key(key)
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + (month // 12), month % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


def shift_month(key: str, months: int) -> str:
    year, month = parse_month_key(key)
    index = year * 12 + month - 1 + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def empty_counts() -> Dict[str, int]:
    return {feature: 0 for feature in FEATURES}


def count_by_type(events: Iterable[UsageEvent]) -> Dict[str, int]:
    counts = empty_counts()
    for event in events:
        if event.type in counts:
            counts[event.type] += 1
    return counts


def calc_cost_by_type(counts: Mapping[str, int]) -> Dict[str, float]:
    """Per-type cost from the unit cost table, plus the total."""
    costs = {
        feature: round(counts.get(feature, 0) * UNIT_COST[feature], 2)
        for feature in FEATURES
    }
    costs["total"] = round(sum(costs[feature] for feature in FEATURES), 2)
    return costs


def summarize_month(month: str, events: Iterable[UsageEvent]) -> Dict[str, Any]:
    counts = count_by_type(events)
    costs = calc_cost_by_type(counts)
    return {
        "month": month,
        "counts": counts,
        "costs": {feature: costs[feature] for feature in FEATURES},
        "total_requests": sum(counts.values()),
        "total_cost": costs["total"],
    }


def bucket_by_month(events: Iterable[UsageEvent]) -> Dict[str, List[UsageEvent]]:
    buckets: Dict[str, List[UsageEvent]] = {}
    for event in events:
        buckets.setdefault(month_key(event.created_at), []).append(event)
    return buckets


def aggregate_monthly(events: Iterable[Any]) -> List[Dict[str, Any]]:
    """One summary per calendar month, oldest first."""
    buckets = bucket_by_month(normalize_usage_events(events))
    return [summarize_month(month, buckets[month]) for month in sorted(buckets)]


def rank_users_by_cost(
    events: Iterable[Any],
    top_n: int = 10,
    profiles: Optional[Mapping[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Per-user counts and cost, highest total cost first.

    Args:
        events: Usage rows
        top_n: Number of users to return
        profiles: Optional user_id -> profile lookup for email/account_id
    """
    per_user: Dict[str, List[UsageEvent]] = {}
    for event in normalize_usage_events(events):
        if not event.user_id:
            continue
        per_user.setdefault(event.user_id, []).append(event)

    ranking = []
    for user_id, user_events in per_user.items():
        counts = count_by_type(user_events)
        profile = (profiles or {}).get(user_id)
        ranking.append({
            "user_id": user_id,
            "email": _pick(profile, "email") if profile is not None else None,
            "account_id": _pick(profile, "account_id") if profile is not None else None,
            "counts": counts,
            "total_cost": calc_cost_by_type(counts)["total"],
        })

    ranking.sort(key=lambda row: row["total_cost"], reverse=True)
    return ranking[:top_n]


def build_usage_report(
    events: Iterable[Any],
    target_month: Optional[str] = None,
    now: Optional[datetime] = None,
    top_n: int = 10,
    profiles: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Monthly buckets, a summary of the target month, and the top users of
    that month by cost.

    The target month defaults to the latest month with data, or the current
    month when there is none.
    """
    normalized = normalize_usage_events(events)
    buckets = bucket_by_month(normalized)
    monthly = [summarize_month(month, buckets[month]) for month in sorted(buckets)]

    if target_month:
        parse_month_key(target_month)
    else:
        target_month = monthly[-1]["month"] if monthly else month_key(now or utcnow())

    target_events = buckets.get(target_month, [])
    return {
        "summary": summarize_month(target_month, target_events),
        "monthly": monthly,
        "top_users": rank_users_by_cost(target_events, top_n=top_n, profiles=profiles),
    }
