"""
Rolling up page views into the summary stats.

These are all pure functions over a list of events, so they can be
tested without a database.  The output is:

*   A list of pages, sorted by how many times they were visited
*   A list of periods, where the current month is broken down by day,
    and every earlier month is a single record for the whole month

"""

from collections.abc import Iterable
import collections
import datetime

from .date_helpers import year_month
from .types import PageRollup, PeriodRollup, Rollups, ViewEvent


def count_top_pages(events: Iterable[ViewEvent]) -> list[PageRollup]:
    """
    Count the visits to each page, most visited first.

    Pages with the same count stay in the order they were first seen.
    """
    tally = collections.Counter(e["page"] for e in events)

    # ``most_common()`` puts elements with equal counts in the order
    # they were first encountered.
    return [
        {"pagePath": page, "totalVisits": count} for page, count in tally.most_common()
    ]


def _empty_period(date: str) -> PeriodRollup:
    return {
        "date": date,
        "totalPageViews": 0,
        "internalPageViews": 0,
        "uniqueVisitorIps": [],
    }


def _merge_ips(existing: list[str], new_ips: Iterable[str]) -> list[str]:
    """
    Append any IPs we haven't seen before, keeping first-seen order.
    """
    return list(dict.fromkeys([*existing, *new_ips]))


def group_by_day(
    events: Iterable[ViewEvent], *, internal_ip: str
) -> dict[str, PeriodRollup]:
    """
    Tally events for each day, keyed by ``YYYY-MM-DD``.
    """
    # day -> {ip -> None}, used as an ordered set
    ips_by_day: dict[str, dict[str, None]] = collections.defaultdict(dict)
    by_day: dict[str, PeriodRollup] = {}

    for e in events:
        day = e["timestamp"][:10]

        if day not in by_day:
            by_day[day] = _empty_period(day)

        by_day[day]["totalPageViews"] += 1

        if e["ip"] == internal_ip:
            by_day[day]["internalPageViews"] += 1

        ips_by_day[day][e["ip"]] = None

    for day, ips in ips_by_day.items():
        by_day[day]["uniqueVisitorIps"] = list(ips)

    return by_day


def roll_up_months(
    by_day: dict[str, PeriodRollup], *, current_month: str
) -> dict[str, PeriodRollup]:
    """
    Combine the daily tallies into one record per month, skipping
    the current month (``YYYY-MM``).
    """
    by_month: dict[str, PeriodRollup] = {}

    for day, tally in by_day.items():
        month = year_month(day)

        if month == current_month:
            continue

        if month not in by_month:
            by_month[month] = _empty_period(month)

        by_month[month]["totalPageViews"] += tally["totalPageViews"]
        by_month[month]["internalPageViews"] += tally["internalPageViews"]
        by_month[month]["uniqueVisitorIps"] = _merge_ips(
            by_month[month]["uniqueVisitorIps"], tally["uniqueVisitorIps"]
        )

    return by_month


def merge_periods(
    by_day: dict[str, PeriodRollup],
    by_month: dict[str, PeriodRollup],
    *,
    current_month: str,
) -> list[PeriodRollup]:
    """
    Pick out the final set of periods: each day in the current month,
    plus a single record for each earlier month.

    Days from earlier months never appear on their own; they're only
    counted as part of their month.
    """
    current_days = [
        tally for day, tally in by_day.items() if year_month(day) == current_month
    ]

    return sorted([*current_days, *by_month.values()], key=lambda p: p["date"])


def compute_rollups(
    events: list[ViewEvent], *, today: datetime.date, internal_ip: str
) -> Rollups:
    """
    Build all the rollups for a batch of events.
    """
    current_month = today.isoformat()[:7]

    by_day = group_by_day(events, internal_ip=internal_ip)
    by_month = roll_up_months(by_day, current_month=current_month)

    return {
        "top_pages": count_top_pages(events),
        "periods": merge_periods(by_day, by_month, current_month=current_month),
    }
