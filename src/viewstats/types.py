"""
Types.
"""

import typing


class ViewEvent(typing.TypedDict):
    """
    A single recorded visit to a page on the site.
    """

    timestamp: str
    ip: str
    page: str
    internalView: typing.NotRequired[bool | None]


class PageRollup(typing.TypedDict):
    """
    Count of visits to a single page.
    """

    pagePath: str
    totalVisits: int


class PeriodRollup(typing.TypedDict):
    """
    Count of visits in a single day (``YYYY-MM-DD``) or month (``YYYY-MM``).
    """

    date: str
    totalPageViews: int
    internalPageViews: int
    uniqueVisitorIps: list[str]


class Rollups(typing.TypedDict):
    top_pages: list[PageRollup]
    periods: list[PeriodRollup]


class RejectedEvent(typing.TypedDict):
    """
    An event that was skipped by the aggregator because it's malformed.
    """

    id: str
    reason: str


ClassifyOutcome = typing.Literal[
    "classified_internal", "classified_external", "already_classified", "no_candidate"
]


class ClassifyResult(typing.TypedDict):
    event_id: str | None
    outcome: ClassifyOutcome


class AggregationSummary(typing.TypedDict):
    """
    What happened in a single run of the aggregator.
    """

    run_id: str
    events: int
    rejected: int
    top_pages: int
    periods: int
    started_at: str
    finished_at: str
