import datetime


def now() -> datetime.datetime:
    """
    Return the current time as a UTC timestamp.
    """
    return datetime.datetime.now(tz=datetime.UTC)


def as_utc(moment: datetime.datetime) -> datetime.datetime:
    """
    Convert a timestamp to UTC.  Naive timestamps are assumed to be
    in UTC already.
    """
    if moment.tzinfo is None:
        return moment.replace(tzinfo=datetime.UTC)
    else:
        return moment.astimezone(datetime.UTC)


def start_of_day(moment: datetime.datetime) -> str:
    """
    Return the UTC date of ``moment`` as ``YYYY-MM-DD``.

    Event timestamps are ISO-8601 strings in UTC, so this works as an
    exclusive upper bound with plain string comparison, e.g.

        "2020-07-09T23:59:59.999Z" < "2020-07-10"
        "2020-07-10T00:00:00.000Z" > "2020-07-10"

    """
    return as_utc(moment).date().isoformat()


def year_month(date_string: str) -> str:
    """
    Return the ``YYYY-MM`` prefix of a date or timestamp string.
    """
    return date_string[:7]


def isoformat(moment: datetime.datetime) -> str:
    """
    Format a timestamp the way event timestamps are stored, e.g.
    ``2020-07-21T09:47:58.666Z``.
    """
    utc = as_utc(moment)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
