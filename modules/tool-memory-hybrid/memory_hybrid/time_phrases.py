"""Natural-language time ranges inside recall queries.

"what did I decide yesterday" searches for "what did I decide" among
memories created since the start of yesterday.
"""

import logging
from datetime import datetime, time, timezone
from typing import NamedTuple, Optional

from dateparser.search import search_dates

from .models import as_utc, utc_now

logger = logging.getLogger(__name__)


class TimePhrase(NamedTuple):
    text: str
    since: datetime
    query: str


def parse_time_phrase(query: str, now: Optional[datetime] = None) -> Optional[TimePhrase]:
    """Find the first date expression in query.

    The range starts at midnight UTC of the date it names and stays open
    ended. The phrase is removed from the query unless nothing would be left.

    Returns:
        TimePhrase, or None if the query names no date
    """
    now = as_utc(now) if now is not None else utc_now()
    try:
        found = search_dates(
            query,
            languages=["en"],
            settings={
                "PREFER_DATES_FROM": "past",
                "RELATIVE_BASE": now.replace(tzinfo=None),
                "TIMEZONE": "UTC",
                "TO_TIMEZONE": "UTC",
                "RETURN_AS_TIMEZONE_AWARE": True,
            },
        )
    except Exception as e:
        logger.warning("Time phrase parsing failed for %r: %s", query, e)
        return None
    if not found:
        return None

    text, moment = found[0]
    since = datetime.combine(as_utc(moment).date(), time.min, tzinfo=timezone.utc)
    stripped = " ".join(query.replace(text, " ").split())
    logger.debug("Time phrase %r in query; searching since %s", text, since.isoformat())
    return TimePhrase(text=text, since=since, query=stripped or query)
