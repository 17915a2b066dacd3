import datetime as _dt
from typing import Optional

from dateutil import tz

MAX_EXCERPT = 2000


def tz_santiago() -> _dt.tzinfo:
    return tz.gettz("America/Santiago")


def now_santiago() -> _dt.datetime:
    return _dt.datetime.now(tz=tz_santiago())


def excerpt(text: Optional[str], limit: int = MAX_EXCERPT) -> Optional[str]:
    """Bound a response body so it can travel on an exception or into a log line."""
    if text is None:
        return None
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [{len(text) - limit} more chars]"


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    if len(token) <= 6:
        return "***"
    return f"{token[:3]}...{token[-3:]}"
