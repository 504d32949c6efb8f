"""Clock and timestamp helpers shared by the reapers."""

from datetime import datetime, timezone
from typing import Callable, Optional, Union

from utils.error_utils import MarkerParseError

# Wire format of upload session ``startedat`` markers, e.g. 2024-03-01T10:15:30Z
STARTED_AT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(timezone.utc)


def hours_since(then: datetime, now: datetime) -> int:
    """Whole hours elapsed between ``then`` and ``now``, truncated toward zero.

    Naive datetimes are treated as UTC.
    """
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int((now - then).total_seconds() / 3600)


def parse_started_at(body: Union[bytes, str], fmt: str = STARTED_AT_FORMAT, key: Optional[str] = None) -> datetime:
    """Parse the body of a ``startedat`` marker.

    The body must be exactly one timestamp in ``fmt``: no surrounding
    whitespace and every field zero-padded. The result is a UTC datetime.

    Raises:
        MarkerParseError: If the body does not match the format
    """
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            raise MarkerParseError(repr(body), fmt, key=key)
    else:
        text = body

    try:
        parsed = datetime.strptime(text, fmt)
    except ValueError:
        raise MarkerParseError(text, fmt, key=key)

    # strptime accepts unpadded fields; the wire format does not
    if parsed.strftime(fmt) != text:
        raise MarkerParseError(text, fmt, key=key)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
