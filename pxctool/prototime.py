"""Conversions between datetime values and protobuf Timestamp/Duration messages."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from google.protobuf.duration_pb2 import Duration
from google.protobuf.timestamp_pb2 import Timestamp

_NANOS_PER_SECOND = 10**9
_NANOS_PER_MICRO = 1000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICRO = timedelta(microseconds=1)


def _trunc_divmod(value: int, divisor: int) -> tuple[int, int]:
    """Divide truncating toward zero; the remainder takes the sign of ``value``."""
    quotient = abs(value) // divisor
    remainder = abs(value) % divisor
    if value < 0:
        return -quotient, -remainder
    return quotient, remainder


def _to_aware(t: datetime) -> datetime:
    if t.tzinfo is None:
        return t.astimezone(timezone.utc)
    return t


def time_to_timestamp(t: datetime) -> Timestamp:
    """Convert a datetime to a protobuf Timestamp.

    Naive datetimes are taken to be in local time.
    """
    nanos = ((_to_aware(t) - _EPOCH) // _ONE_MICRO) * _NANOS_PER_MICRO
    seconds, rest = _trunc_divmod(nanos, _NANOS_PER_SECOND)
    return Timestamp(seconds=seconds, nanos=rest)


def timestamp_to_time(timestamp: Timestamp | None) -> datetime:
    """Convert a protobuf Timestamp to an aware UTC datetime; None gives the epoch."""
    if timestamp is None:
        return _EPOCH
    return _EPOCH + timedelta(
        seconds=timestamp.seconds,
        microseconds=timestamp.nanos // _NANOS_PER_MICRO,
    )


def timestamp_less(i: Timestamp | None, j: Timestamp | None) -> bool:
    """Return True if ``i`` is before ``j``; None sorts first."""
    if j is None:
        return False
    if i is None:
        return True
    if i.seconds != j.seconds:
        return i.seconds < j.seconds
    return i.nanos < j.nanos


def now() -> Timestamp:
    """Return the current time as a protobuf Timestamp."""
    return time_to_timestamp(datetime.now(timezone.utc))


def duration_to_proto(d: timedelta) -> Duration:
    """Convert a timedelta to a protobuf Duration."""
    nanos = (d // _ONE_MICRO) * _NANOS_PER_MICRO
    seconds, rest = _trunc_divmod(nanos, _NANOS_PER_SECOND)
    return Duration(seconds=seconds, nanos=rest)


def duration_from_proto(duration: Duration | None) -> timedelta:
    """Convert a protobuf Duration to a timedelta; None gives zero."""
    if duration is None:
        return timedelta(0)
    nanos = duration.seconds * _NANOS_PER_SECOND + duration.nanos
    micros, _ = _trunc_divmod(nanos, _NANOS_PER_MICRO)
    return timedelta(microseconds=micros)