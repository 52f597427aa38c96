"""Snapshot schedule intervals, retention counts and policy tags."""

from __future__ import annotations

import calendar
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Callable, Iterable, Sequence

import yaml

SCHEDULE_SEPARATOR = ";"
DAILY_TYPE = "daily"
MONTHLY_TYPE = "monthly"
WEEKLY_TYPE = "weekly"
PERIODIC_TYPE = "periodic"
MONTHLY_RETAIN = 12
WEEKLY_RETAIN = 5
DAILY_RETAIN = 7

_NON_YAML_TYPE_SEPARATOR = "="
_RETAIN_SEPARATOR = ","
_POLICY_TAG = "policy"
_POLICY_STR_SEPARATOR = "="
_POLICY_NAME_SEPARATOR = ","

_WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
_KNOWN_TYPES = (PERIODIC_TYPE, DAILY_TYPE, WEEKLY_TYPE, MONTHLY_TYPE)
_UNSIGNED_FIELDS = frozenset({"period", "retain"})
_POLICY_NAME_RE = re.compile(r"[A-Za-z0-9_]+")
_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT_RE = re.compile(r"[0-9]+")
_NANOS_PER_MICRO = 1000


@dataclass
class _ClockSettings:
    """Process-wide switches that affect when retained intervals fire."""

    speed_up: bool = False


_CLOCK = _ClockSettings()


def speed_up() -> None:
    """Make retained intervals fire every minute (used by tests)."""
    _CLOCK.speed_up = True


# --------------------------------------------------------------------------
# Serialized specs


def _yaml_int(raw: object, name: str, unsigned: bool) -> int:
    if raw is None:
        return 0
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"invalid value for {name}: {raw!r}")
    if unsigned and raw < 0:
        raise ValueError(f"invalid value for {name}: {raw!r}")
    return raw


@dataclass
class IntervalSpec:
    """Serialized form of a schedule interval."""

    freq: str = ""
    period: int = 0
    month: int = 0
    weekday: int = 0
    day: int = 0
    hour: int = 0
    minute: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return the YAML mapping; zero-valued fields other than freq are omitted."""
        result: dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "freq" or value:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: object):
        """Build a spec from a YAML mapping."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"schedule entry is not a mapping: {data!r}")
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if f.name == "freq":
                values["freq"] = "" if raw is None else str(raw)
            else:
                values[f.name] = _yaml_int(raw, f.name, f.name in _UNSIGNED_FIELDS)
        return cls(**values)


@dataclass
class RetainIntervalSpec(IntervalSpec):
    """Serialized form of an interval together with its retain count."""

    retain: int = 0

    @property
    def interval_spec(self) -> IntervalSpec:
        return IntervalSpec(
            freq=self.freq,
            period=self.period,
            month=self.month,
            weekday=self.weekday,
            day=self.day,
            hour=self.hour,
            minute=self.minute,
        )

    @classmethod
    def from_spec(cls, spec: IntervalSpec, retain: int = 0) -> "RetainIntervalSpec":
        return cls(
            freq=spec.freq,
            period=spec.period,
            month=spec.month,
            weekday=spec.weekday,
            day=spec.day,
            hour=spec.hour,
            minute=spec.minute,
            retain=retain,
        )


# --------------------------------------------------------------------------
# Intervals


def _frac(value: int, precision: int) -> tuple[int, str]:
    scale = 10**precision
    digits = f"{value % scale:0{precision}d}".rstrip("0")
    return value // scale, f".{digits}" if digits else ""


def _format_duration(nanos: int) -> str:
    sign = "-" if nanos < 0 else ""
    u = abs(nanos)
    if u < 10**9:
        if u == 0:
            return "0s"
        if u < 1000:
            return f"{sign}{u}ns"
        if u < 10**6:
            whole, frac = _frac(u, 3)
            return f"{sign}{whole}{frac}µs"
        whole, frac = _frac(u, 6)
        return f"{sign}{whole}{frac}ms"
    seconds, frac = _frac(u, 9)
    text = f"{seconds % 60}{frac}s"
    minutes = seconds // 60
    if minutes > 0:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours > 0:
            text = f"{hours}h{text}"
    return sign + text


def _weekday_name(day: int) -> str:
    if 0 <= day < len(_WEEKDAY_NAMES):
        return _WEEKDAY_NAMES[day]
    return f"%!Weekday({day})"


class Interval(ABC):
    """A recurring point in time."""

    @abstractmethod
    def next_after(self, t: datetime) -> datetime:
        """Return the next trigger time after ``t``."""

    @abstractmethod
    def interval_type(self) -> str:
        """Return the frequency name of this interval."""

    @abstractmethod
    def spec(self) -> IntervalSpec:
        """Return the serialized form of this interval."""


@dataclass(frozen=True)
class Periodic(Interval):
    delta: timedelta

    def next_after(self, t: datetime) -> datetime:
        return t + self.delta

    def __str__(self) -> str:
        return f"{PERIODIC_TYPE} {_format_duration(self._nanos())}"

    def interval_type(self) -> str:
        return PERIODIC_TYPE

    def spec(self) -> IntervalSpec:
        return IntervalSpec(freq=PERIODIC_TYPE, period=self._nanos())

    def _nanos(self) -> int:
        return (self.delta // timedelta(microseconds=1)) * _NANOS_PER_MICRO


@dataclass(frozen=True)
class Daily(Interval):
    hour: int
    minute: int

    def next_after(self, t: datetime) -> datetime:
        h, m = t.hour, t.minute
        if h < self.hour:
            t += timedelta(hours=self.hour - h)
        elif h > self.hour or m >= self.minute:
            t += timedelta(hours=24 - h + self.hour)
        return t + timedelta(minutes=self.minute - m)

    def __str__(self) -> str:
        return f"{DAILY_TYPE} @{self.hour:02d}:{self.minute:02d}"

    def interval_type(self) -> str:
        return DAILY_TYPE

    def spec(self) -> IntervalSpec:
        return IntervalSpec(freq=DAILY_TYPE, hour=self.hour, minute=self.minute)


@dataclass(frozen=True)
class Weekly(Interval):
    """Weekly interval; ``day`` counts from Sunday (0) to Saturday (6)."""

    day: int
    hour: int
    minute: int

    def next_after(self, t: datetime) -> datetime:
        t = Daily(self.hour, self.minute).next_after(t)
        current = (t.weekday() + 1) % 7
        delta = self.day - current
        if self.day < current:
            delta += 7
        return t + timedelta(days=delta)

    def __str__(self) -> str:
        return (
            f"{WEEKLY_TYPE} {_weekday_name(self.day)}"
            f"@{self.hour:02d}:{self.minute:02d}"
        )

    def interval_type(self) -> str:
        return WEEKLY_TYPE

    def spec(self) -> IntervalSpec:
        return IntervalSpec(
            freq=WEEKLY_TYPE, weekday=self.day, hour=self.hour, minute=self.minute
        )


@dataclass(frozen=True)
class Monthly(Interval):
    day: int
    hour: int
    minute: int

    def next_after(self, t: datetime) -> datetime:
        t = Daily(self.hour, self.minute).next_after(t)
        if t.day > self.day:
            days_in_month = calendar.monthrange(t.year, t.month)[1]
            t += timedelta(days=days_in_month)
        return t

    def __str__(self) -> str:
        return f"{MONTHLY_TYPE} {self.day}@{self.hour:02d}:{self.minute:02d}"

    def interval_type(self) -> str:
        return MONTHLY_TYPE

    def spec(self) -> IntervalSpec:
        return IntervalSpec(
            freq=MONTHLY_TYPE, day=self.day, hour=self.hour, minute=self.minute
        )


@dataclass(frozen=True)
class RetainInterval(Interval):
    """An interval together with the number of instances to retain."""

    interval: Interval
    retain: int = 0

    def next_after(self, t: datetime) -> datetime:
        new_time = self.interval.next_after(t)
        if _CLOCK.speed_up:
            return t + timedelta(minutes=1)
        return new_time

    def __str__(self) -> str:
        text = str(self.interval)
        if self.retain_number() > 0:
            return f"{text},keep last {self.retain_number()}"
        return text

    def interval_type(self) -> str:
        return self.interval.interval_type()

    def spec(self) -> IntervalSpec:
        return self.interval.spec()

    def retain_number(self) -> int:
        return self.retain

    def retain_interval_spec(self) -> RetainIntervalSpec:
        return RetainIntervalSpec.from_spec(self.spec(), self.retain_number())


def new_retain_interval(iv: Interval) -> RetainInterval:
    """Wrap an interval with no retain count."""
    return RetainInterval(iv)


_DEFAULT_RETAIN = {
    DAILY_TYPE: DAILY_RETAIN,
    WEEKLY_TYPE: WEEKLY_RETAIN,
    PERIODIC_TYPE: WEEKLY_RETAIN,
    MONTHLY_TYPE: MONTHLY_RETAIN,
}


def setup_intv_with_defaults(intvs: Iterable[RetainInterval]) -> list[RetainInterval]:
    """Fill in the default retain count for intervals that have none."""
    result = []
    for intv in intvs:
        retain = intv.retain_number() or _DEFAULT_RETAIN.get(intv.interval_type(), 0)
        result.append(RetainInterval(intv.interval, retain))
    return result


# --------------------------------------------------------------------------
# Parsing


def _parse_spec(spec: IntervalSpec) -> Interval:
    if spec.freq == PERIODIC_TYPE:
        return Periodic(timedelta(microseconds=spec.period // _NANOS_PER_MICRO))
    if spec.freq == DAILY_TYPE:
        return Daily(spec.hour, spec.minute)
    if spec.freq == WEEKLY_TYPE:
        return Weekly(spec.weekday, spec.hour, spec.minute)
    if spec.freq == MONTHLY_TYPE:
        return Monthly(spec.day or 1, spec.hour, spec.minute)
    raise ValueError("Invalid schedule spec")


def _parse_retain_spec(spec: RetainIntervalSpec) -> RetainInterval:
    return RetainInterval(_parse_spec(spec.interval_spec), spec.retain)


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    return int(text)


def _parse_retain_number(text: str) -> tuple[int, str]:
    parts = text.split(_RETAIN_SEPARATOR)
    retain = 0
    if len(parts) > 1:
        try:
            retain = _atoi(parts[1])
        except ValueError:
            raise ValueError(f"Invalid number: {parts[1]}") from None
        if retain <= 0:
            raise ValueError("Keep number should be greater than 0")
    return retain, parts[0]


def _time_of_day(hhmm: str) -> tuple[int, int]:
    if hhmm == "":
        return 0, 0
    parts = hhmm.split(":")
    if len(parts) == 1:
        parts.append("0")
    if len(parts) == 2:
        try:
            h, m = _atoi(parts[0]), _atoi(parts[1])
        except ValueError:
            pass
        else:
            if 0 <= h < 24 and 0 <= m < 60:
                return h, m
    raise ValueError(f"invalid start time {hhmm}")


def _title(text: str) -> str:
    return re.sub(r"(?<![A-Za-z0-9_])[a-z]", lambda m: m.group().upper(), text)


def _day_of_week(wd: str) -> int:
    day = _title(wd) or "Sunday"
    try:
        return _WEEKDAY_NAMES.index(day)
    except ValueError:
        raise ValueError(f"invalid weekday {day}") from None


def parse_periodic(input_str: str) -> RetainIntervalSpec:
    """Parse ``minutes[,retain]`` into a periodic spec."""
    retain, interval = _parse_retain_number(input_str)
    if interval == "":
        raise ValueError("Interval is missing")
    if not _UINT_RE.fullmatch(interval) or int(interval) >= 2**64:
        raise ValueError(f"Invalid interval {interval}")
    try:
        spec = Periodic(timedelta(minutes=int(interval))).spec()
    except OverflowError:
        raise ValueError(f"Invalid interval {interval}") from None
    return RetainIntervalSpec.from_spec(spec, retain)


def _parse_daily(daily_str: str) -> RetainIntervalSpec:
    retain, daily = _parse_retain_number(daily_str)
    if daily == "":
        raise ValueError("Daily schedule is missing")
    h, m = _time_of_day(daily.split("@")[-1])
    return RetainIntervalSpec.from_spec(Daily(h, m).spec(), retain)


def _split_at(text: str, original: str, kind: str) -> tuple[str, str]:
    parts = text.split("@")
    if len(parts) == 1:
        parts.append("0:0")
    if len(parts) != 2:
        raise ValueError(f"Invalid {kind} spec {original}")
    return parts[0], parts[1]


def _parse_weekly(weekly_str: str) -> RetainIntervalSpec:
    retain, weekly = _parse_retain_number(weekly_str)
    if weekly == "":
        raise ValueError("Weekly schedule is missing")
    day_text, time_text = _split_at(weekly, weekly_str, "weekly")
    day = _day_of_week(day_text)
    h, m = _time_of_day(time_text)
    return RetainIntervalSpec.from_spec(Weekly(day, h, m).spec(), retain)


def _parse_monthly(monthly_str: str) -> RetainIntervalSpec:
    retain, monthly = _parse_retain_number(monthly_str)
    if monthly == "":
        raise ValueError("Monthly schedule is missing")
    day_text, time_text = _split_at(monthly, monthly_str, "monthly")
    try:
        day = _atoi(day_text)
    except ValueError:
        day = -1
    if day < 0 or day > 31:
        raise ValueError(f"Invalid day of month {day_text}")
    h, m = _time_of_day(time_text)
    return RetainIntervalSpec.from_spec(Monthly(day, h, m).spec(), retain)


_PARSE_CLI: dict[str, Callable[[str], RetainIntervalSpec]] = {
    DAILY_TYPE: _parse_daily,
    WEEKLY_TYPE: _parse_weekly,
    MONTHLY_TYPE: _parse_monthly,
}


def _parse_non_yaml_schedule(schedule: str) -> RetainIntervalSpec:
    parts = schedule.split(_NON_YAML_TYPE_SEPARATOR)
    if len(parts) != 2 or not is_interval_type(parts[0]):
        raise ValueError(f"Invalid schedule specification: {schedule}")
    parser = _PARSE_CLI.get(parts[0], parse_periodic)
    return parser(parts[1])


def _load_yaml_specs(text: str) -> list[RetainIntervalSpec] | None:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if data is None:
        return []
    if not isinstance(data, list):
        return None
    try:
        return [RetainIntervalSpec.from_dict(item) for item in data]
    except ValueError:
        return None


def parse_schedule(schedule: str) -> list[RetainInterval]:
    """Parse a YAML list of specs or a single ``type=value`` schedule."""
    if schedule == "":
        return []
    specs = _load_yaml_specs(schedule)
    if specs is None:
        specs = [_parse_non_yaml_schedule(schedule)]
    return [_parse_retain_spec(spec) for spec in specs]


def parse_schedule_and_policies(
    schedule_string: str,
) -> tuple[list[RetainInterval], "PolicyTags | None"]:
    """Parse ``;``-separated schedules and policy tags."""
    names: list[str] = []
    intervals: list[RetainInterval] = []
    for schedule in schedule_string.split(SCHEDULE_SEPARATOR):
        if schedule.startswith(_POLICY_TAG):
            policy = parse_policy_tags(schedule)
            if policy is not None:
                names.extend(policy.names)
        else:
            intervals.extend(parse_schedule(schedule))
    if not names:
        return intervals, None
    return intervals, PolicyTags(names)


def schedule_string_retain_inv(
    intvs: Iterable[RetainInterval], p: "PolicyTags | None"
) -> str:
    """Serialize intervals and policy tags into a schedule string."""
    return schedule_string([intv.retain_interval_spec() for intv in intvs], p)


def schedule_string(
    items: Sequence[RetainIntervalSpec], p: "PolicyTags | None"
) -> str:
    """Serialize specs as YAML, followed by policy tags if any."""
    text = ""
    if items:
        text = yaml.safe_dump(
            [item.to_dict() for item in items],
            sort_keys=False,
            default_flow_style=False,
        )
    if p is not None:
        policy_text = str(p)
        if policy_text:
            if text:
                text += SCHEDULE_SEPARATOR
            text += policy_text
    return text


def schedule_interval_summary(
    items: Sequence[Interval], policy_tags: "PolicyTags | None"
) -> str:
    """Return a human-readable list of intervals."""
    return ", ".join(str(iv) for iv in items)


def schedule_summary(
    items: Sequence[RetainInterval], policy_tags: "PolicyTags | None"
) -> str:
    """Return a human-readable summary of policies and intervals."""
    summary = str(policy_tags) if policy_tags is not None else ""
    if not items:
        return summary
    if summary:
        summary += SCHEDULE_SEPARATOR
    return summary + ", ".join(str(iv) for iv in items)


def interval_type(interval: Interval) -> str:
    """Return the type name taken from the interval's description."""
    return str(interval).split(" ")[0]


def is_interval_type(t: str) -> bool:
    return t in _KNOWN_TYPES


# --------------------------------------------------------------------------
# Policy tags


@dataclass
class PolicyTags:
    """A group of policy names."""

    names: list[str] = field(default_factory=list)

    def _verify(self) -> "PolicyTags":
        for name in self.names:
            if not _POLICY_NAME_RE.search(name):
                raise ValueError(f"Invalid policy name '{name}'")
        return self

    def summary(self) -> str:
        if not self.names:
            return ""
        return f"{_POLICY_TAG}={_POLICY_NAME_SEPARATOR.join(self.names)}"

    def __str__(self) -> str:
        return self.summary()


def new_policy_tags_from_slice(policies: Iterable[str]) -> PolicyTags:
    return PolicyTags(list(policies))._verify()


def new_policy_tags(policies: str) -> PolicyTags | None:
    """Build tags from a comma-separated list; empty input gives None."""
    if policies == "":
        return None
    return PolicyTags(policies.split(_POLICY_NAME_SEPARATOR))._verify()


def parse_policy_tags(policy_tags_str: str) -> PolicyTags | None:
    """Parse ``policy=name1,name2``; empty input gives None."""
    if policy_tags_str == "":
        return None
    parts = policy_tags_str.split(_POLICY_STR_SEPARATOR)
    if len(parts) != 2 or parts[0] != _POLICY_TAG:
        raise ValueError(f"Invalid policy string {policy_tags_str}")
    return new_policy_tags(parts[1])


def same_policy_tags(p1: PolicyTags | None, p2: PolicyTags | None) -> bool:
    """Return True when both hold the same names in any order."""
    if p1 is p2:
        return True
    if p1 is None or p2 is None or len(p1.names) != len(p2.names):
        return False
    return all(name in p2.names for name in p1.names)