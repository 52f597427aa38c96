"""Log options and streaming of container logs, with filtering and pod prefixes."""

from __future__ import annotations

import contextlib
import queue
import re
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Callable, Iterable, Mapping, Sequence

DEFAULT_TAIL_LINES = 10
NO_TAIL_LINES = -1
PORTWORX_CONTAINER_NAME = "portworx"
NODE_KEY = b"node="

_RFC3339_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})"
)
_MICROS_PER_SECOND = 1_000_000


@dataclass
class ContainerInfo:
    """A container inside a pod whose logs are wanted."""

    pod_name: str
    pod_namespace: str
    container: str
    node_name: str = ""
    mount_path: str = ""


@dataclass
class PodLogOptions:
    """Options passed to the log request for each container."""

    container: str = ""
    follow: bool = False
    timestamps: bool = False
    previous: bool = False
    limit_bytes: int | None = None
    tail_lines: int | None = None
    since_time: datetime | None = None
    since_seconds: int | None = None


@dataclass
class LogOptions:
    """How logs are fetched, filtered and written."""

    pod_log_options: PodLogOptions = field(default_factory=PodLogOptions)
    ignore_log_errors: bool = False
    max_follow_concurrency: int = 0
    show_pod_info: bool = False
    filters: list[str] = field(default_factory=list)
    apply_filters: bool = False
    portworx_namespace: str = ""
    cinfo: list[ContainerInfo] = field(default_factory=list)


@dataclass
class LogSource:
    """A log stream of one container; ``stream`` opens it as a binary file."""

    pod_name: str
    pod_namespace: str
    stream: Callable[[], IO[bytes]]


def parse_rfc3339(s: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339_RE.fullmatch(s)
    if match is None:
        raise ValueError(f"cannot parse {s!r} as RFC3339 time")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction, zone = match.group(7), match.group(8)
    micros = int((fraction[1:] + "000000")[:6]) if fraction else 0
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset_h, offset_m = int(zone[1:3]), int(zone[4:6])
        if offset_h >= 24 or offset_m >= 60:
            raise ValueError(f"cannot parse {s!r} as RFC3339 time: bad offset")
        tz = timezone(sign * timedelta(hours=offset_h, minutes=offset_m))
    try:
        return datetime(year, month, day, hour, minute, second, micros, tzinfo=tz)
    except ValueError as err:
        raise ValueError(f"cannot parse {s!r} as RFC3339 time: {err}") from None


def _round_seconds(d: timedelta) -> int:
    micros = d // timedelta(microseconds=1)
    whole = (abs(micros) + _MICROS_PER_SECOND // 2) // _MICROS_PER_SECOND
    return -whole if micros < 0 else whole


def common_log_options(
    px_namespace: str = "kube-system",
    ignore_errors: bool = False,
    show_pod_info: bool = False,
    max_log_requests: int = 5,
    filter: str = "",
    follow: bool = False,
    timestamps: bool = False,
    previous: bool = False,
    limit_bytes: int = 0,
    tail: int = NO_TAIL_LINES,
    since: timedelta = timedelta(0),
    since_time: str = "",
) -> LogOptions:
    """Validate the common log command options and build LogOptions."""
    lo = LogOptions(
        portworx_namespace=px_namespace,
        ignore_log_errors=ignore_errors,
        show_pod_info=show_pod_info,
        max_follow_concurrency=max_log_requests,
    )
    if lo.max_follow_concurrency <= 0:
        raise ValueError("--max-log-requests should be greater than 0")
    if filter:
        lo.filters = filter.split(",")
        lo.apply_filters = True

    plo = lo.pod_log_options
    plo.follow = follow
    plo.timestamps = timestamps
    plo.previous = previous

    if limit_bytes != 0:
        if limit_bytes < 0:
            raise ValueError("--limit-bytes must be greater than 0")
        plo.limit_bytes = limit_bytes

    if tail != NO_TAIL_LINES:
        if tail < 0:
            raise ValueError("TailLines must be greater than or equal to 0")
        plo.tail_lines = tail
    if plo.follow and plo.tail_lines is None:
        plo.tail_lines = DEFAULT_TAIL_LINES

    since_seconds = _round_seconds(since)
    if since_time and since_seconds > 0:
        raise ValueError("at most one of --since or -since-time may be specified")
    if since_time:
        plo.since_time = parse_rfc3339(since_time)
    if since_seconds != 0:
        if since_seconds < 0:
            raise ValueError("--since must be greater than or equal to 0")
        plo.since_seconds = since_seconds
    return lo


def _lookup(pod: Mapping[str, Any], section: str, key: str) -> str:
    value = (pod.get(section) or {}).get(key)
    return "" if value is None else str(value)


def required_portworx_pods(
    all_pods: Iterable[Mapping[str, Any]],
    node_names: Sequence[str],
) -> list[ContainerInfo]:
    """Return the Portworx containers of the pods, limited to the given nodes.

    Pods are Kubernetes pod objects in their mapping form. Every requested
    node must host one of the pods.
    """
    all_cinfo = [
        ContainerInfo(
            pod_name=_lookup(pod, "metadata", "name"),
            pod_namespace=_lookup(pod, "metadata", "namespace"),
            container=PORTWORX_CONTAINER_NAME,
            node_name=_lookup(pod, "spec", "nodeName"),
        )
        for pod in all_pods
    ]
    if not node_names:
        return all_cinfo

    selected = [ci for ci in all_cinfo if ci.node_name in node_names]
    found = {ci.node_name for ci in selected}
    for name in node_names:
        if name not in found:
            raise ValueError(f"Node {name} not found")
    return selected


def _matches_any(text: str, filters: Iterable[str]) -> bool:
    return any(f in text for f in filters)


def write_line(prefix: bytes, data: bytes, options: LogOptions, out: IO[bytes]) -> None:
    """Write one log line, applying filters, the pod prefix and the node marker."""
    if options.apply_filters and not _matches_any(
        data.decode(errors="replace"), options.filters
    ):
        return
    if data:
        if prefix:
            out.write(prefix)
        if data[:1] == b"@":
            out.write(NODE_KEY)
            data = data[1:]
    out.write(data)


def write_source(source: LogSource, options: LogOptions, out: IO[bytes]) -> None:
    """Copy a whole log stream to ``out`` line by line."""
    prefix = b""
    if options.show_pod_info:
        prefix = f"pod={source.pod_name} namespace={source.pod_namespace} ".encode()
    with contextlib.closing(source.stream()) as rc:
        for line in iter(rc.readline, b""):
            write_line(prefix, line, options, out)


def write_logs(
    sources: Iterable[LogSource], options: LogOptions, out: IO[bytes]
) -> None:
    """Write each source's logs in turn; the first error stops the copy."""
    for source in sources:
        write_source(source, options, out)


class _Stopped(Exception):
    pass


_DONE = object()


class _LineQueueWriter:
    """Collects writes into whole lines and hands them to a queue."""

    def __init__(self, q: queue.Queue, stop: threading.Event) -> None:
        self._queue = q
        self._stop = stop
        self._pending = bytearray()

    def write(self, data: bytes) -> int:
        if self._stop.is_set():
            raise _Stopped
        self._pending.extend(data)
        if self._pending.endswith(b"\n"):
            self.flush()
        return len(data)

    def flush(self) -> None:
        if self._pending:
            self._queue.put(bytes(self._pending))
            self._pending.clear()


def write_logs_parallel(
    sources: Sequence[LogSource], options: LogOptions, out: IO[bytes]
) -> None:
    """Follow all sources at once, merging their lines into ``out``.

    Unless errors are ignored the first error raised by a source is re-raised;
    otherwise it is written to ``out`` as an ``error:`` line.
    """
    q: queue.Queue = queue.Queue()
    stop = threading.Event()

    def run(source: LogSource) -> None:
        writer = _LineQueueWriter(q, stop)
        try:
            write_source(source, options, writer)
        except _Stopped:
            return
        except Exception as err:  # noqa: BLE001 - forwarded to the reader
            writer.flush()
            if not options.ignore_log_errors:
                q.put(err)
                return
            q.put(f"error: {err}\n".encode())
        writer.flush()
        q.put(_DONE)

    for source in sources:
        threading.Thread(target=run, args=(source,), daemon=True).start()

    remaining = len(sources)
    while remaining:
        item = q.get()
        if item is _DONE:
            remaining -= 1
        elif isinstance(item, BaseException):
            stop.set()
            raise item
        else:
            out.write(item)


def get_logs(
    sources: Sequence[LogSource], options: LogOptions, out: IO[bytes]
) -> None:
    """Write the logs of all sources, following them in parallel when asked."""
    if not sources:
        sys.stdout.write("No resources found\n")
        return
    if options.pod_log_options.follow and len(sources) > 1:
        if len(sources) > options.max_follow_concurrency:
            raise ValueError(
                f"you are attempting to follow {len(sources)} log streams, "
                "but maximum allowed concurency is "
                f"{options.max_follow_concurrency}, "
                "use --max-log-requests to increase the limit"
            )
        write_logs_parallel(sources, options, out)
        return
    write_logs(sources, options, out)