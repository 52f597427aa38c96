import io
from datetime import timedelta, timezone

import pytest

from pxctool.logs import (
    DEFAULT_TAIL_LINES,
    NODE_KEY,
    PORTWORX_CONTAINER_NAME,
    LogOptions,
    LogSource,
    common_log_options,
    get_logs,
    parse_rfc3339,
    required_portworx_pods,
    write_line,
    write_logs,
    write_logs_parallel,
    write_source,
)


def _source(name, data, namespace="ns"):
    return LogSource(name, namespace, lambda: io.BytesIO(data))


def _failing_source(name, message):
    def opener():
        raise RuntimeError(message)

    return LogSource(name, "ns", opener)


def _pod(name, node, namespace="kube-system"):
    return {"metadata": {"name": name, "namespace": namespace}, "spec": {"nodeName": node}}


# parse_rfc3339


def test_parse_rfc3339_utc():
    t = parse_rfc3339("2020-01-02T03:04:05Z")
    assert (t.year, t.month, t.day, t.hour, t.minute, t.second) == (2020, 1, 2, 3, 4, 5)
    assert t.utcoffset() == timedelta(0)


def test_parse_rfc3339_fraction_and_offset():
    t = parse_rfc3339("2020-01-02T03:04:05.123456789+02:00")
    assert t.microsecond == 123456
    assert t.utcoffset() == timedelta(hours=2)
    assert t.astimezone(timezone.utc).hour == 1


@pytest.mark.parametrize("text", ["2020-01-02", "yesterday", "2020-13-02T03:04:05Z"])
def test_parse_rfc3339_invalid(text):
    with pytest.raises(ValueError):
        parse_rfc3339(text)


# common_log_options


def test_common_log_options_defaults():
    lo = common_log_options()
    assert lo.portworx_namespace == "kube-system"
    assert lo.max_follow_concurrency == 5
    assert lo.apply_filters is False
    assert lo.pod_log_options.tail_lines is None
    assert lo.pod_log_options.limit_bytes is None
    assert lo.pod_log_options.since_seconds is None


def test_common_log_options_filters():
    lo = common_log_options(filter="vol1,vol2")
    assert lo.filters == ["vol1", "vol2"]
    assert lo.apply_filters is True


def test_max_log_requests_must_be_positive():
    with pytest.raises(ValueError, match="--max-log-requests"):
        common_log_options(max_log_requests=0)


def test_limit_bytes():
    assert common_log_options(limit_bytes=100).pod_log_options.limit_bytes == 100
    with pytest.raises(ValueError, match="--limit-bytes"):
        common_log_options(limit_bytes=-1)


def test_tail_lines():
    assert common_log_options(tail=0).pod_log_options.tail_lines == 0
    with pytest.raises(ValueError, match="TailLines"):
        common_log_options(tail=-5)


def test_follow_sets_default_tail():
    lo = common_log_options(follow=True)
    assert lo.pod_log_options.follow is True
    assert lo.pod_log_options.tail_lines == DEFAULT_TAIL_LINES
    assert common_log_options(follow=True, tail=3).pod_log_options.tail_lines == 3


def test_since_is_rounded_to_seconds():
    lo = common_log_options(since=timedelta(seconds=30, milliseconds=600))
    assert lo.pod_log_options.since_seconds == 31


def test_since_and_since_time_conflict():
    with pytest.raises(ValueError, match="at most one"):
        common_log_options(since=timedelta(seconds=5), since_time="2020-01-02T03:04:05Z")


def test_since_time_parsed():
    lo = common_log_options(since_time="2020-01-02T03:04:05Z")
    assert lo.pod_log_options.since_time == parse_rfc3339("2020-01-02T03:04:05Z")


def test_negative_since_rejected():
    with pytest.raises(ValueError, match="--since"):
        common_log_options(since=timedelta(seconds=-5))


def test_bad_since_time_rejected():
    with pytest.raises(ValueError):
        common_log_options(since_time="not a time")


# required_portworx_pods


def test_required_pods_all():
    pods = [_pod("px-a", "node1"), _pod("px-b", "node2")]
    result = required_portworx_pods(pods, [])
    assert [c.pod_name for c in result] == ["px-a", "px-b"]
    assert all(c.container == PORTWORX_CONTAINER_NAME for c in result)
    assert result[0].pod_namespace == "kube-system"


def test_required_pods_selected():
    pods = [_pod("px-a", "node1"), _pod("px-b", "node2"), _pod("px-c", "node3")]
    result = required_portworx_pods(pods, ["node3", "node1"])
    assert [c.pod_name for c in result] == ["px-a", "px-c"]


def test_required_pods_missing_node():
    with pytest.raises(ValueError, match="Node node9 not found"):
        required_portworx_pods([_pod("px-a", "node1")], ["node1", "node9"])


# write_line / write_source


def test_write_line_node_marker_and_prefix():
    out = io.BytesIO()
    write_line(b"pre ", b"@host1 started\n", LogOptions(), out)
    assert out.getvalue() == b"pre " + NODE_KEY + b"host1 started\n"


def test_write_line_filters():
    options = LogOptions(filters=["vol1"], apply_filters=True)
    out = io.BytesIO()
    write_line(b"", b"nothing here\n", options, out)
    write_line(b"", b"mounted vol1\n", options, out)
    assert out.getvalue() == b"mounted vol1\n"


def test_write_line_empty_data_writes_no_prefix():
    out = io.BytesIO()
    write_line(b"pre ", b"", LogOptions(), out)
    assert out.getvalue() == b""


def test_write_source_with_pod_info():
    out = io.BytesIO()
    write_source(_source("p1", b"a\nb"), LogOptions(show_pod_info=True), out)
    assert out.getvalue() == b"pod=p1 namespace=ns a\npod=p1 namespace=ns b"


def test_write_logs_sequential_order():
    out = io.BytesIO()
    write_logs([_source("p1", b"a\n"), _source("p2", b"b\n")], LogOptions(), out)
    assert out.getvalue() == b"a\nb\n"


def test_write_logs_propagates_error():
    with pytest.raises(RuntimeError, match="boom"):
        write_logs([_failing_source("p1", "boom")], LogOptions(), io.BytesIO())


# parallel / get_logs


def test_write_logs_parallel_merges_all_lines():
    sources = [_source("p1", b"a1\na2\n"), _source("p2", b"b1\nb2\n")]
    out = io.BytesIO()
    write_logs_parallel(sources, LogOptions(), out)
    assert sorted(out.getvalue().splitlines()) == [b"a1", b"a2", b"b1", b"b2"]


def test_write_logs_parallel_raises_error():
    sources = [_source("p1", b"a\n"), _failing_source("p2", "boom")]
    with pytest.raises(RuntimeError, match="boom"):
        write_logs_parallel(sources, LogOptions(), io.BytesIO())


def test_write_logs_parallel_ignores_error():
    sources = [_source("p1", b"a\n"), _failing_source("p2", "boom")]
    out = io.BytesIO()
    write_logs_parallel(sources, LogOptions(ignore_log_errors=True), out)
    assert sorted(out.getvalue().splitlines()) == [b"a", b"error: boom"]


def test_get_logs_no_sources(capsys):
    out = io.BytesIO()
    get_logs([], LogOptions(), out)
    assert capsys.readouterr().out == "No resources found\n"
    assert out.getvalue() == b""


def test_get_logs_follow_limit():
    options = common_log_options(follow=True, max_log_requests=2)
    sources = [_source(f"p{i}", b"x\n") for i in range(3)]
    with pytest.raises(ValueError, match="--max-log-requests"):
        get_logs(sources, options, io.BytesIO())


def test_get_logs_follow_parallel():
    options = common_log_options(follow=True, max_log_requests=2)
    out = io.BytesIO()
    get_logs([_source("p1", b"a\n"), _source("p2", b"b\n")], options, out)
    assert sorted(out.getvalue().splitlines()) == [b"a", b"b"]


def test_get_logs_without_follow_is_sequential():
    out = io.BytesIO()
    get_logs([_source("p1", b"a\n"), _source("p2", b"b\n")], LogOptions(), out)
    assert out.getvalue() == b"a\nb\n"