# pxctool

Building blocks for a Portworx command-line client: snapshot schedules,
protobuf time conversion, component discovery, a `kubectl port-forward`
tunnel and pod log streaming.

Install with `pip install .`; the tests need the `test` extra
(`pip install .[test]`) and run with `pytest`.

## Modules

| Module                 | Purpose |
|------------------------|---------|
| `pxctool.sched`        | Schedule intervals (periodic, daily, weekly, monthly), retain counts and policy tags, in YAML or short `type=value` form. |
| `pxctool.prototime`    | Conversion between `datetime`/`timedelta` and protobuf `Timestamp`/`Duration`. |
| `pxctool.commander`    | A registry of setup callbacks: all variable initializers run before all command initializers. |
| `pxctool.plugin`       | Discovery of `pxc-*` executables in a list of directories, with warnings. |
| `pxctool.portforward`  | `KubectlPortForwarder`, a tunnel started with `kubectl port-forward`, and parsing of the endpoint it reports. |
| `pxctool.logs`         | Validation of log options, selection of Portworx pods by node, and filtered writing of log streams, one after another or in parallel. |

## Schedules

The short forms are `daily=[@]HH:MM[,keep]`, `weekly=weekday[@HH:MM][,keep]`,
`monthly=day[@HH:MM][,keep]` and `periodic=minutes[,keep]`. A schedule may also
be a YAML list of specs with the keys `freq`, `period`, `weekday`, `day`,
`hour`, `minute` and `retain`. Several schedules and a `policy=name1,name2`
tag can be joined with `;`. Invalid input raises `ValueError`.

```python
from pxctool.sched import parse_schedule, parse_schedule_and_policies, schedule_summary

intervals = parse_schedule("daily=13:45,3")
print(schedule_summary(intervals, None))
# daily @13:45,keep last 3

intervals, policies = parse_schedule_and_policies("weekly=monday@08:00;policy=gold")
print(schedule_summary(intervals, policies))
# policy=gold;weekly Monday@08:00
```

Each parsed entry is a `RetainInterval` wrapping a `Periodic`, `Daily`,
`Weekly` or `Monthly` interval; `next_after(t)` gives the next trigger time.
`schedule_string` and `schedule_string_retain_inv` write schedules back as
YAML followed by any policy tags. `setup_intv_with_defaults` fills in the
retain count where it is zero: 7 for daily, 5 for weekly and periodic, 12 for
monthly. `speed_up()` makes every retained interval fire one minute after
the given time.

`new_policy_tags`, `new_policy_tags_from_slice` and `parse_policy_tags` build
`PolicyTags`; `same_policy_tags` compares two sets of names in any order.

## Protobuf time

```python
from datetime import datetime, timezone
from pxctool.prototime import time_to_timestamp, timestamp_to_time, timestamp_less

ts = time_to_timestamp(datetime(2020, 1, 1, tzinfo=timezone.utc))
assert timestamp_to_time(ts) == datetime(2020, 1, 1, tzinfo=timezone.utc)
assert timestamp_less(None, ts)
```

Naive datetimes are read as local time. `timestamp_to_time(None)` and
`duration_from_proto(None)` give the epoch and a zero duration. Values are
kept to microsecond precision.

## Components

`PluginLister.complete(find_command, config_dir)` searches the `PATH`
directories plus `<config_dir>/bin`. `get_list()` returns a `Component` for
every non-directory file whose name starts with `pxc-`, with warnings when it
is not executable, is shadowed by an earlier file of the same name, or when
`find_command` reports an existing command of that name.
`get_sorted_root_components()` returns the sorted names without the `pxc-`
prefix, leaving out names that still contain a dash.

## Port forwarding

```python
from pxctool.portforward import KubectlPortForwarder, get_endpoint_from_kubectl_output

get_endpoint_from_kubectl_output(" Forwarding from 127.0.0.1:12345 --> 9020")
# 'localhost:12345'

tunnel = KubectlPortForwarder()   # svc/portworx-service in kube-system, port 9020
tunnel.start()
print(tunnel.endpoint())
tunnel.stop()
```

`start()` runs `kubectl` (which must be on the `PATH`) and raises
`PortForwardError` if it cannot be run, prints nothing, or reports neither
`127.0.0.1:` nor `[::1]:`. While running from the main thread, Ctrl-C stops
the tunnel before passing the interrupt on.

## Logs

`common_log_options(...)` validates the log settings (request concurrency,
byte limit, tail, `since` versus `since_time`) and returns a `LogOptions`;
following without a tail limits the output to the last 10 lines.
`required_portworx_pods(all_pods, node_names)` turns pod mappings into
`ContainerInfo` entries for the `portworx` container and raises `ValueError`
if a requested node has none.

`get_logs(sources, options, out)` writes each `LogSource` to the binary
stream `out`, keeping only lines that contain one of the filters when
filtering is on, prefixing `pod=<name> namespace=<namespace> ` when
`show_pod_info` is set, and replacing a leading `@` with `node=`. When
following more than one source the streams are read in parallel, up to
`max_follow_concurrency`. With no sources it prints `No resources found`.

## What it does not do

The package has no command-line program of its own and no Kubernetes API
client: pods are passed in as plain mappings, and log streams as callables
that open a binary file. It does not read or write a client configuration
file or kubeconfig, and it does not connect to the Portworx SDK.