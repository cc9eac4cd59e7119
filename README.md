# cpushaper

`cpushaper` is a library with two building blocks for keeping a machine's
CPU utilisation at a chosen level. It has no dependencies outside the
standard library.

- `cpushaper.shape` runs a pool of worker threads. Each worker splits its
  time into short quanta and spends a set share of every quantum busy.
- `cpushaper.oci` queries a Monitoring service for the newest
  95th-percentile `CpuUtilization` datapoint of a compute instance.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Shaping CPU load

```python
import threading
from cpushaper.shape import Pool

pool = Pool(workers=2, quantum=0.002)   # the quantum is in seconds
stop = threading.Event()
threads = pool.start(stop)              # one daemon thread per worker

pool.set_target(0.3)                    # busy 30% of each quantum
...
stop.set()                              # the workers return
for thread in threads:
    thread.join()
```

- The worker count must be positive, or `Pool` raises `ValueError`.
- A quantum of zero or less becomes `DEFAULT_QUANTUM` (one millisecond).
  Any other quantum is held between `MIN_QUANTUM` (1 ms) and
  `MAX_QUANTUM` (5 ms).
- `Pool.workers`, `Pool.quantum` and `Pool.target` report the settings.
- `set_target` holds its value to `[0, 1]`; NaN counts as `0`. Workers
  read the target on every tick, so it can change while they run.
- On each tick a worker is busy for `target × quantum` and sleeps for the
  rest of the quantum. With a target of zero it only yields.
- `set_worker_start_error_handler(handler)` sets a callable that receives
  any exception the worker start hook raises. `None` resets it to a
  handler that ignores the error.
- `configure_rootful_hooks(pool, rootful)` sets the start hook of each
  worker to `try_sched_idle` when `rootful` is true, and does nothing
  otherwise or when `pool` is `None`.
- `try_sched_idle()` moves the calling thread to the `SCHED_IDLE`
  scheduling class and returns `True`. Where the platform has no
  `SCHED_IDLE` support it returns `False`. When the kernel refuses the
  change it raises `OSError`, which a pool passes to its error handler.
- `busy_wait(duration)` spins for the given number of seconds, yielding to
  other threads while it spins.

## Querying CPU utilisation

```python
from cpushaper.oci import Client, NoMetricsDataError

client = Client(metrics=my_summarizer, compartment_id="ocid1.compartment.oc1..example")
try:
    value = client.query_p95_cpu("ocid1.instance.oc1..example", last_7d=True)
except NoMetricsDataError:
    value = None
```

- `Client(metrics, compartment_id, clock=None)` raises `ValueError` when
  `metrics` is `None` or the compartment ID is empty. `clock` returns the
  current time and defaults to UTC now.
- `query_p95_cpu(instance_ocid, last_7d=False)` looks at the last 24 hours,
  or the last seven days when `last_7d` is true, ending at the current
  second. It follows page tokens until no more pages come back and returns
  the value of the newest datapoint, rounded to single precision. It raises
  `NoMetricsDataError` when there is no datapoint, `ValueError` for an
  empty instance OCID, and `RuntimeError` (message starting
  `summarize metrics:`) when a page request fails.
- `metrics` is any object with a `summarize_metrics_data(request, page)`
  method that returns a `SummarizeResponse` and the next page token.
- Helpers used by the client are public too: `compute_window`,
  `build_summarize_request`, `fold_metric_streams`, `normalize_page_token`
  and `escape_dimension_value`.

### Talking to the service

`SdkMonitoringClient(caller)` provides `summarize_metrics_data` on top of an
API caller: an object with `call(ApiRequest) -> ApiResponse`. It sends a
`POST` to `/metrics/actions/summarizeMetricsData` with the compartment ID
and page token as query parameters and a JSON body, decodes the JSON array
of metric streams into `MetricData` and `AggregatedDatapoint` values, and
reads the next page token from the `opc-next-page` header. Call failures
and undecodable responses raise `RuntimeError`.

`new_instance_principal_client(compartment_id, region, provider_factory,
client_factory)` builds a `Client` from a credentials provider factory and
a factory that turns the provider into an API caller. A non-blank region is
passed to the caller's `set_region`.

`StaticMetricsClient(value)` is a `MetricsClient` whose
`query_p95_cpu(resource_id)` always returns `value`; it is useful for
wiring and for tests.

## What this package does not do

- It has no command-line program and no long-running service: it does not
  read configuration, expose metrics over HTTP, or decide the target on its
  own. A caller picks the target and calls `Pool.set_target`.
- It does not sign or send HTTP requests itself. The API caller given to
  `SdkMonitoringClient`, and the provider and client factories given to
  `new_instance_principal_client`, must be supplied by the caller.