"""CPU utilisation queries against the Oracle Cloud Infrastructure Monitoring service."""

from __future__ import annotations

import json
import math
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Tuple

_MONITORING_NAMESPACE = "oci_computeagent"
_METRIC_QUERY_TEMPLATE = 'CpuUtilization[1m]{{resourceId = "{}"}}.percentile(0.95)'
_MAX_ONE_MINUTE_WINDOW_HOURS = 7 * 24
_SUMMARIZE_PATH = "/metrics/actions/summarizeMetricsData"
_NEXT_PAGE_HEADER = "opc-next-page"

Latest = Optional[Tuple[datetime, float]]


class NoMetricsDataError(LookupError):
    """The Monitoring service returned no CpuUtilization datapoints."""

    def __init__(self, message: str = "oci: cpu utilization metrics unavailable") -> None:
        super().__init__(message)


class MetricsClient(ABC):
    """Minimal Monitoring surface needed by an adaptive controller."""

    @abstractmethod
    def query_p95_cpu(self, resource_id: str) -> float:
        """Return the P95 CPU utilisation for the given resource."""


class StaticMetricsClient(MetricsClient):
    """A metrics client that always reports the same value."""

    def __init__(self, value: float) -> None:
        self.value = value

    def query_p95_cpu(self, resource_id: str) -> float:
        return self.value


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValueError(f"invalid timestamp {raw!r}")
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class AggregatedDatapoint:
    """One aggregated sample; either field may be missing."""

    timestamp: Optional[datetime] = None
    value: Optional[float] = None

    @classmethod
    def from_json(cls, payload: Any) -> "AggregatedDatapoint":
        if not isinstance(payload, dict):
            raise ValueError("datapoint must be a JSON object")
        value = payload.get("value")
        if value is not None and not isinstance(value, (int, float)):
            raise ValueError(f"invalid datapoint value {value!r}")
        return cls(
            timestamp=_parse_timestamp(payload.get("timestamp")),
            value=None if value is None else float(value),
        )


@dataclass
class MetricData:
    """A metric stream with its aggregated datapoints."""

    namespace: Optional[str] = None
    compartment_id: Optional[str] = None
    name: Optional[str] = None
    dimensions: dict = field(default_factory=dict)
    aggregated_datapoints: list = field(default_factory=list)

    @classmethod
    def from_json(cls, payload: Any) -> "MetricData":
        if not isinstance(payload, dict):
            raise ValueError("metric data must be a JSON object")
        dimensions = payload.get("dimensions") or {}
        if not isinstance(dimensions, dict):
            raise ValueError("dimensions must be a JSON object")
        datapoints = payload.get("aggregatedDatapoints") or []
        if not isinstance(datapoints, list):
            raise ValueError("aggregatedDatapoints must be a JSON array")
        return cls(
            namespace=payload.get("namespace"),
            compartment_id=payload.get("compartmentId"),
            name=payload.get("name"),
            dimensions=dict(dimensions),
            aggregated_datapoints=[AggregatedDatapoint.from_json(item) for item in datapoints],
        )


@dataclass
class SummarizeRequest:
    """Parameters of a SummarizeMetricsData call."""

    compartment_id: str
    namespace: str
    query: str
    start_time: datetime
    end_time: datetime

    def details(self) -> dict:
        """The JSON body sent to the service."""
        return {
            "namespace": self.namespace,
            "query": self.query,
            "startTime": _format_timestamp(self.start_time),
            "endTime": _format_timestamp(self.end_time),
        }


@dataclass
class SummarizeResponse:
    """Metric streams returned by one SummarizeMetricsData page."""

    items: list = field(default_factory=list)


@dataclass
class ApiRequest:
    """An HTTP request addressed to the Monitoring API."""

    method: str
    path: str
    query: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)
    body: bytes = b""


@dataclass
class ApiResponse:
    """An HTTP response from the Monitoring API."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str:
        wanted = name.lower()
        return next((value for key, value in self.headers.items() if key.lower() == wanted), "")


class _ApiCaller(Protocol):
    def call(self, request: ApiRequest) -> ApiResponse: ...

    def set_region(self, region: str) -> None: ...


class _SummarizeSource(Protocol):
    def summarize_metrics_data(
        self, request: SummarizeRequest, page: Optional[str]
    ) -> Tuple[SummarizeResponse, Optional[str]]: ...


class SdkMonitoringClient:
    """Issues SummarizeMetricsData calls through a signed API caller."""

    def __init__(self, client: _ApiCaller) -> None:
        self.client = client

    def summarize_metrics_data(
        self, request: SummarizeRequest, page: Optional[str]
    ) -> Tuple[SummarizeResponse, Optional[str]]:
        api_request = ApiRequest(
            method="POST",
            path=_SUMMARIZE_PATH,
            query={"compartmentId": request.compartment_id},
            headers={"Content-Type": "application/json"},
            body=json.dumps(request.details()).encode("utf-8"),
        )
        token = normalize_page_token(page)
        if token is not None:
            api_request.query["page"] = token

        try:
            api_response = self.client.call(api_request)
        except Exception as err:
            raise RuntimeError(
                f"execute summarize metrics request: Monitoring SummarizeMetricsData: {err}"
            ) from err

        try:
            payload = json.loads(api_response.body)
            if not isinstance(payload, list):
                raise ValueError("expected a JSON array of metric data")
            items = [MetricData.from_json(item) for item in payload]
        except (ValueError, TypeError) as err:
            raise RuntimeError(f"decode summarize metrics response: {err}") from err

        return SummarizeResponse(items=items), normalize_page_token(
            api_response.header(_NEXT_PAGE_HEADER)
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _float32(value: float) -> float:
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


class Client:
    """Queries Monitoring metrics for compute instances within a compartment."""

    def __init__(
        self,
        metrics: _SummarizeSource,
        compartment_id: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if metrics is None:
            raise ValueError("oci: metrics client is required")
        if not compartment_id:
            raise ValueError("oci: compartment ID is required")
        self.metrics = metrics
        self.compartment_id = compartment_id
        self.clock = clock if clock is not None else _utc_now

    def query_p95_cpu(self, instance_ocid: str, last_7d: bool = False) -> float:
        """Return the most recent P95 CpuUtilization datapoint for the instance.

        Raises NoMetricsDataError when the service yields no datapoints.
        """
        if not instance_ocid:
            raise ValueError("oci: instance OCID is required")
        start, end = compute_window(_to_utc(self.clock()), last_7d)
        request = build_summarize_request(self.compartment_id, instance_ocid, start, end)
        value = self.collect_latest_datapoint(request)
        if value is None:
            raise NoMetricsDataError()
        return value

    def collect_latest_datapoint(self, request: SummarizeRequest) -> Optional[float]:
        """Walk every page and return the newest datapoint value, or None."""
        latest: Latest = None
        page: Optional[str] = None
        while True:
            try:
                response, next_page = self.metrics.summarize_metrics_data(request, page)
            except Exception as err:
                raise RuntimeError(f"summarize metrics: {err}") from err
            latest = fold_metric_streams(response.items, latest)
            page = normalize_page_token(next_page)
            if page is None:
                break
        return None if latest is None else latest[1]


def compute_window(now: datetime, last_7d: bool) -> Tuple[datetime, datetime]:
    """Return the (start, end) query window ending at now, truncated to seconds."""
    end = now.replace(microsecond=0)
    max_window = timedelta(hours=_MAX_ONE_MINUTE_WINDOW_HOURS)
    start = end - (max_window if last_7d else timedelta(hours=24))
    if end - start > max_window:
        start = end - max_window
    return start, end


def build_summarize_request(
    compartment_id: str, instance_ocid: str, start: datetime, end: datetime
) -> SummarizeRequest:
    """Build the P95 CpuUtilization request for one instance."""
    return SummarizeRequest(
        compartment_id=compartment_id,
        namespace=_MONITORING_NAMESPACE,
        query=_METRIC_QUERY_TEMPLATE.format(escape_dimension_value(instance_ocid)),
        start_time=start,
        end_time=end,
    )


def fold_metric_streams(streams: Iterable[MetricData], latest: Latest) -> Latest:
    """Fold datapoints into the newest (timestamp, value) pair seen so far."""
    for stream in streams:
        for datapoint in stream.aggregated_datapoints:
            if datapoint.value is None or datapoint.timestamp is None:
                continue
            if latest is None or datapoint.timestamp > latest[0]:
                latest = (datapoint.timestamp, _float32(datapoint.value))
    return latest


def normalize_page_token(token: Optional[str]) -> Optional[str]:
    """Trim a page token, mapping empty or blank tokens to None."""
    if token is None:
        return None
    trimmed = token.strip()
    return trimmed or None


def escape_dimension_value(value: str) -> str:
    """Escape double quotes for use inside an MQL dimension filter."""
    return value.replace('"', '\\"')


def new_instance_principal_client(
    compartment_id: str,
    region: str,
    provider_factory: Callable[[], Any],
    client_factory: Callable[[Any], _ApiCaller],
) -> Client:
    """Build a Client from an instance principal provider and an API caller factory."""
    if not compartment_id:
        raise ValueError("oci: compartment ID is required")
    try:
        provider = provider_factory()
    except Exception as err:
        raise RuntimeError(f"build instance principal provider: {err}") from err
    try:
        caller = client_factory(provider)
    except Exception as err:
        raise RuntimeError(f"create monitoring client: {err}") from err
    trimmed_region = region.strip()
    if trimmed_region:
        caller.set_region(trimmed_region)
    return Client(SdkMonitoringClient(caller), compartment_id, _utc_now)