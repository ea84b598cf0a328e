"""
Datadog MCP server: metrics, logs, dashboards, monitors, hosts and APM.

The REST API answers in snake_case; each tool maps the fields it exposes
into the camelCase shape callers see. Timestamps are POSIX seconds except
``search_logs``, which takes Datadog time strings ("now-15m", ISO-8601).

Launch:
    DATADOG_API_KEY=... DATADOG_APP_KEY=... python -m mcp_adapters.servers.datadog
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.datadog import DatadogBackend, DatadogConfig, SPAN_METRICS, now_epoch
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import ToolParams
from mcp_adapters.server import ToolHandler, ToolServer


# ── Input schemas ────────────────────────────────────────

class QueryMetricsParams(ToolParams):
    query: str = Field(min_length=1, description="Metric query, e.g. avg:system.cpu.user{*}")
    from_: int = Field(alias="from", gt=0, description="Start (POSIX seconds)")
    to: int = Field(gt=0, description="End (POSIX seconds)")


class LogTimeRange(ToolParams):
    from_: str = Field(alias="from", description="Start time, e.g. now-15m")
    to: str = Field(description="End time, e.g. now")


class SearchLogsParams(ToolParams):
    query: str = Field(min_length=1, description="Log search query")
    time: LogTimeRange
    limit: int = Field(50, ge=1, le=1000)


class ListDashboardsParams(ToolParams):
    count: int = Field(25, ge=1, le=100)
    start: int = Field(0, ge=0)


class ListMonitorsParams(ToolParams):
    group_states: list[str] | None = Field(None, description="e.g. ['alert', 'warn']")
    name: str | None = None
    tags: list[str] | None = None
    monitor_tags: list[str] | None = None
    with_downtimes: bool = True


class TimeWindowParams(ToolParams):
    start: int = Field(gt=0, description="Start (POSIX seconds)")
    end: int = Field(gt=0, description="End (POSIX seconds)")


class ServiceMapParams(TimeWindowParams):
    env: str = Field(min_length=1, description="Environment")


class ListHostsParams(ToolParams):
    filter: str | None = Field(None, description="Host name or tag filter")
    sort_field: Literal["status", "name", "checkTime", "triggerTime"] = "name"
    sort_dir: Literal["asc", "desc"] = "asc"
    start: int = Field(0, ge=0)
    count: int = Field(100, ge=1, le=1000)


class SearchTracesParams(TimeWindowParams):
    query: str = "*"
    limit: int = Field(50, ge=1, le=1000)


class ListServicesParams(TimeWindowParams):
    env: str | None = None


class SpansMetricsParams(TimeWindowParams):
    service: str | None = None
    operation: str | None = None
    resource: str | None = None
    env: str | None = None


# ── Reshaping ────────────────────────────────────────────

def format_series(series: dict, *, full: bool = True) -> dict:
    shaped = {
        "metric": series.get("metric"),
        "displayName": series.get("display_name"),
        "pointlist": series.get("pointlist"),
    }
    if full:
        shaped["unit"] = series.get("unit")
        shaped["length"] = series.get("length")
    return shaped


def format_log(entry: dict) -> dict:
    attributes = entry.get("attributes") or {}
    return {
        "id": entry.get("id"),
        "type": entry.get("type"),
        "attributes": {
            "timestamp": attributes.get("timestamp"),
            "host": attributes.get("host"),
            "service": attributes.get("service"),
            "message": attributes.get("message"),
            "status": attributes.get("status"),
            "tags": attributes.get("tags"),
        },
    }


def parse_scope(scope: str | None) -> dict[str, str]:
    """'service:web,env:prod' → {'service': 'web', 'env': 'prod'}"""
    tags = {}
    for part in (scope or "").split(","):
        key, sep, value = part.strip().partition(":")
        if sep:
            tags[key] = value
    return tags


# ── Tools ────────────────────────────────────────────────

class DatadogTool(ToolHandler):
    def __init__(self, datadog: DatadogBackend):
        self.datadog = datadog


class QueryMetricsTool(DatadogTool):
    name = "query_metrics"
    title = "Query Datadog Metrics"
    description = "Execute a metrics query to retrieve time series data from Datadog"
    params_model = QueryMetricsParams
    context_fields = ("query",)

    async def handle(self, params: QueryMetricsParams) -> dict:
        result = await self.datadog.query_metrics(params.query, params.from_, params.to)
        return {
            "status": result.get("status"),
            "series": [format_series(s) for s in result.get("series") or []],
            "fromDate": result.get("from_date"),
            "toDate": result.get("to_date"),
            "query": result.get("query"),
            "message": result.get("message"),
        }


class SearchLogsTool(DatadogTool):
    name = "search_logs"
    title = "Search Datadog Logs"
    description = "Search and retrieve logs from Datadog based on query criteria"
    params_model = SearchLogsParams
    context_fields = ("query",)

    async def handle(self, params: SearchLogsParams) -> dict:
        result = await self.datadog.search_logs(params.query, params.time.from_, params.time.to, params.limit)
        return {
            "data": [format_log(entry) for entry in result.get("data") or []],
            "meta": result.get("meta"),
            "links": result.get("links"),
        }


class ListDashboardsTool(DatadogTool):
    name = "list_dashboards"
    title = "List Datadog Dashboards"
    description = "Retrieve a list of dashboards from your Datadog account"
    params_model = ListDashboardsParams

    async def handle(self, params: ListDashboardsParams) -> list[dict]:
        dashboards = await self.datadog.list_dashboards(params.count, params.start)
        return [
            {
                "id": d.get("id") or "unknown",
                "title": d.get("title") or "Untitled Dashboard",
                "description": d.get("description") or "",
                "authorHandle": d.get("author_handle") or "unknown",
                "url": d.get("url") or "",
                "layoutType": d.get("layout_type") or "ordered",
                "isReadOnly": bool(d.get("is_read_only")),
            }
            for d in dashboards
        ]


class ListMonitorsTool(DatadogTool):
    name = "list_monitors"
    title = "List Datadog Monitors"
    description = "Retrieve a list of monitors from your Datadog account"
    params_model = ListMonitorsParams

    async def handle(self, params: ListMonitorsParams) -> list[dict]:
        monitors = await self.datadog.list_monitors(
            group_states=params.group_states,
            name=params.name,
            tags=params.tags,
            monitor_tags=params.monitor_tags,
            with_downtimes=params.with_downtimes,
        )
        return [
            {
                "id": m.get("id"),
                "name": m.get("name"),
                "type": m.get("type"),
                "query": m.get("query"),
                "message": m.get("message"),
                "tags": m.get("tags"),
                "options": m.get("options"),
                "overallState": m.get("overall_state"),
                "created": m.get("created"),
                "modified": m.get("modified"),
            }
            for m in monitors
        ]


class GetServiceMapTool(DatadogTool):
    name = "get_service_map"
    title = "Get Datadog Service Map"
    description = "Retrieve service map data for APM services"
    params_model = ServiceMapParams
    context_fields = ("env",)

    async def handle(self, params: ServiceMapParams) -> dict:
        return {
            "message": "Service map functionality requires APM setup and is not available in this implementation",
            "env": params.env,
            "timeRange": {"start": params.start, "end": params.end},
        }


class ListHostsTool(DatadogTool):
    name = "list_hosts"
    title = "List Infrastructure Hosts"
    description = "Retrieve a list of hosts from your Datadog infrastructure monitoring"
    params_model = ListHostsParams
    context_fields = ("filter",)

    async def handle(self, params: ListHostsParams) -> dict:
        result = await self.datadog.list_hosts(
            filter=params.filter,
            sort_field=params.sort_field,
            sort_dir=params.sort_dir,
            start=params.start,
            count=params.count,
        )
        return {
            "hostList": [
                {
                    "aliases": h.get("aliases"),
                    "apps": h.get("apps"),
                    "awsName": h.get("aws_name"),
                    "hostName": h.get("host_name"),
                    "id": h.get("id"),
                    "isMuted": h.get("is_muted"),
                    "lastReportedTime": h.get("last_reported_time"),
                    "meta": h.get("meta"),
                    "metrics": h.get("metrics"),
                    "muteTimeout": h.get("mute_timeout"),
                    "name": h.get("name"),
                    "sources": h.get("sources"),
                    "tagsBySource": h.get("tags_by_source"),
                    "up": h.get("up"),
                }
                for h in result.get("host_list") or []
            ],
            "totalMatching": result.get("total_matching"),
            "totalReturned": result.get("total_returned"),
        }


class GetActiveMetricsTool(DatadogTool):
    name = "get_active_metrics"
    title = "Get Active Metrics"
    description = "Retrieve a list of actively reporting metrics from the last hour"

    async def handle(self, params) -> dict:
        to_ts = now_epoch()
        from_ts = to_ts - 3600
        result = await self.datadog.get_active_metrics(from_ts)
        return {
            "availableMetrics": result.get("metrics") or [],
            "timeRange": {"from": from_ts, "to": to_ts},
        }


class SearchTracesTool(DatadogTool):
    name = "search_traces"
    title = "Search APM Traces"
    description = "Search for traces in Datadog APM with filtering capabilities"
    params_model = SearchTracesParams
    context_fields = ("query",)

    async def handle(self, params: SearchTracesParams) -> dict:
        result = await self.datadog.search_traces(params.query, params.start, params.end, params.limit)
        traces = []
        for entry in result.get("data") or []:
            attributes = entry.get("attributes") or {}
            traces.append({
                "id": entry.get("id"),
                "timestamp": attributes.get("timestamp"),
                "service": attributes.get("service"),
                "message": attributes.get("message"),
                "status": attributes.get("status"),
                "host": attributes.get("host"),
                "tags": attributes.get("tags"),
            })
        return {
            "traces": traces,
            "meta": result.get("meta"),
            "query_used": params.query,
            "time_range": {"start": params.start, "end": params.end},
        }


class ListServicesTool(DatadogTool):
    name = "list_services"
    title = "List APM Services"
    description = "List services monitored by Datadog APM"
    params_model = ListServicesParams
    context_fields = ("env",)

    async def handle(self, params: ListServicesParams) -> dict:
        result = await self.datadog.list_services(params.start, params.end, params.env)

        by_service: dict[str, list[Any]] = {}
        for series in result.get("series") or []:
            service = parse_scope(series.get("scope")).get("service")
            if service:
                by_service.setdefault(service, []).append(series)

        return {
            "services": [
                {"service": service, "env": params.env or "all", "metric_data": series}
                for service, series in by_service.items()
            ],
            "query_info": {
                "env": params.env,
                "time_range": {"start": params.start, "end": params.end},
            },
        }


class GetSpansMetricsTool(DatadogTool):
    name = "get_spans_metrics"
    title = "Get Spans Metrics"
    description = "Get metrics for spans with optional filtering by service, operation, resource, or environment"
    params_model = SpansMetricsParams
    context_fields = ("service", "env")

    async def handle(self, params: SpansMetricsParams) -> dict:
        results = await self.datadog.get_spans_metrics(params.start, params.end, params.service, params.env)
        return {
            "metrics": {
                key: {
                    "query": results[key].get("query") or SPAN_METRICS[key],
                    "series": [format_series(s, full=False) for s in results[key].get("series") or []],
                }
                for key in SPAN_METRICS
            },
            "query_info": {
                "service": params.service,
                "operation": params.operation,
                "resource": params.resource,
                "env": params.env,
            },
        }


TOOLS = (
    QueryMetricsTool,
    SearchLogsTool,
    ListDashboardsTool,
    ListMonitorsTool,
    GetServiceMapTool,
    ListHostsTool,
    GetActiveMetricsTool,
    SearchTracesTool,
    ListServicesTool,
    GetSpansMetricsTool,
)


def build_server(backend: DatadogBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("datadog-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: DatadogBackend(DatadogConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
