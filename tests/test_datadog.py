import asyncio
import json

import httpx
import pytest

from mcp_adapters.backends.datadog import DatadogBackend, DatadogConfig
from mcp_adapters.errors import ConfigError
from mcp_adapters.servers.datadog import build_server, parse_scope

CONFIG = DatadogConfig(api_key="api-key", app_key="app-key")


def make_backend(handler) -> tuple[DatadogBackend, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        base_url=CONFIG.base_url,
        headers={"DD-API-KEY": CONFIG.api_key, "DD-APPLICATION-KEY": CONFIG.app_key},
        transport=httpx.MockTransport(record),
    )
    return DatadogBackend(CONFIG, client=client), seen


def call_tool(handler, name, arguments):
    backend, seen = make_backend(handler)
    payload = asyncio.run(build_server(backend).dispatch(name, arguments)).payload()
    return payload, seen


def test_config_requires_keys(monkeypatch):
    monkeypatch.delenv("DATADOG_API_KEY", raising=False)
    monkeypatch.setenv("DATADOG_APP_KEY", "app")
    with pytest.raises(ConfigError):
        DatadogConfig.from_env()


def test_site_selects_api_host():
    assert DatadogConfig(api_key="a", app_key="b", site="datadoghq.eu").base_url == "https://api.datadoghq.eu"


def test_registers_ten_tools():
    backend, _ = make_backend(lambda request: httpx.Response(200, json={}))
    assert len(build_server(backend).tool_names) == 10


def test_query_metrics():
    def handler(request):
        assert request.url.path == "/api/v1/query"
        return httpx.Response(200, json={
            "status": "ok",
            "series": [{
                "metric": "system.cpu.user",
                "display_name": "system.cpu.user",
                "pointlist": [[1700000000000, 12.5]],
                "unit": [{"name": "percent"}],
                "length": 1,
            }],
            "from_date": 1700000000000,
            "to_date": 1700003600000,
            "query": "avg:system.cpu.user{*}",
        })

    payload, seen = call_tool(handler, "query_metrics", {
        "query": "avg:system.cpu.user{*}", "from": 1700000000, "to": 1700003600,
    })

    assert payload["status"] == "ok"
    assert payload["series"][0]["displayName"] == "system.cpu.user"
    assert payload["series"][0]["length"] == 1
    assert payload["fromDate"] == 1700000000000
    params = seen[0].url.params
    assert params["from"] == "1700000000"
    assert params["to"] == "1700003600"
    assert seen[0].headers["DD-API-KEY"] == "api-key"


def test_query_metrics_http_error_is_correlated():
    def handler(request):
        return httpx.Response(403, json={"errors": ["Forbidden"]})

    payload, _ = call_tool(handler, "query_metrics", {"query": "avg:x{*}", "from": 1, "to": 2})

    assert payload == {
        "error": "Datadog Error: Failed to query metrics: HTTP 403: Forbidden",
        "code": "METRICS_QUERY_FAILED",
        "query": "avg:x{*}",
    }


def test_network_error():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    payload, _ = call_tool(handler, "list_dashboards", {})

    assert payload["error"].startswith("Datadog Error: Failed to list dashboards:")
    assert payload["code"] == "NETWORK_ERROR"


def test_search_logs_posts_filter():
    def handler(request):
        return httpx.Response(200, json={
            "data": [{
                "id": "AAA",
                "type": "log",
                "attributes": {"timestamp": "2024-05-01T12:00:00Z", "service": "web", "message": "boom", "status": "error"},
            }],
            "meta": {"page": {}},
        })

    payload, seen = call_tool(handler, "search_logs", {
        "query": "status:error", "time": {"from": "now-15m", "to": "now"}, "limit": 10,
    })

    body = json.loads(seen[0].content)
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/v2/logs/events/search"
    assert body == {
        "filter": {"query": "status:error", "from": "now-15m", "to": "now"},
        "page": {"limit": 10},
        "sort": "timestamp",
    }
    assert payload["data"][0]["attributes"]["message"] == "boom"
    assert payload["data"][0]["attributes"]["host"] is None


def test_search_logs_requires_time_range():
    payload, seen = call_tool(lambda request: httpx.Response(200, json={}), "search_logs", {"query": "*"})
    assert payload["error"].startswith("Invalid parameters:")
    assert seen == []


def test_list_dashboards_fills_defaults():
    def handler(request):
        return httpx.Response(200, json={"dashboards": [
            {"id": "abc-123", "title": "Web", "author_handle": "ops@example.com", "layout_type": "free", "is_read_only": True},
            {},
        ]})

    payload, seen = call_tool(handler, "list_dashboards", {"count": 5})

    assert payload[0]["layoutType"] == "free"
    assert payload[0]["isReadOnly"] is True
    assert payload[1] == {
        "id": "unknown",
        "title": "Untitled Dashboard",
        "description": "",
        "authorHandle": "unknown",
        "url": "",
        "layoutType": "ordered",
        "isReadOnly": False,
    }
    assert seen[0].url.params["count"] == "5"


def test_list_monitors_joins_filters():
    def handler(request):
        return httpx.Response(200, json=[{"id": 1, "name": "CPU", "overall_state": "Alert"}])

    payload, seen = call_tool(handler, "list_monitors", {"groupStates": ["alert", "warn"], "tags": ["env:prod"]})

    assert payload[0]["overallState"] == "Alert"
    params = seen[0].url.params
    assert params["group_states"] == "alert,warn"
    assert params["tags"] == "env:prod"
    assert params["with_downtimes"] == "true"
    assert "name" not in params


def test_service_map_is_static():
    payload, seen = call_tool(lambda request: httpx.Response(500), "get_service_map", {"env": "prod", "start": 1, "end": 2})
    assert payload["env"] == "prod"
    assert payload["timeRange"] == {"start": 1, "end": 2}
    assert seen == []


def test_list_hosts():
    def handler(request):
        return httpx.Response(200, json={
            "host_list": [{"host_name": "web-1", "is_muted": False, "up": True}],
            "total_matching": 1,
            "total_returned": 1,
        })

    payload, seen = call_tool(handler, "list_hosts", {"sortField": "status", "sortDir": "desc"})

    assert payload["hostList"][0]["hostName"] == "web-1"
    assert payload["totalMatching"] == 1
    assert seen[0].url.params["sort_field"] == "status"


def test_list_hosts_rejects_unknown_sort_field():
    payload, _ = call_tool(lambda request: httpx.Response(200, json={}), "list_hosts", {"sortField": "cpu"})
    assert payload["error"].startswith("Invalid parameters:")


def test_active_metrics_uses_last_hour():
    payload, seen = call_tool(
        lambda request: httpx.Response(200, json={"metrics": ["system.cpu.user"]}), "get_active_metrics", {}
    )
    assert payload["availableMetrics"] == ["system.cpu.user"]
    assert payload["timeRange"]["to"] - payload["timeRange"]["from"] == 3600
    assert seen[0].url.params["from"] == str(payload["timeRange"]["from"])


def test_search_traces_scopes_to_top_level_spans():
    payload, seen = call_tool(
        lambda request: httpx.Response(200, json={"data": [{"id": "t1", "attributes": {"service": "web"}}]}),
        "search_traces",
        {"query": "service:web", "start": 1700000000, "end": 1700003600},
    )

    body = json.loads(seen[0].content)
    assert body["filter"]["query"] == "@_top_level:1 AND service:web"
    assert body["filter"]["from"] == "2023-11-14T22:13:20Z"
    assert payload["traces"][0]["service"] == "web"
    assert payload["query_used"] == "service:web"


def test_search_traces_error_code():
    payload, _ = call_tool(lambda request: httpx.Response(400, json={"errors": ["bad query"]}), "search_traces", {
        "start": 1, "end": 2,
    })
    assert payload["code"] == "TRACES_SEARCH_FAILED"
    assert payload["error"] == "Datadog Error: Failed to search traces: HTTP 400: bad query"


def test_parse_scope():
    assert parse_scope("service:web,env:prod") == {"service": "web", "env": "prod"}
    assert parse_scope(None) == {}


def test_list_services_groups_series():
    def handler(request):
        return httpx.Response(200, json={"series": [
            {"scope": "service:web", "pointlist": []},
            {"scope": "service:api,env:prod", "pointlist": []},
            {"scope": "service:web", "pointlist": [[1, 2]]},
            {"scope": "host:db-1", "pointlist": []},
        ]})

    payload, seen = call_tool(handler, "list_services", {"start": 1, "end": 2, "env": "prod"})

    assert [s["service"] for s in payload["services"]] == ["web", "api"]
    assert len(payload["services"][0]["metric_data"]) == 2
    assert payload["services"][0]["env"] == "prod"
    assert seen[0].url.params["query"] == "avg:trace.service.hits{env:prod} by {service}"


def test_spans_metrics_queries_three_metrics():
    def handler(request):
        query = request.url.params["query"]
        return httpx.Response(200, json={"query": query, "series": [{"metric": query, "pointlist": [], "unit": None}]})

    payload, seen = call_tool(handler, "get_spans_metrics", {"start": 1, "end": 2, "service": "web", "env": "prod"})

    assert set(payload["metrics"]) == {"hits", "duration", "errors"}
    assert payload["metrics"]["hits"]["query"] == "avg:trace.servlet.request.hits{service:web,env:prod}"
    assert "unit" not in payload["metrics"]["errors"]["series"][0]
    assert len(seen) == 3


def test_spans_metrics_fails_whole_call():
    def handler(request):
        if "errors" in request.url.params["query"]:
            return httpx.Response(500, json={"errors": ["Internal error"]})
        return httpx.Response(200, json={"series": []})

    payload, _ = call_tool(handler, "get_spans_metrics", {"start": 1, "end": 2, "service": "web"})

    assert payload["code"] == "SPANS_METRICS_FAILED"
    assert payload["error"].startswith("Datadog Error: Failed to get spans metrics:")
    assert payload["service"] == "web"


def test_probe():
    ok, _ = make_backend(lambda request: httpx.Response(200, json={"dashboards": []}))
    denied, _ = make_backend(lambda request: httpx.Response(403, json={"errors": ["Forbidden"]}))
    assert asyncio.run(ok.test_connection()) is True
    assert asyncio.run(denied.test_connection()) is False
