"""
Datadog backend over the public REST API (httpx).

One AsyncClient is created at startup with the API and application keys
as default headers, and reused for every call. Methods return the decoded
JSON body; reshaping for tool output happens in the server module.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel, Field

from mcp_adapters.backends.base import Backend, timed
from mcp_adapters.config import build_config, env_str
from mcp_adapters.errors import NETWORK_ERROR, DatadogError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

SPAN_METRICS = {
    "hits": "trace.servlet.request.hits",
    "duration": "trace.servlet.request.duration",
    "errors": "trace.servlet.request.errors",
}


class DatadogConfig(BaseModel):
    api_key: str = Field(min_length=1)
    app_key: str = Field(min_length=1)
    site: str = "datadoghq.com"

    @classmethod
    def from_env(cls) -> "DatadogConfig":
        return build_config(
            cls,
            api_key=env_str("DATADOG_API_KEY", required=True),
            app_key=env_str("DATADOG_APP_KEY", required=True),
            site=env_str("DATADOG_SITE"),
        )

    @property
    def base_url(self) -> str:
        return f"https://api.{self.site}"


def _csv(values: list[str] | None) -> str | None:
    return ",".join(values) if values else None


def _iso_from_epoch(seconds: int) -> str:
    return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class DatadogBackend(Backend):
    display_name = "Datadog"

    def __init__(self, config: DatadogConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "DD-API-KEY": config.api_key,
                "DD-APPLICATION-KEY": config.app_key,
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(DEFAULT_TIMEOUT),
        )

    async def _request(self, method: str, path: str, action: str, code: str, **kwargs: Any) -> Any:
        with timed() as watch:
            try:
                response = await self.client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                raise DatadogError(f"Failed to {action}: {e}", NETWORK_ERROR, cause=e) from e
        logger.debug(f"{method} {path} → {response.status_code} in {watch.elapsed_ms}ms")

        if response.is_error:
            raise DatadogError(
                f"Failed to {action}: {self._describe_failure(response)}",
                code,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise DatadogError(f"Failed to {action}: invalid JSON response", code, cause=e) from e

    @staticmethod
    def _describe_failure(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            return f"HTTP {response.status_code}: {'; '.join(str(e) for e in errors)}"
        return f"HTTP {response.status_code} {response.reason_phrase}".rstrip()

    # ── Metrics ──────────────────────────────────────────

    async def query_metrics(self, query: str, from_ts: int, to_ts: int, *, code: str = "METRICS_QUERY_FAILED") -> dict:
        return await self._request(
            "GET", "/api/v1/query", "query metrics", code,
            params={"query": query, "from": from_ts, "to": to_ts},
        )

    async def get_active_metrics(self, from_ts: int) -> dict:
        return await self._request(
            "GET", "/api/v1/metrics", "get active metrics", "METRICS_QUERY_FAILED",
            params={"from": from_ts},
        )

    # ── Logs and traces ──────────────────────────────────

    async def search_logs(self, query: str, time_from: str, time_to: str, limit: int = 50,
                          *, action: str = "search logs", code: str = "LOGS_SEARCH_FAILED") -> dict:
        body = {
            "filter": {"query": query, "from": time_from, "to": time_to},
            "page": {"limit": limit},
            "sort": "timestamp",
        }
        return await self._request("POST", "/api/v2/logs/events/search", action, code, json=body)

    async def search_traces(self, query: str, start: int, end: int, limit: int = 50) -> dict:
        search = "@_top_level:1"
        if query and query != "*":
            search += f" AND {query}"
        return await self.search_logs(
            search, _iso_from_epoch(start), _iso_from_epoch(end), limit,
            action="search traces", code="TRACES_SEARCH_FAILED",
        )

    # ── Dashboards, monitors, hosts ──────────────────────

    async def list_dashboards(self, count: int = 25, start: int = 0) -> list[dict]:
        body = await self._request(
            "GET", "/api/v1/dashboard", "list dashboards", "DASHBOARDS_LIST_FAILED",
            params={"count": count, "start": start},
        )
        return body.get("dashboards") or []

    async def list_monitors(
        self,
        group_states: list[str] | None = None,
        name: str | None = None,
        tags: list[str] | None = None,
        monitor_tags: list[str] | None = None,
        with_downtimes: bool = True,
    ) -> list[dict]:
        params = _drop_none({
            "group_states": _csv(group_states),
            "name": name,
            "tags": _csv(tags),
            "monitor_tags": _csv(monitor_tags),
            "with_downtimes": str(with_downtimes).lower(),
        })
        return await self._request("GET", "/api/v1/monitor", "list monitors", "MONITORS_LIST_FAILED", params=params)

    async def list_hosts(
        self,
        filter: str | None = None,
        sort_field: str = "name",
        sort_dir: str = "asc",
        start: int = 0,
        count: int = 100,
    ) -> dict:
        params = _drop_none({
            "filter": filter,
            "sort_field": sort_field,
            "sort_dir": sort_dir,
            "start": start,
            "count": count,
        })
        return await self._request("GET", "/api/v1/hosts", "list hosts", "HOSTS_LIST_FAILED", params=params)

    # ── APM ──────────────────────────────────────────────

    async def list_services(self, start: int, end: int, env: str | None = None) -> dict:
        scope = f"env:{env}" if env else "*"
        return await self.query_metrics(
            f"avg:trace.service.hits{{{scope}}} by {{service}}", start, end,
            code="SERVICES_LIST_FAILED",
        )

    async def get_spans_metrics(self, start: int, end: int, service: str | None = None, env: str | None = None) -> dict[str, dict]:
        """Hits, duration and errors fetched concurrently. Any failure fails the whole call."""
        tags = []
        if service:
            tags.append(f"service:{service}")
        if env:
            tags.append(f"env:{env}")
        tag_filter = f"{{{','.join(tags)}}}" if tags else ""

        try:
            results = await asyncio.gather(*(
                self.query_metrics(f"avg:{metric}{tag_filter}", start, end)
                for metric in SPAN_METRICS.values()
            ))
        except DatadogError as e:
            raise DatadogError(
                f"Failed to get spans metrics: {e.message}",
                "SPANS_METRICS_FAILED",
                status_code=e.status_code,
                cause=e,
            ) from e
        return dict(zip(SPAN_METRICS, results))

    async def test_connection(self) -> bool:
        try:
            await self.list_dashboards(count=1)
            return True
        except DatadogError as e:
            logger.warning(f"Datadog probe failed: {e.message}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


def now_epoch() -> int:
    return int(time.time())
