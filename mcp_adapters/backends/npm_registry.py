"""npm registry backend: package metadata, download counts and search over httpx."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from mcp_adapters.backends.base import Backend, timed
from mcp_adapters.config import build_config, env_str
from mcp_adapters.errors import NETWORK_ERROR, NPMError

logger = logging.getLogger(__name__)


class NPMRegistryConfig(BaseModel):
    registry_url: str = "https://registry.npmjs.org"
    downloads_url: str = "https://api.npmjs.org/downloads"
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "NPMRegistryConfig":
        return build_config(
            cls,
            registry_url=env_str("NPM_REGISTRY_URL"),
            downloads_url=env_str("NPM_DOWNLOADS_URL"),
        )


def encode_package_name(name: str) -> str:
    """Scoped names keep their '@' and escape the '/' ("@scope%2Fpkg")."""
    return quote(name, safe="@")


class NPMRegistryBackend(Backend):
    display_name = "npm registry"

    def __init__(self, config: NPMRegistryConfig | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or NPMRegistryConfig()
        self.registry_url = self.config.registry_url.rstrip("/")
        self.downloads_url = self.config.downloads_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout),
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    async def _get_json(self, url: str, action: str, **kwargs: Any) -> Any:
        with timed() as watch:
            try:
                response = await self.client.get(url, **kwargs)
            except httpx.TransportError as e:
                raise NPMError(f"Network error while {action}: {e}", NETWORK_ERROR, cause=e) from e
        logger.debug(f"GET {url} → {response.status_code} in {watch.elapsed_ms}ms")
        return response

    @staticmethod
    def _decode(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NPMError(
                f"Invalid response while {action}", "FETCH_ERROR", status_code=response.status_code, cause=e
            ) from e

    async def get_package_info(self, package_name: str) -> dict:
        action = "fetching package info"
        response = await self._get_json(f"{self.registry_url}/{encode_package_name(package_name)}", action)
        if response.status_code == 404:
            raise NPMError(f'Package "{package_name}" not found', "PACKAGE_NOT_FOUND", status_code=404)
        if response.is_error:
            raise NPMError(
                f"Failed to fetch package info: {response.reason_phrase}",
                "FETCH_ERROR",
                status_code=response.status_code,
            )
        return self._decode(response, action)

    async def get_package_downloads(self, package_name: str, period: str = "last-week") -> dict:
        action = "fetching download stats"
        url = f"{self.downloads_url}/point/{period}/{encode_package_name(package_name)}"
        response = await self._get_json(url, action)
        if response.status_code == 404:
            raise NPMError(
                f'Download stats for package "{package_name}" not found', "DOWNLOADS_NOT_FOUND", status_code=404
            )
        if response.is_error:
            raise NPMError(
                f"Failed to fetch download stats: {response.reason_phrase}",
                "FETCH_ERROR",
                status_code=response.status_code,
            )
        return self._decode(response, action)

    async def search_packages(self, query: str, size: int = 20) -> dict:
        action = "searching packages"
        response = await self._get_json(
            f"{self.registry_url}/-/v1/search", action, params={"text": query, "size": size}
        )
        if response.is_error:
            raise NPMError(
                f"Failed to search packages: {response.reason_phrase}",
                "SEARCH_ERROR",
                status_code=response.status_code,
            )
        return self._decode(response, action)

    async def test_connection(self) -> bool:
        try:
            response = await self.client.get(f"{self.registry_url}/-/ping")
        except httpx.TransportError as e:
            logger.warning(f"npm registry probe failed: {e}")
            return False
        if response.is_error:
            logger.warning(f"npm registry probe returned HTTP {response.status_code}")
            return False
        return True

    async def close(self) -> None:
        await self.client.aclose()
