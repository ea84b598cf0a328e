"""
npm registry MCP server: package metadata, weekly downloads and search.

No credentials needed; the registry endpoints are public.

Launch:
    python -m mcp_adapters.servers.npm_registry

Test:
    echo '{"jsonrpc":"2.0","method":"tools/call","params":{"name":"get_package_downloads","arguments":{"packageName":"react"}},"id":1}' \\
        | python -m mcp_adapters.servers.npm_registry
"""

from __future__ import annotations

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.npm_registry import NPMRegistryBackend, NPMRegistryConfig
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import ToolParams
from mcp_adapters.server import ToolHandler, ToolServer

# How many of the most recent versions get_package_info lists
RECENT_VERSIONS = 10


class PackageParams(ToolParams):
    package_name: str = Field(min_length=1, description="Package name, e.g. react or @types/node")


class SearchParams(ToolParams):
    query: str = Field(min_length=1, description="Search text")
    size: int = Field(20, ge=1, le=250, description="Number of results")


class NPMTool(ToolHandler):
    context_fields = ("packageName",)

    def __init__(self, npm: NPMRegistryBackend):
        self.npm = npm


class GetPackageInfoTool(NPMTool):
    name = "get_package_info"
    title = "Get Package Information"
    description = "Get detailed information about an NPM package including metadata, dependencies, and versions"
    params_model = PackageParams

    async def handle(self, params: PackageParams) -> dict:
        info = await self.npm.get_package_info(params.package_name)

        dist_tags = info.get("dist-tags") or {}
        versions = info.get("versions") or {}
        latest = dist_tags.get("latest") or info.get("version")
        # Per-version manifest wins over the top-level document
        manifest = versions.get(latest) or {}

        def pick(key: str):
            return manifest.get(key) or info.get(key)

        times = info.get("time") or {}
        return {
            "name": info.get("name"),
            "version": latest,
            "description": pick("description"),
            "homepage": pick("homepage"),
            "repository": pick("repository"),
            "author": pick("author"),
            "license": pick("license"),
            "keywords": pick("keywords"),
            "dependencies": pick("dependencies"),
            "devDependencies": pick("devDependencies"),
            "scripts": pick("scripts"),
            "maintainers": info.get("maintainers"),
            "created": times.get("created"),
            "modified": times.get("modified"),
            "distTags": dist_tags or None,
            "availableVersions": list(versions)[-RECENT_VERSIONS:],
        }


class GetPackageDownloadsTool(NPMTool):
    name = "get_package_downloads"
    title = "Get Package Download Statistics"
    description = "Get download statistics for an NPM package from the last week"
    params_model = PackageParams

    async def handle(self, params: PackageParams) -> dict:
        stats = await self.npm.get_package_downloads(params.package_name)
        downloads = stats.get("downloads") or 0
        return {
            "package": stats.get("package"),
            "downloads": downloads,
            "period": f"{stats.get('start')} to {stats.get('end')}",
            "averagePerDay": round(downloads / 7),
        }


class SearchPackagesTool(NPMTool):
    name = "search_packages"
    title = "Search NPM Packages"
    description = "Search for NPM packages by query string with optional size limit"
    params_model = SearchParams
    context_fields = ("query",)

    async def handle(self, params: SearchParams) -> dict:
        results = await self.npm.search_packages(params.query, params.size)
        objects = results.get("objects") or []

        packages = []
        for obj in objects:
            package = obj.get("package") or {}
            score = obj.get("score") or {}
            detail = score.get("detail") or {}
            packages.append({
                "name": package.get("name"),
                "version": package.get("version"),
                "description": package.get("description"),
                "author": (package.get("author") or {}).get("name")
                          or (package.get("publisher") or {}).get("username"),
                "keywords": package.get("keywords"),
                "links": package.get("links"),
                "score": {
                    "final": score.get("final"),
                    "quality": detail.get("quality"),
                    "popularity": detail.get("popularity"),
                    "maintenance": detail.get("maintenance"),
                },
                "searchScore": obj.get("searchScore"),
            })

        return {
            "query": params.query,
            "total": results.get("total"),
            "returned": len(objects),
            "searchTime": results.get("time"),
            "packages": packages,
        }


TOOLS = (GetPackageInfoTool, GetPackageDownloadsTool, SearchPackagesTool)


def build_server(backend: NPMRegistryBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("npm-registry-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: NPMRegistryBackend(NPMRegistryConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
