import asyncio

import httpx

from mcp_adapters.backends.npm_registry import NPMRegistryBackend, encode_package_name
from mcp_adapters.servers.npm_registry import RECENT_VERSIONS, build_server


def make_backend(handler) -> tuple[NPMRegistryBackend, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return NPMRegistryBackend(client=client), seen


def call_tool(handler, name, arguments):
    backend, seen = make_backend(handler)
    payload = asyncio.run(build_server(backend).dispatch(name, arguments)).payload()
    return payload, seen


def test_scoped_names_keep_at_sign():
    assert encode_package_name("react") == "react"
    assert encode_package_name("@types/node") == "@types%2Fnode"


def test_package_info_prefers_latest_manifest():
    versions = {f"1.0.{i}": {"version": f"1.0.{i}"} for i in range(12)}
    versions["1.0.11"] = {
        "description": "Latest description",
        "license": "MIT",
        "dependencies": {"loose-envify": "^1.1.0"},
    }

    def handler(request):
        return httpx.Response(200, json={
            "name": "react",
            "description": "Top-level description",
            "homepage": "https://react.dev",
            "dist-tags": {"latest": "1.0.11", "next": "2.0.0-rc"},
            "versions": versions,
            "maintainers": [{"name": "fb"}],
            "time": {"created": "2011-10-26T17:46:21.942Z", "modified": "2024-04-25T16:00:00.000Z"},
        })

    payload, seen = call_tool(handler, "get_package_info", {"packageName": "react"})

    assert str(seen[0].url) == "https://registry.npmjs.org/react"
    assert payload["version"] == "1.0.11"
    assert payload["description"] == "Latest description"
    assert payload["homepage"] == "https://react.dev"
    assert payload["license"] == "MIT"
    assert payload["dependencies"] == {"loose-envify": "^1.1.0"}
    assert payload["distTags"]["next"] == "2.0.0-rc"
    assert payload["created"] == "2011-10-26T17:46:21.942Z"
    assert len(payload["availableVersions"]) == RECENT_VERSIONS
    assert payload["availableVersions"][-1] == "1.0.11"


def test_scoped_package_request_path():
    def handler(request):
        return httpx.Response(200, json={"name": "@types/node", "dist-tags": {"latest": "20.0.0"}, "versions": {}})

    payload, seen = call_tool(handler, "get_package_info", {"packageName": "@types/node"})

    assert seen[0].url.raw_path == b"/@types%2Fnode"
    assert payload["name"] == "@types/node"
    assert payload["availableVersions"] == []


def test_missing_package():
    payload, _ = call_tool(lambda request: httpx.Response(404, json={"error": "Not found"}), "get_package_info", {
        "packageName": "definitely-not-a-package-xyz",
    })

    assert payload == {
        "error": 'NPM Error: Package "definitely-not-a-package-xyz" not found',
        "code": "PACKAGE_NOT_FOUND",
        "packageName": "definitely-not-a-package-xyz",
    }


def test_registry_failure():
    payload, _ = call_tool(lambda request: httpx.Response(503), "get_package_info", {"packageName": "react"})
    assert payload["error"] == "NPM Error: Failed to fetch package info: Service Unavailable"
    assert payload["code"] == "FETCH_ERROR"


def test_network_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    payload, _ = call_tool(handler, "get_package_downloads", {"packageName": "react"})

    assert payload["error"].startswith("NPM Error: Network error while fetching download stats:")
    assert payload["code"] == "NETWORK_ERROR"


def test_downloads():
    def handler(request):
        return httpx.Response(200, json={
            "downloads": 25000000, "start": "2024-05-01", "end": "2024-05-07", "package": "react",
        })

    payload, seen = call_tool(handler, "get_package_downloads", {"packageName": "react"})

    assert str(seen[0].url) == "https://api.npmjs.org/downloads/point/last-week/react"
    assert payload == {
        "package": "react",
        "downloads": 25000000,
        "period": "2024-05-01 to 2024-05-07",
        "averagePerDay": 3571429,
    }


def test_downloads_not_found():
    payload, _ = call_tool(lambda request: httpx.Response(404), "get_package_downloads", {"packageName": "ghost"})
    assert payload["code"] == "DOWNLOADS_NOT_FOUND"
    assert payload["packageName"] == "ghost"


def test_search():
    def handler(request):
        return httpx.Response(200, json={
            "objects": [{
                "package": {
                    "name": "express",
                    "version": "4.19.2",
                    "description": "Fast, unopinionated, minimalist web framework",
                    "publisher": {"username": "wesleytodd"},
                    "links": {"npm": "https://www.npmjs.com/package/express"},
                },
                "score": {"final": 0.9, "detail": {"quality": 0.95, "popularity": 0.9, "maintenance": 0.85}},
                "searchScore": 100000.1,
            }],
            "total": 1234,
            "time": "Wed May 01 2024 12:00:00 GMT+0000",
        })

    payload, seen = call_tool(handler, "search_packages", {"query": "web framework", "size": 5})

    params = seen[0].url.params
    assert params["text"] == "web framework"
    assert params["size"] == "5"
    assert payload["total"] == 1234
    assert payload["returned"] == 1
    package = payload["packages"][0]
    assert package["author"] == "wesleytodd"
    assert package["score"] == {"final": 0.9, "quality": 0.95, "popularity": 0.9, "maintenance": 0.85}


def test_search_size_bounds():
    payload, seen = call_tool(lambda request: httpx.Response(200, json={}), "search_packages", {"query": "x", "size": 0})
    assert payload["error"].startswith("Invalid parameters:")
    assert payload["query"] == "x"
    assert seen == []


def test_probe():
    up, seen = make_backend(lambda request: httpx.Response(200, json={}))
    down, _ = make_backend(lambda request: httpx.Response(500))
    assert asyncio.run(up.test_connection()) is True
    assert seen[0].url.path == "/-/ping"
    assert asyncio.run(down.test_connection()) is False
