"""Shared fixtures: configuration overrides and a fake Azure DevOps API."""
import json

import httpx
import pytest

from ado_mcp import azure_devops_config as config

ORG_URL = "https://dev.azure.com/contoso"
IDENTITIES_PATH = "/contoso/_apis/identities"
TIME_LOGS_PATH = (
    "/contoso/_apis/ExtensionManagement/InstalledExtensions/timelog/time-logging-extension"
    "/Data/Scopes/Default/Current/Collections/TimeLogData/Documents"
)

AUTH_HEADER = "Basic OnRlc3QtcGF0"

CURRENT_USER = {
    "id": "user-1",
    "providerDisplayName": "Ana Dev",
    "properties": {"Mail": {"$type": "System.String", "$value": "ana@contoso.com"}},
}


class FakeAzureDevOps:
    """Routes requests by (method, path) and records every request it receives."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, response=None, status_code=200, json_body=None):
        if response is None:
            response = httpx.Response(status_code, json=json_body)
        self.routes[(method, path)] = response
        return self

    def add_identity(self, user=CURRENT_USER):
        return self.add("GET", IDENTITIES_PATH, json_body={"count": 1, "value": [user]})

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {request.url.path}"})
        if callable(route):
            return route(request)
        return route

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def client(self, auth_header=AUTH_HEADER):
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self),
            headers={"Authorization": auth_header},
        )


def request_json(request):
    return json.loads(request.content)


@pytest.fixture
def ado_env(monkeypatch):
    monkeypatch.setattr(config, "AZURE_DEVOPS_ORG_URL", ORG_URL)
    monkeypatch.setattr(config, "AZURE_DEVOPS_USERNAME", "ana@contoso.com")
    monkeypatch.setattr(config, "AZURE_DEVOPS_DEFAULT_PROJECT", "Fabrikam")
    monkeypatch.setattr(config, "AZURE_DEVOPS_API_VERSION", "7.1")

    async def fake_auth_header():
        return AUTH_HEADER

    monkeypatch.setattr(config, "get_auth_header", fake_auth_header)


@pytest.fixture
def fake_ado(ado_env):
    return FakeAzureDevOps()


@pytest.fixture
async def ado_client(fake_ado):
    async with fake_ado.client() as client:
        yield client
