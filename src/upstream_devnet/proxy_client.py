"""Minimal HTTP client for a peer daemon's control plane."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field

from upstream_devnet.events import Event, EventSubscription

EVENTS_PATH = "/v1/notifications/local_peer_events"


class Repo(BaseModel):
    type: Literal["new", "existing"] = "new"
    path: str
    name: Optional[str] = None


class ProjectCreateParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo: Repo
    description: str = ""
    default_branch: str = Field(default="main", alias="defaultBranch")


class Project(BaseModel):
    model_config = ConfigDict(extra="allow")

    urn: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    seed: Optional[str] = None


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[Event]:
    """Decode a server-sent events stream with one JSON event per message."""
    data: List[str] = []
    async for line in lines:
        if line.startswith("data:"):
            data.append(line[len("data:"):].lstrip())
        elif line == "" and data:
            yield Event.model_validate_json("\n".join(data))
            data = []


class ProjectClient:
    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def create(self, params: Union[ProjectCreateParams, Dict[str, Any]]) -> Project:
        if not isinstance(params, ProjectCreateParams):
            params = ProjectCreateParams.model_validate(params)
        response = await self._http.post("/v1/projects", json=params.model_dump(by_alias=True))
        response.raise_for_status()
        return Project.model_validate(response.json())

    async def get(self, urn: str) -> Project:
        response = await self._http.get(f"/v1/projects/{urn}")
        response.raise_for_status()
        return Project.model_validate(response.json())

    async def request_submit(self, urn: str) -> None:
        """Ask the peer to fetch the project from its seeds."""
        response = await self._http.put(f"/v1/projects/requests/{urn}")
        response.raise_for_status()


class ProxyClient:
    """Client for the HTTP API of a running peer."""

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        self.base_url = base_url
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.project = ProjectClient(self._http)

    async def __aenter__(self) -> ProxyClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def session(self) -> Dict[str, Any]:
        """Fetch the session. Used as the readiness probe."""
        response = await self._http.get("/v1/session")
        response.raise_for_status()
        return response.json()

    @asynccontextmanager
    async def _open_events(self) -> AsyncIterator[AsyncIterator[Event]]:
        timeout = httpx.Timeout(5.0, read=None)
        async with self._http.stream("GET", EVENTS_PATH, timeout=timeout) as response:
            response.raise_for_status()
            yield parse_sse(response.aiter_lines())

    def events(self) -> EventSubscription:
        return EventSubscription(self._open_events)

