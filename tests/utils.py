from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from anyio import Event
from httpx import MockTransport, Request, Response

from jupytree.contents import Contents
from jupytree.protocol import ProtocolDetector
from jupytree.transport import QueryClient

URL = "http://127.0.0.1:8888"
TIME = "2024-05-01T12:00:00Z"


class FakeServer:
    """Answers requests with canned JSON bodies, keyed by method and URL path."""

    def __init__(self, version: str = "6.4.0") -> None:
        self.version = version
        self.responses: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.requests: List[Request] = []
        self.gate: Optional[Event] = None

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.responses[(method, path)] = (status, body)

    def transport(self) -> MockTransport:
        return MockTransport(self.handle)

    def requests_to(self, path: str) -> List[Request]:
        return [request for request in self.requests if request.url.path == path]

    async def handle(self, request: Request) -> Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        key = (request.method, request.url.path)
        if key not in self.responses:
            if key == ("GET", "/api"):
                return Response(200, json={"version": self.version})
            return Response(404, json={"message": "Not found"})
        status, body = self.responses[key]
        if body is None:
            return Response(status)
        return Response(status, json=body)


def make_contents(client: QueryClient, version: Optional[int] = 6) -> Contents:
    overrides = None if version is None else {URL: version}
    return Contents(client, ProtocolDetector(client, overrides))


def create_content(
    name: str,
    path: str,
    type: str,
    content: Any = None,
    format: Optional[str] = None,
    mimetype: Optional[str] = None,
) -> Dict:
    return {
        "name": name,
        "path": path,
        "type": type,
        "created": TIME,
        "last_modified": TIME,
        "format": format,
        "writable": True,
        "mimetype": mimetype,
        "content": content,
    }


def file_content(path: str) -> Dict:
    return create_content(
        path.rsplit("/", 1)[-1], path, "file", format="text", mimetype="text/plain"
    )


def directory_content(path: str, children: Optional[List[Dict]] = None) -> Dict:
    return create_content(
        path.rsplit("/", 1)[-1], path, "directory", content=children, format="json"
    )
