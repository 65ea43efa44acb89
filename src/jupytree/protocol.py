"""Server protocol variants.

Notebook servers speak one of two contents protocols. Modern servers expose the
uniform Contents API, where every resource is described by the same model.
Legacy servers (protocol major version 2) only list directories, as a bare array
of notebook descriptors. Both are normalized here into a ``Content`` model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import structlog

from .exceptions import ShapeMismatchError
from .models import Content, ContentType, ServerInfo, parse
from .transport import QueryClient

logger = structlog.get_logger()

LEGACY_VERSION = 2


def api_url(server: str, service: str, path: str) -> str:
    # path segments are escaped, "/" still separates them
    return f"{server}/api/{service}/{quote(path)}"


class Protocol(ABC):
    name: str

    @abstractmethod
    def query_url(self, server: str, path: str) -> str: ...

    @abstractmethod
    def map_response(self, path: str, payload: Any) -> Content: ...


class ModernProtocol(Protocol):
    name = "modern"

    def query_url(self, server: str, path: str) -> str:
        return api_url(server, "contents", path)

    def map_response(self, path: str, payload: Any) -> Content:
        return parse(Content, payload)


class LegacyProtocol(Protocol):
    name = "legacy"

    def query_url(self, server: str, path: str) -> str:
        return api_url(server, "notebooks", path)

    def map_response(self, path: str, payload: Any) -> Content:
        if not isinstance(payload, list):
            raise ShapeMismatchError(
                "legacy listing", f"expected a JSON array, got {type(payload).__name__}"
            )
        # only the listing is observable, the directory's own metadata stays absent
        return Content(
            name=path.rsplit("/", 1)[-1],
            path=path,
            type=ContentType.directory,
            content=repair_paths(payload),
        )


def repair_paths(descriptors: list) -> list[dict]:
    """Turn legacy descriptor paths (the parent directory) into full paths."""
    repaired = []
    for descriptor in descriptors:
        if not isinstance(descriptor, dict):
            raise ShapeMismatchError(
                "legacy descriptor", f"expected an object, got {type(descriptor).__name__}"
            )
        name = descriptor.get("name")
        path = descriptor.get("path")
        if not isinstance(name, str) or not isinstance(path, str):
            raise ShapeMismatchError("legacy descriptor", f"missing name or path in {descriptor}")
        descriptor = dict(descriptor)
        descriptor["path"] = f"{path}/{name}" if path else name
        if isinstance(descriptor.get("content"), list):
            descriptor["content"] = repair_paths(descriptor["content"])
        repaired.append(descriptor)
    return repaired


def select_protocol(version: int) -> Protocol:
    if version == LEGACY_VERSION:
        return LegacyProtocol()
    return ModernProtocol()


class ProtocolDetector:
    """Finds out the protocol major version a server speaks."""

    def __init__(self, client: QueryClient, overrides: dict[str, int] | None = None) -> None:
        self._client = client
        self._versions: dict[str, int] = {} if overrides is None else dict(overrides)

    async def major_version(self, server: str) -> int | None:
        """Return the server's protocol major version, or None if it could not be found."""
        if server not in self._versions:
            result: list[int] = []

            def on_success(payload: Any) -> None:
                try:
                    result.append(parse(ServerInfo, payload).major)
                except (ShapeMismatchError, ValueError) as e:
                    logger.error("Unexpected server version", server=server)
                    logger.debug("Server version details", server=server, details=str(e))

            def on_error(status_code: int | None, details: str) -> None:
                logger.error("Server version query failed", server=server, status=status_code)
                logger.debug("Server version query details", server=server, details=details)

            await self._client.issue(
                "GET",
                f"{server}/api",
                key=("version", server),
                on_success=on_success,
                on_error=on_error,
                sync=True,
            )
            if not result:
                return None
            self._versions[server] = result[0]
            logger.debug("Detected protocol version", server=server, version=result[0])
        return self._versions[server]
