from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Union

import structlog
from anyio import Lock

from .contents import Contents, normalize_path, normalize_server
from .exceptions import ShapeMismatchError
from .models import Content, ContentRecord, ContentType, parse

logger = structlog.get_logger()

# a leaf record, or a directory record with the nodes found under it
Node = Union[ContentRecord, tuple[ContentRecord, list["Node"]]]


def flatten(nodes: list[Node]) -> list[ContentRecord]:
    """Depth-first, pre-order: each directory comes right before its descendants."""
    records = []
    for node in nodes:
        if isinstance(node, tuple):
            directory, subtree = node
            records.append(directory)
            records.extend(flatten(subtree))
        else:
            records.append(node)
    return records


class HierarchyBuilder:
    """Walks a server's directories and lists everything under a path."""

    def __init__(self, contents: Contents) -> None:
        self._contents = contents

    async def build(self, server: str, path: str = "") -> list[ContentRecord]:
        server = normalize_server(server)
        directory = await self._contents.query_contents(server, path, sync=True)
        return flatten(await self._children(server, directory))

    async def _children(self, server: str, directory: ContentRecord) -> list[Node]:
        if not isinstance(directory.raw_content, list):
            # not populated, or not a directory
            return []
        nodes: list[Node] = []
        for descriptor in directory.raw_content:
            try:
                content = parse(Content, descriptor)
            except ShapeMismatchError as e:
                logger.error("Invalid child descriptor", server=server, path=directory.path)
                logger.debug("Invalid child descriptor details", server=server, details=str(e))
                continue
            if content.type is ContentType.directory:
                child = await self._contents.query_contents(server, content.path, sync=True)
                nodes.append((child, await self._children(server, child)))
            else:
                child = ContentRecord(server)
                child.populate(content)
                nodes.append(child)
        return nodes


class HierarchyCache:
    """The last hierarchy built for each server."""

    def __init__(self) -> None:
        self._hierarchies: dict[str, list[ContentRecord]] = {}

    def __contains__(self, server: str) -> bool:
        return normalize_server(server) in self._hierarchies

    def get(self, server: str) -> list[ContentRecord] | None:
        return self._hierarchies.get(normalize_server(server))

    def replace(self, server: str, records: list[ContentRecord]) -> None:
        self._hierarchies[normalize_server(server)] = records

    def servers(self) -> list[str]:
        return list(self._hierarchies)


class ServerLocks:
    """One lock per server, dropped once no task holds it or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, server: str) -> bool:
        return server in self._locks

    @asynccontextmanager
    async def hold(self, server: str) -> AsyncIterator[None]:
        lock = self._locks.get(server)
        if lock is None:
            lock = self._locks[server] = Lock()
        # holders and waiters; release() hands the lock over to the next waiter
        self._users[server] = self._users.get(server, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[server] -= 1
            if not self._users[server]:
                del self._users[server]
                del self._locks[server]


class Hierarchy:
    """Builds server hierarchies and keeps the latest one of each server.

    Refreshes of the same server run one after the other, so the cached hierarchy
    is always the one of the last refresh to start. Different servers refresh
    independently.
    """

    def __init__(self, contents: Contents, cache: HierarchyCache | None = None) -> None:
        self.cache = HierarchyCache() if cache is None else cache
        self._builder = HierarchyBuilder(contents)
        self._refresh_locks = ServerLocks()

    def get(self, server: str) -> list[ContentRecord] | None:
        return self.cache.get(server)

    async def refresh(self, server: str, path: str = "") -> list[ContentRecord]:
        server = normalize_server(server)
        async with self._refresh_locks.hold(server):
            records = await self._builder.build(server, path)
            self.cache.replace(server, records)
        failed = [record for record in records if not record.populated]
        if failed:
            logger.warning(
                "Hierarchy is incomplete",
                server=server,
                path=normalize_path(path),
                failed=len(failed),
            )
        logger.debug("Hierarchy refreshed", server=server, entries=len(records))
        return records
