from __future__ import annotations

from typing import Any
from urllib.parse import quote

import structlog

from .exceptions import ShapeMismatchError
from .models import (
    Checkpoint,
    Content,
    ContentFormat,
    ContentRecord,
    ContentType,
    CreateContent,
    RenameContent,
    RenameResult,
    SaveContent,
    parse,
)
from .protocol import ModernProtocol, Protocol, ProtocolDetector, api_url, select_protocol
from .transport import QueryClient

logger = structlog.get_logger()


def normalize_server(server: str) -> str:
    return server.rstrip("/")


def normalize_path(path: str) -> str:
    return path.strip("/")


class Contents:
    """Content records of remote notebook servers.

    Every operation issues its request through the ``QueryClient`` and, unless
    ``sync=True`` is passed, returns before the response has arrived. Results are
    written into the ``ContentRecord`` objects the caller holds. Failures are
    logged and never raised: a failed query leaves its record empty, a failed
    update leaves its record untouched.
    """

    def __init__(self, client: QueryClient, detector: ProtocolDetector | None = None) -> None:
        self._client = client
        self._detector = ProtocolDetector(client) if detector is None else detector
        self._protocols: dict[str, Protocol] = {}

    async def protocol(self, server: str) -> Protocol:
        server = normalize_server(server)
        if server not in self._protocols:
            version = await self._detector.major_version(server)
            if version is None:
                # undetected, asked again on the next query
                return ModernProtocol()
            self._protocols[server] = select_protocol(version)
        return self._protocols[server]

    async def query_contents(
        self, server: str, path: str = "", *, sync: bool = False
    ) -> ContentRecord:
        server = normalize_server(server)
        path = normalize_path(path)
        protocol = await self.protocol(server)
        record = ContentRecord(server)

        def on_success(payload: Any) -> None:
            try:
                content = protocol.map_response(path, payload)
            except ShapeMismatchError as e:
                self._log_failure("Content query failed", server, path, None, str(e))
                record.settle()
                return
            record.populate(content)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure("Content query failed", server, path, status_code, details)
            record.settle()

        await self._client.issue(
            "GET",
            protocol.query_url(server, path),
            key=("query", server, path),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )
        return record

    async def rename(self, record: ContentRecord, new_path: str, *, sync: bool = False) -> None:
        """Move the record's resource to ``new_path``, then update the record itself.

        The record object is kept: holders of it see the new path and name once the
        server has confirmed the move.
        """
        path = self._require_path(record)
        new_path = normalize_path(new_path)

        def on_success(payload: Any) -> None:
            try:
                result = parse(RenameResult, payload)
            except ShapeMismatchError as e:
                self._log_failure("Rename failed", record.server, path, None, str(e))
                return
            record.apply_rename(result)
            logger.info("Renamed", server=record.server, path=path, new_path=result.path)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure("Rename failed", record.server, path, status_code, details)

        await self._client.issue(
            "PATCH",
            self._contents_url(record.server, path),
            key=("rename", record.server, path),
            json=RenameContent(path=new_path).model_dump(),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    async def new_content(
        self,
        server: str,
        path: str,
        type: ContentType,
        ext: str | None = None,
        *,
        sync: bool = False,
    ) -> ContentRecord:
        """Create an untitled notebook, file or directory in the ``path`` directory."""
        server = normalize_server(server)
        path = normalize_path(path)
        record = ContentRecord(server)

        def on_success(payload: Any) -> None:
            try:
                content = parse(Content, payload)
            except ShapeMismatchError as e:
                self._log_failure("Content creation failed", server, path, None, str(e))
                record.settle()
                return
            record.populate(content)
            logger.info("Created", server=server, path=content.path)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure("Content creation failed", server, path, status_code, details)
            record.settle()

        await self._client.issue(
            "POST",
            self._contents_url(server, path),
            key=("new", server, path, f"{type.value}{ext or ''}"),
            json=CreateContent(type=type, ext=ext).model_dump(mode="json", exclude_none=True),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )
        return record

    async def save(
        self,
        record: ContentRecord,
        content: str | dict,
        format: ContentFormat,
        *,
        sync: bool = False,
    ) -> None:
        path = self._require_path(record)
        if record.type is None:
            raise ValueError(f"Cannot save {path!r}: unknown content type")
        body = SaveContent(content=content, format=format, path=path, type=record.type)

        def on_success(payload: Any) -> None:
            try:
                saved = parse(Content, payload)
            except ShapeMismatchError as e:
                self._log_failure("Save failed", record.server, path, None, str(e))
                return
            record.raw_content = content
            record.format = format
            record.last_modified = saved.last_modified
            logger.info("Saved", server=record.server, path=path)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure("Save failed", record.server, path, status_code, details)

        await self._client.issue(
            "PUT",
            self._contents_url(record.server, path),
            key=("save", record.server, path),
            json=body.model_dump(mode="json"),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    async def delete(self, record: ContentRecord, *, sync: bool = False) -> None:
        path = self._require_path(record)

        def on_success(payload: Any) -> None:
            logger.info("Deleted", server=record.server, path=path)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure("Delete failed", record.server, path, status_code, details)

        await self._client.issue(
            "DELETE",
            self._contents_url(record.server, path),
            key=("delete", record.server, path),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    async def list_checkpoints(self, record: ContentRecord, *, sync: bool = False) -> None:
        path = self._require_path(record)

        def on_success(payload: Any) -> None:
            if not isinstance(payload, list):
                self._log_failure(
                    "Checkpoint listing failed", record.server, path, None, "expected a list"
                )
                return
            try:
                record.checkpoints = [parse(Checkpoint, item) for item in payload]
            except ShapeMismatchError as e:
                self._log_failure("Checkpoint listing failed", record.server, path, None, str(e))

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure(
                "Checkpoint listing failed", record.server, path, status_code, details
            )

        await self._client.issue(
            "GET",
            self._checkpoints_url(record.server, path),
            key=("checkpoints", record.server, path),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    async def create_checkpoint(self, record: ContentRecord, *, sync: bool = False) -> None:
        path = self._require_path(record)

        def on_success(payload: Any) -> None:
            try:
                checkpoint = parse(Checkpoint, payload)
            except ShapeMismatchError as e:
                self._log_failure("Checkpoint creation failed", record.server, path, None, str(e))
                return
            record.checkpoints = [
                c for c in record.checkpoints if c.id != checkpoint.id
            ] + [checkpoint]
            logger.info("Created checkpoint", server=record.server, path=path, id=checkpoint.id)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure(
                "Checkpoint creation failed", record.server, path, status_code, details
            )

        await self._client.issue(
            "POST",
            self._checkpoints_url(record.server, path),
            key=("new-checkpoint", record.server, path),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    async def restore_checkpoint(
        self, record: ContentRecord, checkpoint_id: str, *, sync: bool = False
    ) -> None:
        """Restore a checkpoint on the server. The record is not refetched."""
        path = self._require_path(record)

        def on_success(payload: Any) -> None:
            logger.info("Restored checkpoint", server=record.server, path=path, id=checkpoint_id)

        def on_error(status_code: int | None, details: str) -> None:
            self._log_failure(
                "Checkpoint restore failed", record.server, path, status_code, details
            )

        await self._client.issue(
            "POST",
            f"{self._checkpoints_url(record.server, path)}/{quote(checkpoint_id, safe='')}",
            key=("restore-checkpoint", record.server, path, checkpoint_id),
            on_success=on_success,
            on_error=on_error,
            sync=sync,
        )

    def _contents_url(self, server: str, path: str) -> str:
        return api_url(server, "contents", path)

    def _checkpoints_url(self, server: str, path: str) -> str:
        return f"{self._contents_url(server, path)}/checkpoints"

    def _require_path(self, record: ContentRecord) -> str:
        if record.path is None:
            raise ValueError(f"{record!r} has not been populated")
        return record.path

    def _log_failure(
        self, event: str, server: str, path: str, status_code: int | None, details: str
    ) -> None:
        logger.error(event, server=server, path=path, status=status_code)
        logger.debug(f"{event}: details", server=server, path=path, details=details)
