from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from anyio import Event
from pydantic import BaseModel, ValidationError, model_validator

from .exceptions import ShapeMismatchError


class ContentType(str, Enum):
    directory = "directory"
    file = "file"
    notebook = "notebook"


class ContentFormat(str, Enum):
    json = "json"
    text = "text"
    base64 = "base64"


class Checkpoint(BaseModel):
    id: str
    last_modified: datetime | None = None


class Content(BaseModel):
    name: str
    path: str
    type: ContentType | None = None
    created: datetime | None = None
    last_modified: datetime | None = None
    format: ContentFormat | None = None
    writable: bool | None = None
    mimetype: str | None = None
    content: list[dict] | dict | str | None = None

    @model_validator(mode="after")
    def check_invariants(self) -> Content:
        if self.path.startswith("/"):
            raise ValueError(f"path must be relative: {self.path!r}")
        if self.path.rsplit("/", 1)[-1] != self.name:
            raise ValueError(f"name {self.name!r} does not end path {self.path!r}")
        if self.mimetype is not None and self.type is not ContentType.file:
            raise ValueError(f"only files have a mimetype, got {self.type}")
        if self.type is ContentType.directory:
            if self.format not in (None, ContentFormat.json):
                raise ValueError(f"directory format must be json, got {self.format}")
            if self.content is not None and not isinstance(self.content, list):
                raise ValueError("directory content must be a list")
        elif self.type is ContentType.file and self.format is ContentFormat.json:
            raise ValueError("file format must be text or base64")
        return self


class CreateContent(BaseModel):
    type: ContentType
    ext: str | None = None


class SaveContent(BaseModel):
    content: str | dict | None = None
    format: ContentFormat
    path: str
    type: ContentType


class RenameContent(BaseModel):
    path: str


class RenameResult(BaseModel):
    name: str
    path: str
    last_modified: datetime | None = None


class ServerInfo(BaseModel):
    version: str

    @property
    def major(self) -> int:
        return int(self.version.split(".", 1)[0])


def parse(model: type[BaseModel], payload: Any):
    """Validate a decoded response body, raising ShapeMismatchError on failure."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ShapeMismatchError(model.__name__, str(e)) from e


class ContentRecord:
    """One file, directory or notebook of a remote server.

    A record is handed out as soon as its fetch is issued, with only ``server``
    set. The fetch's success continuation populates it in place, so every holder
    of the same object sees the data once it has arrived. A failed fetch leaves
    the record empty; ``await record.wait()`` tells the two apart.
    """

    server: str
    name: str | None
    path: str | None
    type: ContentType | None
    writable: bool | None
    created: datetime | None
    last_modified: datetime | None
    mimetype: str | None
    format: ContentFormat | None
    raw_content: list[dict] | dict | str | None
    checkpoints: list[Checkpoint]

    def __init__(self, server: str) -> None:
        self.server = server
        self.name = None
        self.path = None
        self.type = None
        self.writable = None
        self.created = None
        self.last_modified = None
        self.mimetype = None
        self.format = None
        self.raw_content = None
        self.checkpoints = []
        self._populated = False
        self._settled = False
        self._settled_event: Event | None = None

    def __repr__(self) -> str:
        return (
            f"ContentRecord(server={self.server!r}, path={self.path!r}, "
            f"type={self.type and self.type.value!r})"
        )

    @property
    def populated(self) -> bool:
        return self._populated

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def is_dir(self) -> bool:
        return self.type is ContentType.directory

    def populate(self, content: Content) -> None:
        self.name = content.name
        self.path = content.path
        self.type = content.type
        self.writable = content.writable
        self.created = content.created
        self.last_modified = content.last_modified
        self.mimetype = content.mimetype
        self.format = content.format
        self.raw_content = content.content
        self._populated = True
        self.settle()

    def apply_rename(self, result: RenameResult) -> None:
        self.path = result.path
        self.name = result.name
        self.last_modified = result.last_modified

    def settle(self) -> None:
        """Mark the fetch of this record as finished, whether it succeeded or not."""
        self._settled = True
        if self._settled_event is not None:
            self._settled_event.set()

    async def wait(self) -> bool:
        if not self._settled:
            if self._settled_event is None:
                self._settled_event = Event()
            await self._settled_event.wait()
        return self._populated
